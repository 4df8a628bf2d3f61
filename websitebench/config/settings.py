"""
配置管理模块
支持 YAML 配置文件、独立的密钥文件和热重载
"""
import socket
import yaml
import logging
import threading
import time
from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, field
from pathlib import Path
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileModifiedEvent

from ..constants import (
    BrowserDefaults,
    DefaultPaths,
    InfluxDefaults,
    MonitorLimits,
    VALID_LOG_LEVELS,
)
from ..utils.helpers import validate_url
from .sites import CheckType, SiteEntry


logger = logging.getLogger(__name__)


@dataclass
class BrowserConfig:
    """浏览器配置"""
    headless: bool = True
    browser_type: str = "chromium"
    executable_path: Optional[str] = None
    no_sandbox: bool = False
    debugging_port: Optional[int] = BrowserDefaults.DEBUGGING_PORT
    max_restarts: int = BrowserDefaults.MAX_RESTARTS
    restart_interval: int = BrowserDefaults.RESTART_INTERVAL
    extra_args: List[str] = field(default_factory=list)


@dataclass
class InfluxConfig:
    """InfluxDB 配置"""
    hostname: str = ""
    port: int = InfluxDefaults.PORT
    protocol: str = InfluxDefaults.PROTOCOL
    path: str = InfluxDefaults.PATH
    database: str = ""
    ignore_ssl: bool = False
    auth_method: str = "userpass"
    username: str = ""
    password: str = field(default="", repr=False)
    token: str = field(default="", repr=False)
    organization: str = ""
    timeout: int = InfluxDefaults.TIMEOUT

    def __repr__(self) -> str:
        secret_hint = "***" if (self.password or self.token) else ""
        return (
            f"InfluxConfig(hostname='{self.hostname}', port={self.port}, "
            f"database='{self.database}', auth_method='{self.auth_method}', secret='{secret_hint}')"
        )

    @property
    def base_url(self) -> str:
        """服务器基础地址"""
        path = (self.path or "/").rstrip("/")
        return f"{self.protocol}://{self.hostname}:{self.port}{path}"


@dataclass
class LoggingConfig:
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class BenchSettings:
    """全局测试配置（调度开始时读取的只读快照）"""
    instance_name: str = ""
    max_concurrent_jobs: int = MonitorLimits.DEFAULT_CONCURRENT_JOBS
    allow_caching: bool = False
    ignore_ssl_errors: bool = False
    user_agent: Optional[str] = None
    log_resource_errors: bool = False
    repeat_count: int = MonitorLimits.DEFAULT_REPEAT_COUNT
    browser_mode: str = "repeat"


class ConfigFileHandler(FileSystemEventHandler):
    """配置文件变更处理器"""

    def __init__(self, config_manager: 'ConfigManager'):
        self.config_manager = config_manager
        self._last_modified = 0
        self._debounce_seconds = 1  # 防抖时间

    def on_modified(self, event):
        if isinstance(event, FileModifiedEvent):
            # 只关心主配置文件和密钥文件
            watched = (
                Path(self.config_manager.config_file).name,
                Path(self.config_manager.secrets_file).name,
            )
            if Path(event.src_path).name in watched:
                current_time = time.time()
                # 防抖：避免重复触发
                if current_time - self._last_modified > self._debounce_seconds:
                    self._last_modified = current_time
                    logger.info(f"检测到配置文件变更: {event.src_path}")
                    self.config_manager.reload()


class ConfigManager:
    """
    配置管理器
    读取主配置文件与密钥文件（密钥文件的 influxdb 段覆盖主配置），支持热重载
    """

    def __init__(
        self,
        config_file: str = DefaultPaths.CONFIG_FILE,
        secrets_file: str = DefaultPaths.SECRETS_FILE
    ):
        self.config_file = config_file
        self.secrets_file = secrets_file
        self._config_data: Dict[str, Any] = {}
        self._callbacks: List[Callable[['ConfigManager'], None]] = []
        self._observer: Optional[Observer] = None
        self._lock = threading.RLock()

        # 命令行覆盖项（优先级高于配置文件）
        self._overrides: Dict[str, Any] = {}

        self.load()

    @staticmethod
    def _read_yaml(path: Path) -> Optional[Dict[str, Any]]:
        """读取单个 YAML 文件"""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise yaml.YAMLError(f"顶层结构必须是映射: {path}")
        return data

    def load(self) -> bool:
        """加载配置文件和密钥文件"""
        config_path = Path(self.config_file)

        if not config_path.exists():
            logger.warning(f"配置文件不存在: {self.config_file}")
            self._config_data = {}
            return False

        try:
            data = self._read_yaml(config_path)

            secrets_path = Path(self.secrets_file)
            if secrets_path.exists():
                secrets = self._read_yaml(secrets_path)
                influx = dict(data.get('influxdb') or {})
                influx.update(secrets.get('influxdb') or {})
                data['influxdb'] = influx
                logger.debug(f"已合并密钥文件: {self.secrets_file}")

            self._config_data = data
            logger.info(f"配置文件加载成功: {self.config_file}")
            return True
        except yaml.YAMLError as e:
            logger.error(f"配置文件解析错误: {e}")
            return False
        except OSError as e:
            logger.error(f"配置文件加载失败: {e}")
            return False

    def reload(self) -> bool:
        """重新加载配置文件"""
        with self._lock:
            old_config = self._config_data.copy()

            if self.load():
                if old_config != self._config_data:
                    logger.info("配置已更新，触发回调...")
                    self._notify_callbacks()
                return True
            else:
                # 加载失败，恢复旧配置
                self._config_data = old_config
                return False

    def start_watching(self):
        """开始监听配置文件变更"""
        if self._observer is not None:
            return

        config_path = Path(self.config_file)
        watch_dir = str(config_path.parent.absolute()) or "."

        self._observer = Observer()
        handler = ConfigFileHandler(self)
        self._observer.schedule(handler, watch_dir, recursive=False)
        self._observer.start()

        logger.info(f"开始监听配置文件变更: {self.config_file}")

    def stop_watching(self):
        """停止监听配置文件变更"""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("停止监听配置文件变更")

    def on_config_change(self, callback: Callable[['ConfigManager'], None]):
        """注册配置变更回调"""
        self._callbacks.append(callback)

    def _notify_callbacks(self):
        """通知所有回调"""
        with self._lock:
            callbacks = self._callbacks.copy()

        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"配置变更回调执行失败: {e}")

    def override(self, key: str, value: Any):
        """设置命令行覆盖项（点号分隔路径）"""
        self._overrides[key] = value

    # ==================== 配置访问方法 ====================

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值，支持点号分隔的路径（线程安全）"""
        if key in self._overrides:
            return self._overrides[key]

        with self._lock:
            keys = key.split('.')
            value = self._config_data

            for k in keys:
                if isinstance(value, dict):
                    value = value.get(k)
                else:
                    return default

                if value is None:
                    return default

            return value

    def has(self, key: str) -> bool:
        """配置中是否存在该项"""
        with self._lock:
            return key in self._config_data

    @property
    def settings(self) -> BenchSettings:
        """全局测试配置"""
        user_agent = self.get('user_agent')
        return BenchSettings(
            instance_name=self.get('instance_name') or socket.gethostname(),
            max_concurrent_jobs=int(self.get('max_concurrent_jobs', MonitorLimits.DEFAULT_CONCURRENT_JOBS)),
            allow_caching=bool(self.get('allow_caching', False)),
            ignore_ssl_errors=bool(self.get('ignore_ssl_errors', False)),
            user_agent=str(user_agent) if user_agent is not None else None,
            log_resource_errors=bool(self.get('log_resource_errors', False)),
            repeat_count=int(self.get('repeat_count', MonitorLimits.DEFAULT_REPEAT_COUNT)),
            browser_mode=str(self.get('browser_mode', 'repeat')).lower()
        )

    @property
    def browser(self) -> BrowserConfig:
        """浏览器配置"""
        data = self.get('browser', {})
        return BrowserConfig(
            headless=self.get('browser.headless', True),
            browser_type=str(self.get('browser.browser_type', 'chromium')).lower(),
            executable_path=self.get('browser.executable_path'),
            no_sandbox=bool(self.get('browser.no_sandbox', False)),
            debugging_port=data.get('debugging_port', BrowserDefaults.DEBUGGING_PORT),
            max_restarts=int(data.get('max_restarts', BrowserDefaults.MAX_RESTARTS)),
            restart_interval=int(data.get('restart_interval', BrowserDefaults.RESTART_INTERVAL)),
            extra_args=list(data.get('extra_args', []))
        )

    @property
    def influxdb(self) -> InfluxConfig:
        """InfluxDB 配置"""
        data = self.get('influxdb', {})
        return InfluxConfig(
            hostname=data.get('hostname', ''),
            port=int(data.get('port') or InfluxDefaults.PORT),
            protocol=data.get('protocol') or InfluxDefaults.PROTOCOL,
            path=data.get('path') or InfluxDefaults.PATH,
            database=data.get('database', ''),
            ignore_ssl=bool(data.get('ignore_ssl', False)),
            auth_method=str(data.get('auth_method', 'userpass')).lower(),
            username=data.get('username', ''),
            password=data.get('password', ''),
            token=data.get('token', ''),
            organization=data.get('organization', ''),
            timeout=int(data.get('timeout', InfluxDefaults.TIMEOUT))
        )

    @property
    def logging_config(self) -> LoggingConfig:
        """日志配置"""
        data = self.get('logging', {})
        return LoggingConfig(
            level=str(self.get('log_level', 'INFO')).upper(),
            file=data.get('file'),
            max_size=data.get('max_size', 10485760),
            backup_count=data.get('backup_count', 5)
        )

    @property
    def websites(self) -> List[SiteEntry]:
        """网站列表（需先通过 validate）"""
        return [
            SiteEntry.from_dict(item)
            for item in self.get('website_list', [])
            if isinstance(item, dict)
        ]

    def validate(self) -> List[str]:
        """验证配置，返回错误列表"""
        errors = []

        for key in ('website_list', 'influxdb'):
            if not self.has(key):
                errors.append(f"缺少必填配置项: {key}")

        # 全局配置验证
        user_agent = self.get('user_agent')
        if user_agent is not None and str(user_agent).strip() == "":
            errors.append("user_agent 不能为空字符串")

        allow_caching = self.get('allow_caching', False)
        if not isinstance(allow_caching, bool):
            errors.append("allow_caching 必须是布尔值")

        try:
            settings = self.settings
        except (TypeError, ValueError) as e:
            errors.append(f"全局配置无效: {e}")
        else:
            if settings.max_concurrent_jobs < MonitorLimits.MIN_CONCURRENT_JOBS:
                errors.append(
                    f"max_concurrent_jobs 过小: {settings.max_concurrent_jobs}，"
                    f"最小值为 {MonitorLimits.MIN_CONCURRENT_JOBS}"
                )
            if not (1 <= settings.repeat_count <= MonitorLimits.MAX_REPEAT_COUNT):
                errors.append(
                    f"repeat_count 无效: {settings.repeat_count}，"
                    f"应在 1-{MonitorLimits.MAX_REPEAT_COUNT} 范围内"
                )
            if settings.browser_mode not in BrowserDefaults.SUPPORTED_MODES:
                errors.append(f"browser_mode 无效: {settings.browser_mode}")

        log_level = str(self.get('log_level', 'INFO')).upper()
        if log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level 无效: {log_level}")

        # 浏览器配置验证
        browser_type = str(self.get('browser.browser_type', 'chromium')).lower()
        if browser_type not in BrowserDefaults.SUPPORTED_TYPES:
            errors.append(f"browser.browser_type 无效: {browser_type}")
        elif browser_type != "chromium" and not self.get('browser.executable_path'):
            errors.append("browser.browser_type 需要同时配置 browser.executable_path")

        # InfluxDB 配置验证
        influx = self.get('influxdb', {})
        if isinstance(influx, dict) and self.has('influxdb'):
            for key in ('hostname', 'database'):
                if not influx.get(key):
                    errors.append(f"influxdb.{key} 未配置")
            auth_method = str(influx.get('auth_method', 'userpass')).lower()
            if auth_method not in InfluxDefaults.AUTH_METHODS:
                errors.append(f"influxdb.auth_method 无效: {auth_method}")
            elif auth_method == "token":
                if not influx.get('token'):
                    errors.append("influxdb.token 未配置")
                if not influx.get('organization'):
                    errors.append("influxdb.organization 未配置")
            else:
                if not influx.get('username'):
                    errors.append("influxdb.username 未配置")
                if not influx.get('password'):
                    errors.append("influxdb.password 未配置")

        # 网站列表验证
        entries = self.get('website_list', [])
        if not isinstance(entries, list):
            errors.append("website_list 必须是列表")
            return errors

        seen = set()
        for i, item in enumerate(entries):
            if not isinstance(item, dict):
                errors.append(f"网站 #{i+1}: 条目必须是映射")
                continue

            name = str(item.get('name') or '').strip()
            label = name or f"#{i+1}"
            if not name:
                errors.append(f"网站 #{i+1}: name 不能为空")
            elif name in seen:
                errors.append(f"网站 {label}: name 重复")
            seen.add(name)

            ok, reason = validate_url(str(item.get('url') or ''))
            if not ok:
                errors.append(f"网站 {label}: url 无效 ({reason})")

            interval = item.get('check_interval')
            if not isinstance(interval, int) or isinstance(interval, bool):
                errors.append(f"网站 {label}: check_interval 必须是整数")
            elif interval < MonitorLimits.MIN_CHECK_INTERVAL:
                errors.append(
                    f"网站 {label}: check_interval 过小: {interval}，"
                    f"最小值为 {MonitorLimits.MIN_CHECK_INTERVAL} 秒"
                )
            elif interval > MonitorLimits.MAX_CHECK_INTERVAL:
                errors.append(
                    f"网站 {label}: check_interval 过大: {interval}，"
                    f"最大值为 {MonitorLimits.MAX_CHECK_INTERVAL} 秒"
                )

            check_type = str(item.get('check_type') or CheckType.BROWSER.value).lower()
            if check_type not in {t.value for t in CheckType}:
                errors.append(f"网站 {label}: check_type 无效: {check_type}")

        return errors


def init_config(
    config_file: str = DefaultPaths.CONFIG_FILE,
    secrets_file: str = DefaultPaths.SECRETS_FILE,
    watch: bool = True
) -> ConfigManager:
    """
    初始化配置

    Args:
        config_file: 配置文件路径
        secrets_file: 密钥文件路径
        watch: 是否监听文件变更

    Returns:
        ConfigManager 实例
    """
    config = ConfigManager(config_file, secrets_file)

    if watch:
        config.start_watching()

    return config
