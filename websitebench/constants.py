"""
常量定义模块
集中管理项目中使用的所有常量
"""
from typing import Final

# ==============================================================================
# 版本信息
# ==============================================================================
__version__: Final[str] = "1.3.0"
VERSION: Final[str] = __version__

# User-Agent 后缀，附加在浏览器 / HTTP 客户端默认 UA 之后
USER_AGENT_SUFFIX: Final[str] = f"websiteBench/{VERSION}"


# ==============================================================================
# 指标存储
# ==============================================================================
MEASUREMENT_NAME: Final[str] = "benchmark"


# ==============================================================================
# 调度配置（毫秒）
# ==============================================================================
class SchedulerDefaults:
    """调度器默认配置"""

    # 启动时的随机延迟，避免所有站点同时触发
    INITIAL_DELAY_MS: Final[tuple] = (0, 5000)
    # 并发已满时的重新调度延迟
    RETRY_DELAY_MS: Final[tuple] = (5000, 15000)
    # 获准执行后的分散延迟
    START_DELAY_MS: Final[tuple] = (2000, 7000)

    # 待处理触发事件队列上限
    QUEUE_SIZE: Final[int] = 1000


# ==============================================================================
# 监控配置范围
# ==============================================================================
class MonitorLimits:
    """监控配置限制"""

    # 检查间隔（秒）
    MIN_CHECK_INTERVAL: Final[int] = 30
    MAX_CHECK_INTERVAL: Final[int] = 86400  # 24小时

    # 并发配置
    MIN_CONCURRENT_JOBS: Final[int] = 1
    DEFAULT_CONCURRENT_JOBS: Final[int] = 5

    # 每次检查的重复次数
    DEFAULT_REPEAT_COUNT: Final[int] = 3
    MAX_REPEAT_COUNT: Final[int] = 20


# ==============================================================================
# 浏览器配置
# ==============================================================================
class BrowserDefaults:
    """浏览器默认配置"""

    MAX_RESTARTS: Final[int] = 5
    RESTART_INTERVAL: Final[int] = 30 * 60  # 30分钟
    DEBUGGING_PORT: Final[int] = 9222

    # 启动失败后的重试间隔（秒）
    LAUNCH_RETRY_DELAY: Final[float] = 2.0

    SUPPORTED_TYPES: Final[tuple] = ("chromium", "firefox")
    SUPPORTED_MODES: Final[tuple] = ("repeat", "resources")


# ==============================================================================
# HTTP 请求配置
# ==============================================================================
class HTTPDefaults:
    """HTTP 请求默认配置"""

    MAX_RETRIES: Final[int] = 3
    RETRY_DELAY: Final[float] = 2.0
    RETRY_MULTIPLIER: Final[float] = 2.0  # 指数退避倍数
    MAX_RETRY_DELAY: Final[float] = 60.0


# ==============================================================================
# InfluxDB
# ==============================================================================
class InfluxDefaults:
    """InfluxDB 默认配置"""

    PORT: Final[int] = 8086
    PROTOCOL: Final[str] = "http"
    PATH: Final[str] = "/"
    TIMEOUT: Final[int] = 10
    AUTH_METHODS: Final[tuple] = ("userpass", "token")


# ==============================================================================
# 安全相关
# ==============================================================================
ALLOWED_URL_SCHEMES: Final[tuple] = ("http", "https")


# ==============================================================================
# 文件路径
# ==============================================================================
class DefaultPaths:
    """默认文件路径"""

    CONFIG_FILE: Final[str] = "conf/websitebench.yaml"
    SECRETS_FILE: Final[str] = "conf/websitebench.secrets.yaml"
    CONFIG_EXAMPLE: Final[str] = "conf/websitebench.yaml.example"


# ==============================================================================
# 日志级别
# ==============================================================================
VALID_LOG_LEVELS: Final[tuple] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
