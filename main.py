#!/usr/bin/env python3
"""
websiteBench - 主程序入口
定期测试网站的页面加载与网络性能，并将结果写入 InfluxDB
支持 YAML 配置文件、独立密钥文件和新增站点热加载
"""
import sys
import asyncio
import signal
import logging
import argparse
from pathlib import Path
from typing import List, Optional

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent))

from websitebench.config.settings import ConfigManager, init_config
from websitebench.config.sites import CheckType, SiteEntry
from websitebench.constants import DefaultPaths, HTTPDefaults, VERSION
from websitebench.core.admission import AdmissionController
from websitebench.core.browser import BrowserLifecycleManager, BrowserState
from websitebench.core.errors import BrowserRestartBudgetExhausted, SinkError
from websitebench.core.scheduler import SiteScheduler
from websitebench.core.shutdown import FatalShutdown
from websitebench.probes.browser import BrowserProbe
from websitebench.probes.http import HttpProbe
from websitebench.sinks.base import LogSink, MetricsSink
from websitebench.sinks.influx import InfluxDBSink
from websitebench.utils.helpers import format_duration
from websitebench.utils.logger import setup_logger
from websitebench.utils.retry import RetryError, RetryPolicy, retry_async


logger = logging.getLogger("websitebench")


def parse_args(argv: Optional[List[str]] = None):
    """解析命令行参数"""
    parser = argparse.ArgumentParser(
        description=f"websiteBench {VERSION} - 网站性能基准测试",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  python main.py                         # 使用默认配置启动
  python main.py -c conf/my.yaml         # 使用自定义配置文件
  python main.py --validate              # 验证配置文件并退出
  python main.py --dry-run -d            # 不写入 InfluxDB，只输出日志
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DefaultPaths.CONFIG_FILE,
        help=f"配置文件路径 (默认: {DefaultPaths.CONFIG_FILE})"
    )

    parser.add_argument(
        "--secrets", "-s",
        type=str,
        default=DefaultPaths.SECRETS_FILE,
        help=f"密钥文件路径 (默认: {DefaultPaths.SECRETS_FILE})"
    )

    parser.add_argument(
        "--browserpath",
        type=str,
        help="浏览器可执行文件路径"
    )

    parser.add_argument(
        "--browsertype",
        choices=["chromium", "firefox"],
        help="浏览器类型（需要同时指定 --browserpath）"
    )

    parser.add_argument(
        "--ignore-ssl-errors",
        action="store_true",
        help="忽略证书错误"
    )

    parser.add_argument(
        "--no-headless",
        action="store_true",
        help="显示浏览器窗口"
    )

    parser.add_argument(
        "--no-sandbox",
        action="store_true",
        help="以 --no-sandbox 启动浏览器"
    )

    parser.add_argument(
        "--log-resource-errors",
        action="store_true",
        help="记录子资源加载失败"
    )

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="输出调试日志"
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="验证配置文件并退出"
    )

    parser.add_argument(
        "--no-watch",
        action="store_true",
        help="禁用配置文件热加载"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="不写入 InfluxDB，指标只输出到日志"
    )

    args = parser.parse_args(argv)
    if args.browsertype and not args.browserpath:
        parser.error("--browsertype 需要同时指定 --browserpath")
    return args


def apply_overrides(config: ConfigManager, args):
    """命令行参数覆盖配置文件"""
    if args.browserpath:
        config.override("browser.executable_path", args.browserpath)
    if args.browsertype:
        config.override("browser.browser_type", args.browsertype)
    if args.ignore_ssl_errors:
        config.override("ignore_ssl_errors", True)
    if args.no_headless:
        config.override("browser.headless", False)
    if args.no_sandbox:
        config.override("browser.no_sandbox", True)
    if args.log_resource_errors:
        config.override("log_resource_errors", True)
    if args.debug:
        config.override("log_level", "DEBUG")


def create_sink(config: ConfigManager, dry_run: bool = False) -> MetricsSink:
    """创建指标存储"""
    if dry_run:
        return LogSink()
    return InfluxDBSink(config.influxdb)


def print_summary(config: ConfigManager):
    """显示配置摘要"""
    settings = config.settings
    sites = config.websites
    enabled = [s for s in sites if not s.disabled]
    browser_sites = sum(1 for s in enabled if s.is_browser)

    print("\n📋 配置摘要:")
    print(f"   - 实例名称: {settings.instance_name}")
    print(f"   - InfluxDB: {config.influxdb.base_url} ({config.influxdb.auth_method})")
    print(f"   - 最大并发: {settings.max_concurrent_jobs}")
    print(f"   - 重复次数: {settings.repeat_count} ({settings.browser_mode})")
    print(f"   - 网站数量: {len(enabled)}/{len(sites)} 启用 "
          f"(浏览器 {browser_sites}, curl {len(enabled) - browser_sites})")


async def run(config: ConfigManager, args) -> int:
    """运行基准测试，直到收到关闭信号或发生致命错误"""
    loop = asyncio.get_running_loop()
    shutdown = FatalShutdown()

    # 注册信号处理（仅 Unix）
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown.trigger, f"收到信号 {sig.name}", 0)
    except NotImplementedError:
        # Windows 不支持 add_signal_handler
        pass

    settings = config.settings
    sink = create_sink(config, args.dry_run)

    admission: Optional[AdmissionController] = None
    browser = BrowserLifecycleManager(
        config.browser,
        ignore_https_errors=settings.ignore_ssl_errors,
        running_jobs=lambda: admission.running_browser if admission else 0,
        on_fatal=shutdown.trigger
    )
    admission = AdmissionController(settings.max_concurrent_jobs, browser_ready=browser.is_ready)

    probes = {
        CheckType.CURL: HttpProbe(
            repeat_count=settings.repeat_count,
            user_agent=settings.user_agent,
            ignore_ssl_errors=settings.ignore_ssl_errors
        ),
        CheckType.BROWSER: BrowserProbe(
            browser,
            repeat_count=settings.repeat_count,
            mode=settings.browser_mode,
            allow_caching=settings.allow_caching,
            user_agent=settings.user_agent,
            log_resource_errors=settings.log_resource_errors
        ),
    }
    scheduler = SiteScheduler(admission, probes, sink, settings.instance_name)

    async def ensure_browser():
        # 只有存在浏览器检查时才启动浏览器
        if browser.state == BrowserState.UNINITIALIZED:
            await browser.start()
            browser.start_maintenance()

    async def register_sites(sites: List[SiteEntry]):
        if any(s.is_browser and not s.disabled for s in sites):
            try:
                await ensure_browser()
            except BrowserRestartBudgetExhausted as e:
                shutdown.trigger(str(e))
                return
        for site in sites:
            scheduler.register(site)

    async def add_new_sites():
        errors = config.validate()
        if errors:
            for error in errors:
                logger.error(f"更新后的配置无效，忽略: {error}")
            return
        new_sites = [s for s in config.websites if not scheduler.is_scheduled(s.name)]
        if new_sites:
            logger.info(f"配置文件中发现 {len(new_sites)} 个新站点")
            await register_sites(new_sites)

    def on_config_change(cfg: ConfigManager):
        # 在文件监听线程中调用
        asyncio.run_coroutine_threadsafe(add_new_sites(), loop)

    try:
        try:
            await retry_async(
                sink.check_connection,
                policy=RetryPolicy(max_retries=HTTPDefaults.MAX_RETRIES),
                exceptions=(SinkError,),
                label=f"指标存储 ({sink.name}) 连接检查"
            )
        except RetryError as e:
            shutdown.trigger(f"指标存储不可用: {e.last_exception}")
        else:
            await register_sites(config.websites)

        if not shutdown.triggered:
            await scheduler.start()
            if not args.no_watch:
                config.on_config_change(on_config_change)
                config.start_watching()
            logger.info("websiteBench 已启动，按 Ctrl+C 退出")

        exit_code = await shutdown.wait()
    finally:
        config.stop_watching()
        await scheduler.stop()
        for probe in probes.values():
            await probe.close()
        await browser.close()
        await sink.close()

    stats = scheduler.stats
    logger.info(
        f"共运行 {format_duration(stats.uptime_seconds)}: 完成 {stats.completed}，"
        f"失败 {stats.failed}，放弃 {stats.skipped}，写入 {stats.emitted}/{stats.emitted + stats.emit_errors}"
    )

    if exit_code:
        logger.error(f"websiteBench 异常退出 ({exit_code}): {shutdown.reason}")
    else:
        logger.info("👋 已退出")
    return exit_code


def main():
    """主函数"""
    args = parse_args()

    config = init_config(args.config, args.secrets, watch=False)
    apply_overrides(config, args)

    log_config = config.logging_config
    setup_logger(
        "websitebench",
        level=getattr(logging, log_config.level, logging.INFO),
        log_file=log_config.file,
        max_size=log_config.max_size,
        backup_count=log_config.backup_count
    )
    logger.info(f"websiteBench {VERSION}")

    errors = config.validate()

    # 验证模式
    if args.validate:
        print(f"📄 验证配置文件: {args.config}")
        if errors:
            print("\n❌ 配置验证失败:")
            for error in errors:
                print(f"   - {error}")
            sys.exit(1)
        print("\n✅ 配置验证通过!")
        print_summary(config)
        sys.exit(0)

    if errors:
        if not Path(args.config).exists():
            logger.error(f"请先复制 {DefaultPaths.CONFIG_EXAMPLE} 为 {args.config} 并修改")
        for error in errors:
            logger.error(f"配置错误: {error}")
        logging.shutdown()
        sys.exit(1)

    try:
        exit_code = asyncio.run(run(config, args))
    except KeyboardInterrupt:
        exit_code = 0

    logging.shutdown()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
