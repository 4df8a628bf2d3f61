"""
配置模块
"""
from .settings import (
    ConfigManager,
    BenchSettings,
    BrowserConfig,
    InfluxConfig,
    LoggingConfig,
    init_config,
)
from .sites import CheckType, SiteEntry

__all__ = [
    # Settings
    "ConfigManager",
    "BenchSettings",
    "BrowserConfig",
    "InfluxConfig",
    "LoggingConfig",
    "init_config",
    # Sites
    "CheckType",
    "SiteEntry",
]
