"""
工具模块
提供日志、助手函数、重试等通用功能
"""
from .logger import setup_logger
from .helpers import (
    jitter_ms,
    validate_url,
    join_status_codes,
    format_duration,
)
from .retry import (
    retry_async,
    RetryPolicy,
    RetryError,
)

__all__ = [
    # Logger
    "setup_logger",

    # Helpers
    "jitter_ms",
    "validate_url",
    "join_status_codes",
    "format_duration",

    # Retry
    "retry_async",
    "RetryPolicy",
    "RetryError",
]
