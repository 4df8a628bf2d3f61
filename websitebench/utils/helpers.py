"""
通用辅助函数
"""
import random
from typing import Optional, Sequence, Tuple
from urllib.parse import urlparse

from ..constants import ALLOWED_URL_SCHEMES


def jitter_ms(bounds: Tuple[int, int], rng: Optional[random.Random] = None) -> int:
    """
    在 [low, high) 范围内生成随机延迟

    Args:
        bounds: (最小毫秒, 最大毫秒)
        rng: 随机数生成器（可选，便于测试）

    Returns:
        延迟毫秒数
    """
    low, high = bounds
    if high <= low:
        return low
    return low + int((rng or random).random() * (high - low))


def validate_url(url: str) -> Tuple[bool, Optional[str]]:
    """
    验证 URL 是否是可测试的绝对地址

    Args:
        url: 要验证的 URL

    Returns:
        (is_valid, error_message)
    """
    if not url:
        return False, "URL 不能为空"

    try:
        parsed = urlparse(url)
    except ValueError as e:
        return False, f"URL 解析失败: {e}"

    if parsed.scheme not in ALLOWED_URL_SCHEMES:
        return False, f"不允许的协议: {parsed.scheme or '(空)'}"

    if not parsed.netloc or not parsed.hostname:
        return False, "URL 缺少主机名"

    return True, None


def join_status_codes(codes: Sequence[int]) -> str:
    """将状态码按顺序拼接为冒号分隔的字符串"""
    return ":".join(str(code) for code in codes)


def format_duration(seconds: float) -> str:
    """
    格式化时间间隔

    Args:
        seconds: 秒数

    Returns:
        格式化的时间字符串
    """
    if seconds < 60:
        return f"{seconds:.1f}秒"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}分钟"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}小时"
