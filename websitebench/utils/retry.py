"""
重试工具模块
只用于启动阶段的连接检查，运行期间的指标写入失败不重试
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple, Type

from ..constants import HTTPDefaults


logger = logging.getLogger(__name__)


class RetryError(Exception):
    """重试次数用尽"""

    def __init__(self, label: str, attempts: int, last_exception: Optional[BaseException] = None):
        super().__init__(f"{label}失败，共尝试 {attempts} 次: {last_exception}")
        self.label = label
        self.attempts = attempts
        self.last_exception = last_exception


@dataclass(frozen=True)
class RetryPolicy:
    """指数退避的重试策略"""
    max_retries: int = HTTPDefaults.MAX_RETRIES
    delay: float = HTTPDefaults.RETRY_DELAY
    multiplier: float = HTTPDefaults.RETRY_MULTIPLIER
    max_delay: float = HTTPDefaults.MAX_RETRY_DELAY

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delays(self) -> Iterator[float]:
        """每次重试前的等待时间"""
        current = self.delay
        for _ in range(self.max_retries):
            yield current
            current = min(current * self.multiplier, self.max_delay)


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    policy: Optional[RetryPolicy] = None,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "操作",
    **kwargs
) -> Any:
    """
    按策略重试异步函数

    Args:
        func: 要执行的异步函数
        policy: 重试策略（默认使用 HTTPDefaults）
        exceptions: 需要重试的异常类型，其他异常直接抛出
        label: 日志中显示的操作名称

    Raises:
        RetryError: 重试次数用尽
    """
    policy = policy or RetryPolicy()
    waits = policy.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            wait = next(waits, None)
            if wait is None:
                raise RetryError(label, attempt, e) from e
            logger.warning(
                f"{label}失败 ({attempt}/{policy.attempts}): {e}，{wait:.1f} 秒后重试"
            )
            await asyncio.sleep(wait)

