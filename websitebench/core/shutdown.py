"""
关闭协调

所有致命错误都通过 FatalShutdown.trigger() 汇总到主程序，
由主程序统一停止组件、刷新日志并退出。
"""
import asyncio
import logging
from typing import Optional


logger = logging.getLogger(__name__)


class FatalShutdown:
    """关闭信号（致命错误或系统信号）"""

    def __init__(self):
        self._event = asyncio.Event()
        self.exit_code = 0
        self.reason: Optional[str] = None

    @property
    def triggered(self) -> bool:
        return self._event.is_set()

    def trigger(self, reason: str, exit_code: int = 1):
        """
        请求关闭程序

        Args:
            reason: 关闭原因
            exit_code: 进程退出码（致命错误为非 0）
        """
        if self._event.is_set():
            logger.debug(f"已在关闭中，忽略: {reason}")
            return
        self.reason = reason
        self.exit_code = exit_code
        if exit_code:
            logger.critical(f"致命错误: {reason}")
        else:
            logger.info(f"收到关闭请求: {reason}")
        self._event.set()

    async def wait(self) -> int:
        """等待关闭信号，返回退出码"""
        await self._event.wait()
        return self.exit_code
