"""
并发准入控制
"""
import logging
from enum import Enum
from typing import Callable

from ..config.sites import SiteEntry


logger = logging.getLogger(__name__)


class Verdict(Enum):
    """准入结果"""
    GRANTED = "granted"
    DENIED = "denied"


class AdmissionController:
    """
    准入控制器

    决定一次检查能否立即执行。判断与计数在同一个同步调用中完成，
    中间没有 await，因此在事件循环内是原子的，不会超额放行。
    """

    def __init__(self, max_concurrent_jobs: int, browser_ready: Callable[[], bool]):
        """
        初始化准入控制器

        Args:
            max_concurrent_jobs: 最大并发检查数
            browser_ready: 返回浏览器是否可用的函数
        """
        if max_concurrent_jobs < 1:
            raise ValueError(f"max_concurrent_jobs 必须大于 0: {max_concurrent_jobs}")
        self.max_concurrent_jobs = max_concurrent_jobs
        self._browser_ready = browser_ready
        self._running = 0
        self._running_browser = 0

    @property
    def running(self) -> int:
        """正在运行的检查数"""
        return self._running

    @property
    def running_browser(self) -> int:
        """正在运行的浏览器检查数"""
        return self._running_browser

    def evaluate(self, site: SiteEntry) -> Verdict:
        """
        评估是否允许执行，获准时占用一个名额

        Returns:
            Verdict.GRANTED 或 Verdict.DENIED
        """
        if site.is_browser and not self._browser_ready():
            logger.debug(f"[{site.name}] 浏览器未就绪，拒绝执行")
            return Verdict.DENIED

        if self._running >= self.max_concurrent_jobs:
            logger.debug(
                f"[{site.name}] 并发已满 ({self._running}/{self.max_concurrent_jobs})，拒绝执行"
            )
            return Verdict.DENIED

        self._running += 1
        if site.is_browser:
            self._running_browser += 1
        return Verdict.GRANTED

    def release(self, site: SiteEntry):
        """释放一个已获准检查占用的名额"""
        if self._running <= 0:
            logger.warning(f"[{site.name}] 释放名额时计数已为 0")
            return
        self._running -= 1
        if site.is_browser and self._running_browser > 0:
            self._running_browser -= 1
