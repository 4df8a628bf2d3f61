"""
浏览器导航探测

每次重复打开一个页面，等待网络空闲后读取页面的性能时间线。
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from playwright.async_api import (
    ConsoleMessage,
    Dialog,
    Page,
    Request,
    Response,
    Error as PlaywrightError
)

from ..config.sites import CheckType, SiteEntry
from ..constants import USER_AGENT_SUFFIX
from ..core.aggregation import BROWSER_FIELDS, build_metric
from ..core.browser import BrowserLifecycleManager
from ..core.models import (
    AggregatedMetric,
    NavigationTiming,
    ResourceMetric,
    ResourceTiming,
    Sample,
    parse_timeline,
)
from .base import Probe


logger = logging.getLogger(__name__)


NAVIGATION_SCRIPT = "() => JSON.stringify(performance.getEntriesByType('navigation'))"
RESOURCE_SCRIPT = "() => JSON.stringify(performance.getEntriesByType('resource'))"


class RequestTracker:
    """记录导航期间各子请求的状态码和失败原因"""

    def __init__(self, site: SiteEntry, log_errors: bool = False):
        self.site = site
        self.log_errors = log_errors
        self.status: Dict[str, int] = {}
        self.errors: Dict[str, str] = {}
        self.finished: Set[str] = set()

    def on_response(self, response: Response):
        self.status[response.url] = response.status

    def on_finished(self, request: Request):
        self.finished.add(request.url)

    def on_failed(self, request: Request):
        error_text = request.failure or "unknown"
        self.errors[request.url] = error_text
        if self.log_errors:
            logger.error(f"[{self.site.name}] 资源加载失败: {request.url}")
            logger.error(f"[{self.site.name}] 请求失败原因: {error_text}")
            if request.url in self.status:
                logger.error(f"[{self.site.name}] 返回状态: {self.status[request.url]}")

    def attach(self, page: Page):
        page.on("response", self.on_response)
        page.on("requestfinished", self.on_finished)
        page.on("requestfailed", self.on_failed)


@dataclass
class PageResult:
    """一次导航的结果"""
    sample: Optional[Sample]
    resources: List[ResourceMetric] = field(default_factory=list)
    status_code: Optional[int] = None


async def _dismiss_dialog(dialog: Dialog):
    logger.debug(f"关闭页面对话框: {dialog.type} {dialog.message[:100]}")
    await dialog.dismiss()


def _log_console(message: ConsoleMessage):
    logger.debug(f"页面控制台 [{message.type}]: {message.text[:200]}")


class BrowserProbe(Probe):
    """浏览器导航计时探测"""

    def __init__(
        self,
        browser: BrowserLifecycleManager,
        repeat_count: int = 3,
        mode: str = "repeat",
        allow_caching: bool = False,
        user_agent: Optional[str] = None,
        log_resource_errors: bool = False
    ):
        """
        初始化浏览器探测

        Args:
            browser: 浏览器生命周期管理器
            repeat_count: repeat 模式下每次检查的导航次数
            mode: repeat（多次导航取均值）或 resources（单次导航并上报子资源）
            allow_caching: 是否在共享上下文中打开页面
            user_agent: 自定义 User-Agent，不设置时使用浏览器默认值加后缀
            log_resource_errors: 是否记录子资源加载失败
        """
        self.browser = browser
        self.repeat_count = repeat_count
        self.mode = mode
        self.allow_caching = allow_caching
        self.user_agent = user_agent
        self.log_resource_errors = log_resource_errors
        self._derived_user_agent: Optional[str] = None

    @property
    def check_type(self) -> CheckType:
        return CheckType.BROWSER

    async def get_user_agent(self) -> str:
        if self.user_agent:
            return self.user_agent
        if self._derived_user_agent is None:
            default = await self.browser.default_user_agent()
            self._derived_user_agent = f"{default} {USER_AGENT_SUFFIX}"
        return self._derived_user_agent

    async def run(self, site: SiteEntry) -> Optional[AggregatedMetric]:
        user_agent = await self.get_user_agent()

        if self.mode == "resources":
            result = await self.navigate(site, user_agent, collect_resources=True)
            if result is None:
                return None
            return build_metric(
                site,
                [result.sample],
                1,
                BROWSER_FIELDS,
                status_codes=[result.status_code],
                resources=result.resources
            )

        samples: List[Optional[Sample]] = []
        status_codes: List[int] = []
        for run in range(self.repeat_count):
            logger.debug(f"[{site.name}] 开始第 {run + 1}/{self.repeat_count} 次导航")
            result = await self.navigate(site, user_agent)
            if result is None:
                return None
            samples.append(result.sample)
            status_codes.append(result.status_code)

        return build_metric(site, samples, self.repeat_count, BROWSER_FIELDS, status_codes=status_codes)

    async def navigate(
        self,
        site: SiteEntry,
        user_agent: str,
        collect_resources: bool = False
    ) -> Optional[PageResult]:
        """
        打开页面并读取性能数据

        Returns:
            导航结果；导航失败或没有响应时返回 None（放弃整次检查）
        """
        tracker = RequestTracker(site, self.log_resource_errors)

        async with self.browser.new_page(user_agent=user_agent, shared=self.allow_caching) as page:
            self.browser.mark_healthy()
            page.set_default_timeout(site.request_timeout * 1000)
            page.on("dialog", _dismiss_dialog)
            page.on("console", _log_console)
            tracker.attach(page)

            try:
                response = await page.goto(site.url, wait_until="networkidle")
            except PlaywrightError as e:
                logger.error(f"[{site.name}] 页面打开失败: {e}")
                return None
            if response is None:
                logger.warning(f"[{site.name}] 页面没有返回响应，放弃本次检查")
                return None

            sample = await self._read_navigation(page, site)

            resources: List[ResourceMetric] = []
            if collect_resources:
                resources = await self._read_resources(page, site, tracker)

        return PageResult(sample=sample, resources=resources, status_code=response.status)

    async def _read_navigation(self, page: Page, site: SiteEntry) -> Optional[Sample]:
        try:
            entries = parse_timeline(await page.evaluate(NAVIGATION_SCRIPT), NavigationTiming)
        except (PlaywrightError, ValueError) as e:
            logger.error(f"[{site.name}] 读取导航性能数据失败: {e}")
            return None
        if not entries:
            logger.warning(f"[{site.name}] 页面没有导航性能数据")
            return None
        return entries[0].to_sample()

    async def _read_resources(
        self,
        page: Page,
        site: SiteEntry,
        tracker: RequestTracker
    ) -> List[ResourceMetric]:
        try:
            entries = parse_timeline(await page.evaluate(RESOURCE_SCRIPT), ResourceTiming)
        except (PlaywrightError, ValueError) as e:
            logger.error(f"[{site.name}] 读取资源性能数据失败: {e}")
            return []

        logger.debug(
            f"[{site.name}] 资源 {len(entries)} 个，完成 {len(tracker.finished)}，失败 {len(tracker.errors)}"
        )
        return [
            ResourceMetric.from_timing(
                timing,
                status_code=tracker.status.get(timing.name),
                error_text=tracker.errors.get(timing.name)
            )
            for timing in entries
        ]
