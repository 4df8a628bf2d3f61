"""
浏览器生命周期管理 - 使用 Playwright 维护唯一的共享浏览器进程

状态机:
    UNINITIALIZED -> LAUNCHING -> READY
    READY -> DISCONNECTED -> RESTARTING -> READY | FAILED
    READY -> RESTARTING(维护) -> LAUNCHING -> READY
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Tuple

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    BrowserType,
    Page,
    Playwright,
    Error as PlaywrightError
)

from ..config.settings import BrowserConfig
from ..constants import BrowserDefaults
from .errors import BrowserLaunchError, BrowserRestartBudgetExhausted


logger = logging.getLogger(__name__)


class BrowserState(Enum):
    """浏览器状态"""
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"
    DISCONNECTED = "disconnected"
    RESTARTING = "restarting"
    FAILED = "failed"


class BrowserLifecycleManager:
    """浏览器生命周期管理器（每个进程只有一个实例）"""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        ignore_https_errors: bool = False,
        running_jobs: Optional[Callable[[], int]] = None,
        on_fatal: Optional[Callable[[str, int], None]] = None,
        launch_retry_delay: float = BrowserDefaults.LAUNCH_RETRY_DELAY
    ):
        """
        初始化浏览器管理器

        Args:
            config: 浏览器配置
            ignore_https_errors: 是否忽略证书错误
            running_jobs: 返回当前运行中浏览器任务数的函数（维护重启时检查）
            on_fatal: 重启次数用尽时调用的致命错误回调 (reason, exit_code)
            launch_retry_delay: 启动失败后的重试间隔（秒）
        """
        self.config = config or BrowserConfig()
        self.ignore_https_errors = ignore_https_errors
        self.launch_retry_delay = launch_retry_delay
        self._running_jobs = running_jobs or (lambda: 0)
        self._on_fatal = on_fatal

        self._playwright: Optional[Playwright] = None
        self._owns_playwright = False
        self._browser: Optional[Browser] = None
        self._shared_context: Optional[BrowserContext] = None
        self._endpoint: Optional[str] = None
        # connect_over_cdp 得到的句柄，close() 只会断开连接
        self._over_cdp = False
        self._default_user_agent: Optional[str] = None

        self._state = BrowserState.UNINITIALIZED
        self._restart_count = 0
        self._closing = False
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._maintenance_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> BrowserState:
        return self._state

    @property
    def restart_count(self) -> int:
        """连续失败次数（启动失败与意外断开），浏览器探测成功后清零"""
        return self._restart_count

    @property
    def endpoint(self) -> Optional[str]:
        """浏览器重连地址"""
        return self._endpoint

    @property
    def max_restarts(self) -> int:
        return self.config.max_restarts

    def is_ready(self) -> bool:
        """浏览器是否可以接受新的页面"""
        if self._state != BrowserState.READY or self._browser is None:
            return False
        return self._browser.is_connected()

    # ==================== 启动 ====================

    async def start(self, playwright: Optional[Playwright] = None):
        """启动 Playwright 并首次启动浏览器"""
        if playwright is None:
            self._playwright = await async_playwright().start()
            self._owns_playwright = True
        else:
            self._playwright = playwright
        await self.launch()

    def _browser_type(self) -> BrowserType:
        if self._playwright is None:
            raise BrowserLaunchError("Playwright 尚未启动")
        return getattr(self._playwright, self.config.browser_type)

    def _launch_options(self) -> Tuple[Dict[str, Any], Optional[str]]:
        """构建启动参数，返回 (参数, 重连地址)"""
        args = list(self.config.extra_args)
        if self.config.no_sandbox:
            args.append("--no-sandbox")

        endpoint = None
        if self.config.browser_type == "chromium" and self.config.debugging_port:
            args.append(f"--remote-debugging-port={self.config.debugging_port}")
            endpoint = f"http://127.0.0.1:{self.config.debugging_port}"

        options: Dict[str, Any] = {
            "headless": self.config.headless,
            "args": args,
        }
        if self.config.executable_path:
            options["executable_path"] = self.config.executable_path
        return options, endpoint

    async def launch(self) -> Browser:
        """
        启动新的浏览器进程，失败时重试直到成功或次数用尽

        Raises:
            BrowserRestartBudgetExhausted: 连续失败次数达到上限
        """
        async with self._lock:
            while True:
                if self._restart_count >= self.max_restarts:
                    self._state = BrowserState.FAILED
                    logger.error(f"浏览器已连续失败 {self._restart_count} 次，放弃重试")
                    raise BrowserRestartBudgetExhausted(self._restart_count)

                self._state = BrowserState.LAUNCHING
                options, endpoint = self._launch_options()
                logger.info(f"启动浏览器 ({self.config.browser_type})...")

                try:
                    browser = await self._browser_type().launch(**options)
                except PlaywrightError as e:
                    self._restart_count += 1
                    logger.error(f"浏览器启动失败 ({self._restart_count}/{self.max_restarts}): {e}")
                    self._state = BrowserState.RESTARTING
                    await asyncio.sleep(self.launch_retry_delay)
                    continue

                self._attach(browser, endpoint)
                logger.info("浏览器已就绪")
                return browser

    def _attach(self, browser: Browser, endpoint: Optional[str], over_cdp: bool = False):
        """接管浏览器句柄并订阅断开事件"""
        self._browser = browser
        self._endpoint = endpoint
        self._over_cdp = over_cdp
        self._shared_context = None
        browser.on("disconnected", self._handle_disconnected)
        self._state = BrowserState.READY

    # ==================== 断开与重启 ====================

    def _handle_disconnected(self, browser: Browser):
        """Playwright 断开事件回调"""
        self._spawn(self._recover(browser))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _recover(self, browser: Browser):
        try:
            await self.on_disconnected(browser)
        except BrowserRestartBudgetExhausted as e:
            self._fatal(str(e))

    async def on_disconnected(self, browser: Optional[Browser] = None):
        """
        处理浏览器断开

        主动关闭（维护重启、程序退出）只记录调试日志；
        意外断开时先尝试重连一次，失败再重新启动。
        """
        if self._closing or (browser is not None and browser is not self._browser):
            logger.debug("浏览器连接已按计划关闭")
            return

        self._restart_count += 1
        logger.warning(
            f"浏览器意外断开连接 ({self._restart_count}/{self.max_restarts})，尝试恢复..."
        )
        self._state = BrowserState.DISCONNECTED
        self._shared_context = None

        self._state = BrowserState.RESTARTING
        reconnected = await self._reconnect()
        if reconnected is not None and reconnected.is_connected():
            self._attach(reconnected, self._endpoint, over_cdp=True)
            logger.info(f"已重新连接到浏览器: {self._endpoint}")
            return

        await self.launch()

    async def _reconnect(self) -> Optional[Browser]:
        """尝试连接到原浏览器进程"""
        if not self._endpoint:
            logger.debug("没有可用的重连地址")
            return None
        try:
            return await self._browser_type().connect_over_cdp(self._endpoint, timeout=10000)
        except PlaywrightError as e:
            logger.warning(f"重新连接浏览器失败: {e}")
            return None

    async def restart(self, force: bool = True) -> bool:
        """
        维护性重启（仅在没有浏览器任务运行时执行）

        Args:
            force: 为 False 时只在浏览器已不可用时重启

        Returns:
            是否执行了重启
        """
        if not force and self.is_ready():
            return False

        running = self._running_jobs()
        if running > 0:
            logger.info(f"有 {running} 个浏览器任务正在运行，跳过本次维护重启")
            return False
        if self._state != BrowserState.READY:
            logger.debug(f"浏览器状态为 {self._state.value}，跳过本次维护重启")
            return False

        logger.info("执行浏览器维护重启...")
        self._state = BrowserState.RESTARTING
        old_browser = self._browser
        old_context = self._shared_context
        over_cdp = self._over_cdp
        # 先解除引用，断开回调据此识别为主动关闭
        self._browser = None
        self._shared_context = None
        await self._close_quietly(old_context)
        await self._shutdown_browser(old_browser, over_cdp)

        await self.launch()
        return True

    async def maintenance_loop(self):
        """按间隔执行维护重启"""
        interval = self.config.restart_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.restart()
            except BrowserRestartBudgetExhausted as e:
                self._fatal(str(e))
                return

    def start_maintenance(self):
        """启动维护重启任务"""
        if self._maintenance_task is None and self.config.restart_interval > 0:
            self._maintenance_task = asyncio.create_task(self.maintenance_loop())

    def mark_healthy(self):
        """探测成功使用了浏览器，清零重启计数"""
        if self._restart_count:
            logger.debug(f"浏览器工作正常，重启计数清零 (原 {self._restart_count})")
        self._restart_count = 0

    def _fatal(self, reason: str):
        self._state = BrowserState.FAILED
        if self._on_fatal is not None:
            self._on_fatal(reason, 1)
        else:
            logger.critical(f"浏览器不可用: {reason}")

    # ==================== 页面 ====================

    async def _open_page(
        self,
        user_agent: Optional[str],
        shared: bool
    ) -> Tuple[Page, Optional[BrowserContext]]:
        if not self.is_ready():
            raise BrowserLaunchError(f"浏览器未就绪 ({self._state.value})")

        if shared:
            if self._shared_context is None:
                self._shared_context = await self._browser.new_context(
                    user_agent=user_agent,
                    ignore_https_errors=self.ignore_https_errors
                )
            return await self._shared_context.new_page(), None

        context = await self._browser.new_context(
            user_agent=user_agent,
            ignore_https_errors=self.ignore_https_errors
        )
        try:
            page = await context.new_page()
        except PlaywrightError:
            await self._close_quietly(context)
            raise
        return page, context

    @asynccontextmanager
    async def new_page(self, user_agent: Optional[str] = None, shared: bool = False):
        """
        获取页面的上下文管理器

        Args:
            user_agent: 页面使用的 User-Agent
            shared: 是否使用共享上下文（允许缓存），否则使用独立上下文
        """
        page, context = await self._open_page(user_agent, shared)
        try:
            yield page
        finally:
            await self._close_quietly(page, context)

    async def default_user_agent(self) -> str:
        """浏览器默认 User-Agent（首次调用时读取并缓存）"""
        if self._default_user_agent is None:
            async with self.new_page() as page:
                self._default_user_agent = await page.evaluate("() => navigator.userAgent")
        return self._default_user_agent

    # ==================== 关闭 ====================

    async def _close_quietly(self, *targets):
        """关闭页面 / 上下文 / 浏览器，忽略已断开的对象"""
        for target in targets:
            if target is None:
                continue
            try:
                await target.close()
            except PlaywrightError as e:
                logger.warning(f"关闭 {type(target).__name__} 失败: {e}")

    async def _shutdown_browser(self, browser: Optional[Browser], over_cdp: bool):
        """结束浏览器进程；重连得到的句柄需通过 CDP 通知进程退出"""
        if browser is None:
            return
        if over_cdp and browser.is_connected():
            try:
                session = await browser.new_browser_cdp_session()
                await session.send("Browser.close")
            except PlaywrightError as e:
                logger.warning(f"通过 CDP 关闭浏览器进程失败: {e}")
        await self._close_quietly(browser)
        self._over_cdp = False

    async def close(self):
        """关闭浏览器"""
        self._closing = True

        tasks = list(self._tasks)
        if self._maintenance_task is not None:
            tasks.append(self._maintenance_task)
            self._maintenance_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._close_quietly(self._shared_context)
        await self._shutdown_browser(self._browser, self._over_cdp)
        self._shared_context = None
        self._browser = None

        if self._playwright and self._owns_playwright:
            await self._playwright.stop()
        self._playwright = None

        self._state = BrowserState.UNINITIALIZED
        logger.info("浏览器已关闭")

