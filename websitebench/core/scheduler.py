"""
站点调度器

每个站点一个可取消的定时任务，触发事件进入有界队列，
由分发任务按准入结果执行检查或延后重新触发。
"""
import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Set, Tuple, TYPE_CHECKING

from ..config.sites import CheckType, SiteEntry
from ..constants import SchedulerDefaults
from ..utils.helpers import jitter_ms
from .admission import AdmissionController, Verdict
from .errors import ProbeError
from .models import AggregatedMetric, MetricRecord

if TYPE_CHECKING:
    from ..probes.base import Probe
    from ..sinks.base import MetricsSink


logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    """调度器状态"""
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class SchedulerStats:
    """调度器统计"""
    fires: int = 0
    deferred: int = 0
    dropped: int = 0
    granted: int = 0
    completed: int = 0
    skipped: int = 0
    failed: int = 0
    emitted: int = 0
    emit_errors: int = 0
    start_time: Optional[datetime] = None
    uptime_seconds: int = 0


class SiteScheduler:
    """站点检查调度器"""

    def __init__(
        self,
        admission: AdmissionController,
        probes: Mapping[CheckType, "Probe"],
        sink: "MetricsSink",
        instance_name: str,
        rng: Optional[random.Random] = None,
        initial_delay_ms: Tuple[int, int] = SchedulerDefaults.INITIAL_DELAY_MS,
        retry_delay_ms: Tuple[int, int] = SchedulerDefaults.RETRY_DELAY_MS,
        start_delay_ms: Tuple[int, int] = SchedulerDefaults.START_DELAY_MS,
        queue_size: int = SchedulerDefaults.QUEUE_SIZE
    ):
        """
        初始化调度器

        Args:
            admission: 准入控制器
            probes: 检查方式 -> 探测实现
            sink: 指标存储
            instance_name: 写入指标的实例名
            rng: 随机数生成器（可选，便于测试）
            initial_delay_ms: 首次触发的随机延迟范围
            retry_delay_ms: 被拒绝后重新触发的随机延迟范围
            start_delay_ms: 获准后开始执行前的随机延迟范围
            queue_size: 待处理触发事件队列上限
        """
        self.admission = admission
        self.probes = dict(probes)
        self.sink = sink
        self.instance_name = instance_name
        self._rng = rng or random.Random()
        self.initial_delay_ms = initial_delay_ms
        self.retry_delay_ms = retry_delay_ms
        self.start_delay_ms = start_delay_ms

        self._state = SchedulerState.STOPPED
        self._stats = SchedulerStats()
        self._sites: Dict[str, SiteEntry] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._deferred: Set[asyncio.TimerHandle] = set()
        self._checks: Set[asyncio.Task] = set()
        self._emits: Set[asyncio.Task] = set()
        self._queue: "asyncio.Queue[SiteEntry]" = asyncio.Queue(maxsize=queue_size)
        self._dispatcher: Optional[asyncio.Task] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def stats(self) -> SchedulerStats:
        if self._stats.start_time:
            self._stats.uptime_seconds = int(
                (datetime.now() - self._stats.start_time).total_seconds()
            )
        return self._stats

    def is_scheduled(self, name: str) -> bool:
        """站点是否已注册"""
        return name in self._sites

    # ==================== 注册 ====================

    def register(self, site: SiteEntry) -> bool:
        """
        注册站点

        Returns:
            是否新注册（已禁用或重复注册返回 False）
        """
        if site.disabled:
            logger.info(f"[{site.name}] 已禁用，跳过")
            return False
        if site.name in self._sites:
            logger.warning(f"[{site.name}] 已在调度中，忽略重复注册")
            return False

        self._sites[site.name] = site
        logger.info(
            f"[{site.name}] 已注册: {site.url} "
            f"({site.check_type.value}, 每 {site.check_interval} 秒)"
        )
        if self._state == SchedulerState.RUNNING:
            self._start_timer(site)
        return True

    def _start_timer(self, site: SiteEntry):
        if site.name not in self._timers:
            self._timers[site.name] = asyncio.create_task(self._timer_loop(site))

    async def _timer_loop(self, site: SiteEntry):
        """站点定时器：随机延迟后首次触发，之后每个间隔触发一次"""
        await asyncio.sleep(jitter_ms(self.initial_delay_ms, self._rng) / 1000)
        while True:
            self._stats.fires += 1
            self._enqueue(site)
            await asyncio.sleep(site.check_interval)

    def _enqueue(self, site: SiteEntry):
        try:
            self._queue.put_nowait(site)
        except asyncio.QueueFull:
            self._stats.dropped += 1
            logger.warning(f"[{site.name}] 待处理队列已满，丢弃本次触发")

    # ==================== 分发 ====================

    async def _dispatch_loop(self):
        while True:
            site = await self._queue.get()
            try:
                self.dispatch(site)
            finally:
                self._queue.task_done()

    def dispatch(self, site: SiteEntry) -> Verdict:
        """对一次触发做准入判断，获准则启动检查，否则延后重新触发"""
        verdict = self.admission.evaluate(site)
        if verdict == Verdict.DENIED:
            self._stats.deferred += 1
            delay = jitter_ms(self.retry_delay_ms, self._rng)
            logger.debug(f"[{site.name}] 暂不能执行，{delay} 毫秒后重试")
            self._schedule_later(delay / 1000, site)
            return verdict

        self._stats.granted += 1
        task = asyncio.create_task(self._run_check(site))
        self._checks.add(task)
        # 名额在完成回调中释放，任务在开始前被取消也能覆盖
        task.add_done_callback(functools.partial(self._check_done, site))
        return verdict

    def _schedule_later(self, delay: float, site: SiteEntry) -> asyncio.TimerHandle:
        """延后重新触发（与站点定时器相互独立）"""
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def refire():
            self._deferred.discard(handle)
            self._enqueue(site)

        handle = loop.call_later(delay, refire)
        self._deferred.add(handle)
        return handle

    async def _run_check(self, site: SiteEntry) -> Optional[AggregatedMetric]:
        """执行一次检查，探测异常在这里截获，不会传到分发逻辑"""
        await asyncio.sleep(jitter_ms(self.start_delay_ms, self._rng) / 1000)
        try:
            probe = self.probes.get(site.check_type)
            if probe is None:
                raise ProbeError(f"没有可用的 {site.check_type.value} 探测")
            logger.debug(f"[{site.name}] 开始检查")
            metric = await probe.run(site)
        except Exception as e:
            self._stats.failed += 1
            logger.error(f"[{site.name}] 检查失败: {e}")
            return None

        if metric is None:
            self._stats.skipped += 1
            logger.info(f"[{site.name}] 本次检查没有结果")
            return None

        self._stats.completed += 1
        self._log_metric(metric)
        return metric

    def _check_done(self, site: SiteEntry, task: asyncio.Task):
        """释放准入名额，然后异步写入结果"""
        self._checks.discard(task)
        self.admission.release(site)

        if task.cancelled():
            logger.debug(f"[{site.name}] 检查已取消")
            return
        metric = task.result()
        if metric is not None:
            self._emit(site, metric.to_records(self.instance_name))

    def _log_metric(self, metric: AggregatedMetric):
        total = metric.values.get("total")
        summary = f"total={total:.1f}ms" if total is not None else ""
        if metric.status_codes:
            summary += f" status={metric.status_codes}"
        if metric.resources:
            summary += f" resources={len(metric.resources)}"
        logger.info(f"[{metric.site.name}] 检查完成: {summary.strip()}")

    def _emit(self, site: SiteEntry, records: List[MetricRecord]):
        """异步写入指标，不等待结果"""
        task = asyncio.create_task(self._write(site, records))
        self._emits.add(task)
        task.add_done_callback(self._emits.discard)

    async def _write(self, site: SiteEntry, records: List[MetricRecord]):
        try:
            ok = await self.sink.write_points(records)
        except Exception as e:
            ok = False
            logger.error(f"[{site.name}] 写入指标异常: {e}")
        if ok:
            self._stats.emitted += 1
        else:
            self._stats.emit_errors += 1

    # ==================== 启停 ====================

    async def start(self):
        """启动调度器"""
        if self._state == SchedulerState.RUNNING:
            logger.warning("调度器已在运行中")
            return

        logger.info(f"启动站点调度器 ({len(self._sites)} 个站点)...")
        self._state = SchedulerState.RUNNING
        self._stats.start_time = datetime.now()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        for site in self._sites.values():
            self._start_timer(site)

    async def stop(self):
        """停止调度器：取消定时器、延后触发、分发任务和正在运行的检查"""
        if self._state == SchedulerState.STOPPED:
            return

        logger.info("停止站点调度器...")
        self._state = SchedulerState.STOPPED

        for handle in list(self._deferred):
            handle.cancel()
        self._deferred.clear()

        tasks = list(self._timers.values()) + list(self._checks)
        if self._dispatcher is not None:
            tasks.append(self._dispatcher)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._dispatcher = None

        # 等待已发出的写入完成
        if self._emits:
            await asyncio.gather(*list(self._emits), return_exceptions=True)

        logger.info(
            f"调度器已停止: 完成 {self._stats.completed}, 失败 {self._stats.failed}, "
            f"延后 {self._stats.deferred}, 写入 {self._stats.emitted}"
        )
