"""
站点调度器测试
"""
import asyncio
import random
import pytest
import sys
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from websitebench.config.sites import CheckType, SiteEntry
from websitebench.core.admission import AdmissionController, Verdict
from websitebench.core.aggregation import CURL_FIELDS, build_metric
from websitebench.core.models import Sample
from websitebench.core.scheduler import SchedulerState, SiteScheduler


class FakeProbe:
    """可控的探测：ok 返回结果，none 放弃检查，error 抛出异常"""

    def __init__(self, mode="ok", gate=None):
        self.mode = mode
        self.gate = gate
        self.calls = []

    async def run(self, site):
        self.calls.append(site.name)
        if self.gate is not None:
            await self.gate.wait()
        if self.mode == "error":
            raise RuntimeError("boom")
        if self.mode == "none":
            return None
        return build_metric(site, [Sample(total=120.0)], 1, CURL_FIELDS, status_codes=[200])


class FakeSink:
    def __init__(self, ok=True):
        self.ok = ok
        self.writes = []

    async def write_points(self, records):
        self.writes.append(list(records))
        return self.ok


def make_site(name, check_interval=60, disabled=False):
    return SiteEntry(
        name=name,
        url=f"https://{name}.example/",
        check_interval=check_interval,
        check_type=CheckType.CURL,
        disabled=disabled
    )


def make_scheduler(max_jobs=5, probe=None, sink=None, **kwargs):
    admission = AdmissionController(max_jobs, browser_ready=lambda: True)
    probe = probe or FakeProbe()
    sink = sink or FakeSink()
    options = dict(initial_delay_ms=(0, 0), start_delay_ms=(0, 0))
    options.update(kwargs)
    scheduler = SiteScheduler(
        admission,
        {CheckType.CURL: probe},
        sink,
        "bench-test",
        rng=random.Random(42),
        **options
    )
    return scheduler, admission, probe, sink


async def drain(scheduler):
    """等待所有检查和写入完成"""
    while scheduler._checks or scheduler._emits:
        await asyncio.gather(*scheduler._checks, *scheduler._emits, return_exceptions=True)


def test_register_twice_single_timer(caplog):
    """重复注册只保留一个定时器并警告一次"""
    async def scenario():
        scheduler, _, _, _ = make_scheduler()
        site = make_site("a")

        assert scheduler.register(site) == True
        assert scheduler.register(site) == False
        await scheduler.start()
        timers = len(scheduler._timers)
        await scheduler.stop()
        return scheduler, timers

    scheduler, timers = asyncio.run(scenario())

    assert scheduler.is_scheduled("a")
    assert timers == 1
    warnings = [r for r in caplog.records if "忽略重复注册" in r.getMessage()]
    assert len(warnings) == 1


def test_disabled_site_skipped():
    """禁用的站点不注册"""
    async def scenario():
        scheduler, _, _, _ = make_scheduler()
        registered = scheduler.register(make_site("off", disabled=True))
        return scheduler, registered

    scheduler, registered = asyncio.run(scenario())

    assert registered == False
    assert not scheduler.is_scheduled("off")


def test_timer_fires_and_emits():
    """定时器触发后执行检查并写入指标"""
    async def scenario():
        scheduler, admission, probe, sink = make_scheduler()
        scheduler.register(make_site("a"))
        await scheduler.start()
        await asyncio.sleep(0.05)
        await drain(scheduler)
        await scheduler.stop()
        return scheduler, admission, probe, sink

    scheduler, admission, probe, sink = asyncio.run(scenario())

    assert scheduler.stats.fires == 1
    assert probe.calls == ["a"]
    assert admission.running == 0
    assert len(sink.writes) == 1
    record = sink.writes[0][0]
    assert record.tags["website"] == "a"
    assert record.tags["instance"] == "bench-test"
    assert record.fields["total"] == 120.0
    assert scheduler.stats.emitted == 1
    assert scheduler.state == SchedulerState.STOPPED


def test_second_site_deferred_when_at_capacity():
    """并发为 1 时第二个站点延后 5-15 秒重新触发"""
    async def scenario():
        gate = asyncio.Event()
        scheduler, admission, probe, _ = make_scheduler(max_jobs=1, probe=FakeProbe(gate=gate))
        delays = []
        scheduler._schedule_later = lambda delay, site: delays.append((delay, site.name))
        await scheduler.start()

        first = scheduler.dispatch(make_site("a"))
        second = scheduler.dispatch(make_site("b"))
        running = admission.running

        gate.set()
        await drain(scheduler)
        await scheduler.stop()
        return first, second, running, delays, admission

    first, second, running, delays, admission = asyncio.run(scenario())

    assert first == Verdict.GRANTED
    assert second == Verdict.DENIED
    assert running == 1
    assert admission.running == 0
    assert len(delays) == 1
    delay, name = delays[0]
    assert name == "b"
    assert 5.0 <= delay < 15.0


def test_deferred_refire_runs_later():
    """被拒绝的站点在延后触发后最终执行"""
    async def scenario():
        gate = asyncio.Event()
        scheduler, admission, probe, sink = make_scheduler(
            max_jobs=1,
            probe=FakeProbe(gate=gate),
            retry_delay_ms=(10, 11)
        )
        await scheduler.start()

        scheduler.dispatch(make_site("a"))
        scheduler.dispatch(make_site("b"))
        await asyncio.sleep(0.05)
        calls_while_blocked = list(probe.calls)

        gate.set()
        for _ in range(20):
            await asyncio.sleep(0.02)
            if "b" in probe.calls:
                break
        await drain(scheduler)
        await scheduler.stop()
        return scheduler, probe, calls_while_blocked, admission

    scheduler, probe, calls_while_blocked, admission = asyncio.run(scenario())

    assert calls_while_blocked == ["a"]
    assert probe.calls == ["a", "b"]
    assert scheduler.stats.deferred >= 1
    assert admission.running == 0


def test_probe_exception_releases_slot():
    """探测异常不影响调度，名额被释放且不写入"""
    async def scenario():
        scheduler, admission, _, sink = make_scheduler(probe=FakeProbe(mode="error"))
        await scheduler.start()
        scheduler.dispatch(make_site("a"))
        await drain(scheduler)
        dispatcher_alive = not scheduler._dispatcher.done()
        await scheduler.stop()
        return scheduler, admission, sink, dispatcher_alive

    scheduler, admission, sink, dispatcher_alive = asyncio.run(scenario())

    assert admission.running == 0
    assert scheduler.stats.failed == 1
    assert sink.writes == []
    assert dispatcher_alive


def test_no_metric_no_sink_call():
    """检查被放弃时不写入指标"""
    async def scenario():
        scheduler, admission, _, sink = make_scheduler(probe=FakeProbe(mode="none"))
        await scheduler.start()
        scheduler.dispatch(make_site("a"))
        await drain(scheduler)
        await scheduler.stop()
        return scheduler, admission, sink

    scheduler, admission, sink = asyncio.run(scenario())

    assert admission.running == 0
    assert scheduler.stats.skipped == 1
    assert sink.writes == []


def test_sink_failure_counted():
    """写入失败只计数，不重试"""
    async def scenario():
        scheduler, _, _, sink = make_scheduler(sink=FakeSink(ok=False))
        await scheduler.start()
        scheduler.dispatch(make_site("a"))
        await drain(scheduler)
        await scheduler.stop()
        return scheduler, sink

    scheduler, sink = asyncio.run(scenario())

    assert len(sink.writes) == 1
    assert scheduler.stats.emit_errors == 1
    assert scheduler.stats.emitted == 0


def test_stop_cancels_running_checks():
    """停止时取消正在运行的检查并释放名额"""
    async def scenario():
        scheduler, admission, _, _ = make_scheduler(probe=FakeProbe(gate=asyncio.Event()))
        await scheduler.start()
        scheduler.dispatch(make_site("a"))
        # 一个在运行中，一个尚未开始
        await asyncio.sleep(0.01)
        scheduler.dispatch(make_site("b"))
        running = admission.running
        await scheduler.stop()
        return admission, running, scheduler

    admission, running, scheduler = asyncio.run(scenario())

    assert running == 2
    assert admission.running == 0
    assert scheduler._checks == set()


def test_register_while_running_starts_timer():
    """运行中注册的站点立即开始调度"""
    async def scenario():
        scheduler, _, probe, _ = make_scheduler()
        await scheduler.start()
        scheduler.register(make_site("late"))
        await asyncio.sleep(0.05)
        await drain(scheduler)
        await scheduler.stop()
        return probe

    probe = asyncio.run(scenario())

    assert probe.calls == ["late"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
