"""
工具函数与关闭协调测试
"""
import asyncio
import logging
import pytest
import sys
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from websitebench.core.errors import SinkError
from websitebench.core.shutdown import FatalShutdown
from websitebench.utils.helpers import format_duration
from websitebench.utils.logger import setup_logger
from websitebench.utils.retry import RetryError, RetryPolicy, retry_async


def test_retry_until_success():
    """失败后重试直到成功"""
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise SinkError("not yet")
        return "ok"

    result = asyncio.run(retry_async(flaky, policy=RetryPolicy(max_retries=3, delay=0), exceptions=(SinkError,)))

    assert result == "ok"
    assert len(attempts) == 3


def test_retry_exhausted():
    """重试次数用尽后抛出 RetryError"""
    async def broken():
        raise SinkError("down")

    with pytest.raises(RetryError) as exc_info:
        asyncio.run(retry_async(broken, policy=RetryPolicy(max_retries=2, delay=0), exceptions=(SinkError,), label="检查"))

    assert exc_info.value.attempts == 3
    assert exc_info.value.label == "检查"
    assert isinstance(exc_info.value.last_exception, SinkError)


def test_retry_policy_delays():
    """退避时间按倍数增长且不超过上限"""
    policy = RetryPolicy(max_retries=4, delay=1.0, multiplier=3.0, max_delay=5.0)

    assert list(policy.delays()) == [1.0, 3.0, 5.0, 5.0]
    assert policy.attempts == 5


def test_retry_other_exceptions_propagate():
    """未列出的异常不重试"""
    attempts = []

    async def wrong():
        attempts.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        asyncio.run(retry_async(wrong, policy=RetryPolicy(max_retries=3, delay=0), exceptions=(SinkError,)))
    assert len(attempts) == 1


def test_fatal_shutdown_first_reason_wins():
    """只记录第一次关闭请求"""
    async def scenario():
        shutdown = FatalShutdown()
        assert shutdown.triggered == False
        shutdown.trigger("浏览器不可用", 1)
        shutdown.trigger("收到信号 SIGTERM", 0)
        return shutdown, await shutdown.wait()

    shutdown, code = asyncio.run(scenario())

    assert code == 1
    assert shutdown.reason == "浏览器不可用"


def test_format_duration():
    """时长格式化"""
    assert format_duration(30) == "30.0秒"
    assert format_duration(90) == "1.5分钟"
    assert format_duration(5400) == "1.5小时"


def test_setup_logger_file(tmp_path):
    """日志写入文件时不包含颜色码"""
    log_file = tmp_path / "logs" / "bench.log"
    logger = setup_logger("websitebench.test", level=logging.DEBUG, log_file=str(log_file))

    logger.warning("hello")
    for handler in logger.handlers:
        handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "hello" in content
    assert "WARNING" in content
    assert "\033[" not in content

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
