"""
指标存储基类
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from ..core.models import MetricRecord


logger = logging.getLogger(__name__)


class MetricsSink(ABC):
    """指标存储基类"""

    @property
    @abstractmethod
    def name(self) -> str:
        """存储名称"""
        pass

    @abstractmethod
    async def check_connection(self) -> None:
        """
        检查存储是否可用

        Raises:
            SinkError: 存储不可用
        """
        pass

    @abstractmethod
    async def write_points(self, records: Sequence[MetricRecord]) -> bool:
        """
        写入指标（不重试）

        Returns:
            是否写入成功
        """
        pass

    async def close(self):
        """关闭连接"""
        pass


class LogSink(MetricsSink):
    """只把指标写入日志（试运行模式）"""

    def __init__(self):
        self.records: List[MetricRecord] = []

    @property
    def name(self) -> str:
        return "log"

    async def check_connection(self) -> None:
        logger.info("试运行模式：指标只写入日志")

    async def write_points(self, records: Sequence[MetricRecord]) -> bool:
        for record in records:
            tags = ",".join(f"{k}={v}" for k, v in record.tags.items())
            values = " ".join(
                f"{k}={v:.2f}" if isinstance(v, float) else f"{k}={v}"
                for k, v in record.fields.items()
            )
            logger.info(f"{record.measurement},{tags} {values}")
        self.records.extend(records)
        return True
