"""
探测基类
"""
from abc import ABC, abstractmethod
from typing import Optional

from ..config.sites import CheckType, SiteEntry
from ..core.models import AggregatedMetric


class Probe(ABC):
    """探测方式基类"""

    @property
    @abstractmethod
    def check_type(self) -> CheckType:
        """对应的检查方式"""
        pass

    @abstractmethod
    async def run(self, site: SiteEntry) -> Optional[AggregatedMetric]:
        """
        对站点执行一次完整检查（N 次重复）

        Args:
            site: 网站条目

        Returns:
            聚合后的结果；整次检查被放弃时返回 None
        """
        pass

    async def close(self):
        """释放探测使用的资源"""
        pass
