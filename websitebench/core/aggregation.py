"""
样本聚合

失败或缺失的样本按 0 计入，分母始终是尝试次数 N。
"""
from typing import Dict, Iterable, List, Optional, Sequence

from .models import AggregatedMetric, ResourceMetric, Sample
from ..config.sites import SiteEntry
from ..utils.helpers import join_status_codes


# 各探测方式上报的数值字段
BROWSER_FIELDS = (
    "total", "dns", "connect", "tls_handshake", "ttfb", "download",
    "dom_interactive", "dom_content", "dom_complete",
)
CURL_FIELDS = (
    "total", "dns", "connect", "tls_handshake", "pre_transfer", "ttfb",
)


def mean_zero_filled(values: Iterable[Optional[float]], count: int) -> float:
    """求均值，None 视为 0，分母固定为 count"""
    if count <= 0:
        raise ValueError(f"样本数必须大于 0: {count}")
    return sum(v for v in values if v is not None) / count


def aggregate_samples(
    samples: Sequence[Optional[Sample]],
    repeat_count: int,
    field_names: Sequence[str]
) -> Dict[str, float]:
    """
    将 N 次重复的样本归约为均值

    Args:
        samples: 已完成的样本（失败的重复可以缺席或为 None）
        repeat_count: 尝试的重复次数 N
        field_names: 需要聚合的 Sample 字段

    Returns:
        {字段名: 均值}
    """
    present = [s for s in samples if s is not None]
    return {
        name: mean_zero_filled((getattr(s, name) for s in present), repeat_count)
        for name in field_names
    }


def build_metric(
    site: SiteEntry,
    samples: Sequence[Optional[Sample]],
    repeat_count: int,
    field_names: Sequence[str],
    status_codes: Optional[List[int]] = None,
    resources: Optional[List[ResourceMetric]] = None
) -> AggregatedMetric:
    """聚合样本并构建检查结果"""
    return AggregatedMetric(
        site=site,
        sample_count=repeat_count,
        values=aggregate_samples(samples, repeat_count, field_names),
        status_codes=join_status_codes(status_codes) if status_codes is not None else None,
        resources=list(resources or []),
    )
