"""
性能数据模型

浏览器性能时间线（navigation / resource 条目）在这里被解析为固定字段的记录，
每个样本只解析一次。所有时间单位均为毫秒。
"""
import json
import math
from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Any, Dict, List, Optional, Type, TypeVar

from ..config.sites import SiteEntry
from ..constants import MEASUREMENT_NAME


T = TypeVar("T")


def _number(value: Any) -> Optional[float]:
    """转换为有限浮点数，无法转换时返回 None"""
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _interval(end: Optional[float], start: Optional[float]) -> Optional[float]:
    if end is None or start is None:
        return None
    return end - start


@dataclass
class Sample:
    """单次探测的原始结果，缺失字段表示该项测量失败"""
    total: Optional[float] = None
    dns: Optional[float] = None
    connect: Optional[float] = None
    tls_handshake: Optional[float] = None
    pre_transfer: Optional[float] = None
    ttfb: Optional[float] = None
    download: Optional[float] = None
    dom_interactive: Optional[float] = None
    dom_content: Optional[float] = None
    dom_complete: Optional[float] = None
    status_code: Optional[int] = None


# Sample 字段名 -> 指标存储字段名
RECORD_FIELD_NAMES: Dict[str, str] = {
    "total": "total",
    "dns": "dns",
    "connect": "connect",
    "tls_handshake": "tls_handshake",
    "pre_transfer": "pre_transfer",
    "ttfb": "ttfb",
    "download": "download",
    "dom_interactive": "dom_int",
    "dom_content": "dom_content",
    "dom_complete": "dom_complete",
}


@dataclass
class NavigationTiming:
    """PerformanceNavigationTiming 条目"""
    duration: Optional[float] = None
    domain_lookup_start: Optional[float] = None
    domain_lookup_end: Optional[float] = None
    connect_start: Optional[float] = None
    connect_end: Optional[float] = None
    secure_connection_start: Optional[float] = None
    request_start: Optional[float] = None
    response_start: Optional[float] = None
    response_end: Optional[float] = None
    dom_interactive: Optional[float] = None
    dom_content_loaded_event_start: Optional[float] = None
    dom_content_loaded_event_end: Optional[float] = None
    dom_complete: Optional[float] = None

    _KEYS = {
        "duration": "duration",
        "domain_lookup_start": "domainLookupStart",
        "domain_lookup_end": "domainLookupEnd",
        "connect_start": "connectStart",
        "connect_end": "connectEnd",
        "secure_connection_start": "secureConnectionStart",
        "request_start": "requestStart",
        "response_start": "responseStart",
        "response_end": "responseEnd",
        "dom_interactive": "domInteractive",
        "dom_content_loaded_event_start": "domContentLoadedEventStart",
        "dom_content_loaded_event_end": "domContentLoadedEventEnd",
        "dom_complete": "domComplete",
    }

    @classmethod
    def from_entry(cls, entry: Dict[str, Any]) -> "NavigationTiming":
        return cls(**{attr: _number(entry.get(key)) for attr, key in cls._KEYS.items()})

    def to_sample(self) -> Sample:
        """转换为相对时间间隔"""
        tls = None
        if self.secure_connection_start:
            tls = _interval(self.connect_end, self.secure_connection_start)
        return Sample(
            total=self.duration,
            dns=_interval(self.domain_lookup_end, self.domain_lookup_start),
            connect=_interval(self.connect_end, self.connect_start),
            tls_handshake=tls,
            ttfb=_interval(self.response_start, self.request_start),
            download=_interval(self.response_end, self.response_start),
            dom_interactive=_interval(self.dom_interactive, self.response_end),
            dom_content=_interval(self.dom_content_loaded_event_end, self.dom_content_loaded_event_start),
            dom_complete=_interval(self.dom_complete, self.dom_content_loaded_event_end),
        )


@dataclass
class ResourceTiming:
    """PerformanceResourceTiming 条目"""
    name: str = ""
    initiator_type: str = ""
    start_time: Optional[float] = None
    duration: Optional[float] = None
    redirect_start: Optional[float] = None
    redirect_end: Optional[float] = None
    domain_lookup_start: Optional[float] = None
    domain_lookup_end: Optional[float] = None
    connect_start: Optional[float] = None
    connect_end: Optional[float] = None
    request_start: Optional[float] = None
    response_start: Optional[float] = None
    response_end: Optional[float] = None
    transfer_size: Optional[float] = None
    encoded_body_size: Optional[float] = None
    decoded_body_size: Optional[float] = None

    _KEYS = {
        "start_time": "startTime",
        "duration": "duration",
        "redirect_start": "redirectStart",
        "redirect_end": "redirectEnd",
        "domain_lookup_start": "domainLookupStart",
        "domain_lookup_end": "domainLookupEnd",
        "connect_start": "connectStart",
        "connect_end": "connectEnd",
        "request_start": "requestStart",
        "response_start": "responseStart",
        "response_end": "responseEnd",
        "transfer_size": "transferSize",
        "encoded_body_size": "encodedBodySize",
        "decoded_body_size": "decodedBodySize",
    }

    @classmethod
    def from_entry(cls, entry: Dict[str, Any]) -> "ResourceTiming":
        values = {attr: _number(entry.get(key)) for attr, key in cls._KEYS.items()}
        return cls(
            name=str(entry.get("name") or ""),
            initiator_type=str(entry.get("initiatorType") or "other"),
            **values
        )


@dataclass
class ResourceMetric:
    """导航过程中加载的单个子资源"""
    name: str
    resource_type: str
    status_code: Optional[int] = None
    error_text: Optional[str] = None
    start_time: Optional[float] = None
    duration: Optional[float] = None
    redirect: Optional[float] = None
    dns: Optional[float] = None
    connect: Optional[float] = None
    ttfb: Optional[float] = None
    download: Optional[float] = None
    transfer_size: Optional[float] = None
    encoded_body_size: Optional[float] = None
    decoded_body_size: Optional[float] = None

    @classmethod
    def from_timing(
        cls,
        timing: ResourceTiming,
        status_code: Optional[int] = None,
        error_text: Optional[str] = None
    ) -> "ResourceMetric":
        return cls(
            name=timing.name,
            resource_type=timing.initiator_type,
            status_code=status_code,
            error_text=error_text,
            start_time=timing.start_time,
            duration=timing.duration,
            redirect=_interval(timing.redirect_end, timing.redirect_start),
            dns=_interval(timing.domain_lookup_end, timing.domain_lookup_start),
            connect=_interval(timing.connect_end, timing.connect_start),
            ttfb=_interval(timing.response_start, timing.request_start),
            download=_interval(timing.response_end, timing.response_start),
            transfer_size=timing.transfer_size,
            encoded_body_size=timing.encoded_body_size,
            decoded_body_size=timing.decoded_body_size,
        )

    def to_fields(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {"resource_name": self.name}
        for item in dataclass_fields(self):
            if item.name in ("name", "resource_type"):
                continue
            value = getattr(self, item.name)
            if value is not None:
                values[item.name] = value
        return values


@dataclass
class MetricRecord:
    """写入指标存储的一条数据"""
    tags: Dict[str, str]
    fields: Dict[str, Any]
    measurement: str = MEASUREMENT_NAME


@dataclass
class AggregatedMetric:
    """一次检查（N 个样本）的均值结果"""
    site: SiteEntry
    sample_count: int
    values: Dict[str, float]
    status_codes: Optional[str] = None
    resources: List[ResourceMetric] = field(default_factory=list)

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def to_records(self, instance: str) -> List[MetricRecord]:
        """转换为指标存储记录（导航汇总一条，每个子资源一条）"""
        tags = {
            "website": self.site.name,
            "instance": instance,
            "checkType": self.site.check_type.value,
        }
        record_fields: Dict[str, Any] = {
            RECORD_FIELD_NAMES[name]: value for name, value in self.values.items()
        }
        if self.status_codes is not None:
            record_fields["status_codes"] = self.status_codes

        records = [MetricRecord(tags=tags, fields=record_fields)]
        for resource in self.resources:
            records.append(MetricRecord(
                tags={**tags, "resourceType": resource.resource_type},
                fields=resource.to_fields()
            ))
        return records


def parse_timeline(raw: Any, entry_cls: Type[T]) -> List[T]:
    """
    解析 performance.getEntriesByType() 的 JSON 输出

    Args:
        raw: JSON 字符串（或已解析的列表）
        entry_cls: NavigationTiming 或 ResourceTiming

    Returns:
        解析后的条目列表

    Raises:
        ValueError: JSON 格式错误
    """
    entries = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"性能数据不是列表: {type(entries).__name__}")
    return [entry_cls.from_entry(e) for e in entries if isinstance(e, dict)]
