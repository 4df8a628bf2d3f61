"""
核心模块
"""
from .admission import AdmissionController, Verdict
from .aggregation import BROWSER_FIELDS, CURL_FIELDS, aggregate_samples, build_metric
from .browser import BrowserLifecycleManager, BrowserState
from .errors import (
    BenchError,
    BrowserLaunchError,
    BrowserRestartBudgetExhausted,
    SinkError,
    ProbeError,
)
from .models import AggregatedMetric, MetricRecord, ResourceMetric, Sample
from .scheduler import SiteScheduler, SchedulerState, SchedulerStats
from .shutdown import FatalShutdown

__all__ = [
    "AdmissionController",
    "Verdict",
    "BROWSER_FIELDS",
    "CURL_FIELDS",
    "aggregate_samples",
    "build_metric",
    "BrowserLifecycleManager",
    "BrowserState",
    "BenchError",
    "BrowserLaunchError",
    "BrowserRestartBudgetExhausted",
    "SinkError",
    "ProbeError",
    "AggregatedMetric",
    "MetricRecord",
    "ResourceMetric",
    "Sample",
    "SiteScheduler",
    "SchedulerState",
    "SchedulerStats",
    "FatalShutdown",
]
