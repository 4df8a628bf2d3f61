"""
指标存储模块
"""
from .base import MetricsSink, LogSink
from .influx import InfluxDBSink

__all__ = [
    "MetricsSink",
    "LogSink",
    "InfluxDBSink",
]
