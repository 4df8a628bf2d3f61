"""
探测模块
"""
from .base import Probe
from .browser import BrowserProbe
from .http import HttpProbe, ShuffledResolver

__all__ = [
    "Probe",
    "BrowserProbe",
    "HttpProbe",
    "ShuffledResolver",
]
