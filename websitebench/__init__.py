"""
websiteBench - 网站性能基准测试
"""
from .constants import __version__

__all__ = ["__version__"]
