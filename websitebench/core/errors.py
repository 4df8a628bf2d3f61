"""
异常定义
"""


class BenchError(Exception):
    """websiteBench 基础异常"""
    pass


class BrowserLaunchError(BenchError):
    """浏览器启动失败"""
    pass


class BrowserRestartBudgetExhausted(BrowserLaunchError):
    """浏览器重启次数用尽（致命错误）"""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"浏览器重启次数已达上限 ({attempts})")


class SinkError(BenchError):
    """指标存储错误"""
    pass


class ProbeError(BenchError):
    """探测执行错误（单次样本级别）"""
    pass
