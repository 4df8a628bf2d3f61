"""
站点配置模块
定义要测试的网站条目
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class CheckType(str, Enum):
    """检查方式"""
    BROWSER = "browser"
    CURL = "curl"


@dataclass(frozen=True)
class SiteEntry:
    """网站条目（调度开始后不可变）"""
    name: str
    url: str
    check_interval: int
    check_type: CheckType = CheckType.BROWSER
    disabled: bool = False

    @property
    def is_browser(self) -> bool:
        """是否使用浏览器检查"""
        return self.check_type == CheckType.BROWSER

    @property
    def request_timeout(self) -> int:
        """单次请求超时（秒），比检查间隔少 1 秒"""
        return max(self.check_interval - 1, 1)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteEntry":
        """从配置字典创建"""
        check_type = data.get("check_type") or CheckType.BROWSER.value
        return cls(
            name=str(data.get("name", "")).strip(),
            url=str(data.get("url", "")).strip(),
            check_interval=int(data.get("check_interval", 0)),
            check_type=CheckType(str(check_type).lower()),
            disabled=bool(data.get("disabled", False)),
        )
