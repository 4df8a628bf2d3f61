"""
准入控制测试
"""
import pytest
import sys
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from websitebench.config.sites import CheckType, SiteEntry
from websitebench.core.admission import AdmissionController, Verdict


def make_site(name, check_type=CheckType.CURL):
    return SiteEntry(name=name, url=f"https://{name}.example/", check_interval=60, check_type=check_type)


def test_capacity_limit():
    """运行数不超过 max_concurrent_jobs"""
    admission = AdmissionController(2, browser_ready=lambda: True)
    sites = [make_site(f"site{i}") for i in range(5)]

    verdicts = [admission.evaluate(s) for s in sites]

    assert verdicts == [Verdict.GRANTED, Verdict.GRANTED, Verdict.DENIED, Verdict.DENIED, Verdict.DENIED]
    assert admission.running == 2


def test_release_frees_slot():
    """释放名额后可以再次获准"""
    admission = AdmissionController(1, browser_ready=lambda: True)
    a, b = make_site("a"), make_site("b")

    assert admission.evaluate(a) == Verdict.GRANTED
    assert admission.evaluate(b) == Verdict.DENIED

    admission.release(a)
    assert admission.running == 0
    assert admission.evaluate(b) == Verdict.GRANTED


def test_release_never_below_zero(caplog):
    """多余的释放不会让计数变为负数"""
    admission = AdmissionController(1, browser_ready=lambda: True)
    site = make_site("a")

    admission.release(site)

    assert admission.running == 0
    assert "计数已为 0" in caplog.text


def test_browser_not_ready_denied():
    """浏览器未就绪时拒绝浏览器检查，不占用名额"""
    ready = {"value": False}
    admission = AdmissionController(3, browser_ready=lambda: ready["value"])
    browser_site = make_site("b", CheckType.BROWSER)
    curl_site = make_site("c")

    assert admission.evaluate(browser_site) == Verdict.DENIED
    assert admission.running == 0

    # curl 检查不受浏览器状态影响
    assert admission.evaluate(curl_site) == Verdict.GRANTED

    ready["value"] = True
    assert admission.evaluate(browser_site) == Verdict.GRANTED
    assert admission.running == 2
    assert admission.running_browser == 1


def test_running_browser_counter():
    """浏览器检查单独计数"""
    admission = AdmissionController(5, browser_ready=lambda: True)
    b1, b2 = make_site("b1", CheckType.BROWSER), make_site("b2", CheckType.BROWSER)
    c1 = make_site("c1")

    for site in (b1, b2, c1):
        assert admission.evaluate(site) == Verdict.GRANTED
    assert admission.running_browser == 2

    admission.release(b1)
    admission.release(c1)
    assert admission.running == 1
    assert admission.running_browser == 1


def test_invalid_limit():
    """并发上限必须大于 0"""
    with pytest.raises(ValueError):
        AdmissionController(0, browser_ready=lambda: True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
