"""
配置管理测试
"""
import pytest
import sys
import yaml
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from websitebench.config.settings import ConfigManager
from websitebench.config.sites import CheckType


BASE_CONFIG = {
    "instance_name": "bench-01",
    "max_concurrent_jobs": 3,
    "repeat_count": 2,
    "influxdb": {
        "hostname": "influx.local",
        "port": 8086,
        "database": "bench",
        "username": "writer",
    },
    "website_list": [
        {"name": "site-a", "url": "https://a.example/", "check_interval": 60, "check_type": "browser"},
        {"name": "site-b", "url": "http://b.example/", "check_interval": 30, "check_type": "curl"},
    ],
}


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return path


def make_manager(tmp_path, data=None, secrets=None):
    config_file = write_yaml(tmp_path / "websitebench.yaml", data if data is not None else BASE_CONFIG)
    secrets_file = tmp_path / "websitebench.secrets.yaml"
    if secrets is not None:
        write_yaml(secrets_file, secrets)
    return ConfigManager(str(config_file), str(secrets_file))


def test_valid_config_with_secrets(tmp_path):
    """密钥文件的 influxdb 段覆盖主配置"""
    config = make_manager(tmp_path, secrets={"influxdb": {"password": "s3cret"}})

    assert config.validate() == []

    influx = config.influxdb
    assert influx.hostname == "influx.local"
    assert influx.username == "writer"
    assert influx.password == "s3cret"
    assert influx.base_url == "http://influx.local:8086"
    assert "s3cret" not in repr(influx)

    settings = config.settings
    assert settings.instance_name == "bench-01"
    assert settings.max_concurrent_jobs == 3
    assert settings.repeat_count == 2
    assert settings.browser_mode == "repeat"
    assert settings.user_agent is None

    sites = config.websites
    assert [s.name for s in sites] == ["site-a", "site-b"]
    assert sites[1].check_type == CheckType.CURL


def test_missing_password_rejected(tmp_path):
    """userpass 认证需要密码"""
    config = make_manager(tmp_path)

    errors = config.validate()

    assert any("influxdb.password" in e for e in errors)


def test_token_auth_requirements(tmp_path):
    """token 认证需要 token 和 organization"""
    data = dict(BASE_CONFIG, influxdb={"hostname": "h", "database": "bucket", "auth_method": "token"})
    config = make_manager(tmp_path, data)

    errors = config.validate()

    assert any("influxdb.token" in e for e in errors)
    assert any("influxdb.organization" in e for e in errors)
    assert not any("influxdb.password" in e for e in errors)


def test_website_validation_errors(tmp_path):
    """网站条目逐项校验"""
    data = dict(BASE_CONFIG, website_list=[
        {"name": "", "url": "https://a.example/", "check_interval": 60},
        {"name": "dup", "url": "https://a.example/", "check_interval": 60},
        {"name": "dup", "url": "https://a.example/", "check_interval": 60},
        {"name": "bad-url", "url": "a.example", "check_interval": 60},
        {"name": "fast", "url": "https://a.example/", "check_interval": 5},
        {"name": "text", "url": "https://a.example/", "check_interval": "60"},
        {"name": "kind", "url": "https://a.example/", "check_interval": 60, "check_type": "ping"},
    ])
    config = make_manager(tmp_path, data, secrets={"influxdb": {"password": "x"}})

    errors = config.validate()

    assert any("name 不能为空" in e for e in errors)
    assert any("dup: name 重复" in e for e in errors)
    assert any("bad-url: url 无效" in e for e in errors)
    assert any("fast: check_interval 过小" in e for e in errors)
    assert any("text: check_interval 必须是整数" in e for e in errors)
    assert any("kind: check_type 无效" in e for e in errors)


def test_global_validation_errors(tmp_path):
    """全局配置校验"""
    data = dict(
        BASE_CONFIG,
        max_concurrent_jobs=0,
        repeat_count=0,
        user_agent="  ",
        allow_caching="yes",
        browser_mode="fast",
        log_level="LOUD",
        browser={"browser_type": "firefox"},
    )
    config = make_manager(tmp_path, data, secrets={"influxdb": {"password": "x"}})

    errors = config.validate()

    assert any("max_concurrent_jobs" in e for e in errors)
    assert any("repeat_count" in e for e in errors)
    assert any("user_agent" in e for e in errors)
    assert any("allow_caching" in e for e in errors)
    assert any("browser_mode" in e for e in errors)
    assert any("log_level" in e for e in errors)
    assert any("executable_path" in e for e in errors)


def test_missing_required_sections(tmp_path):
    """缺少必填配置项"""
    config = make_manager(tmp_path, {"instance_name": "x"})

    errors = config.validate()

    assert any("website_list" in e for e in errors)
    assert any("influxdb" in e for e in errors)


def test_missing_file(tmp_path):
    """配置文件不存在"""
    config = ConfigManager(str(tmp_path / "missing.yaml"), str(tmp_path / "missing.secrets.yaml"))

    assert config.get("website_list") is None
    assert config.validate()


def test_command_line_override(tmp_path):
    """命令行覆盖项优先于配置文件"""
    config = make_manager(tmp_path)

    config.override("browser.executable_path", "/opt/chrome")
    config.override("browser.no_sandbox", True)
    config.override("ignore_ssl_errors", True)

    browser = config.browser
    assert browser.executable_path == "/opt/chrome"
    assert browser.no_sandbox == True
    assert browser.debugging_port == 9222
    assert config.settings.ignore_ssl_errors == True


def test_reload_notifies_on_change(tmp_path):
    """配置变更后重新加载并通知回调"""
    config = make_manager(tmp_path)
    changes = []
    config.on_config_change(lambda c: changes.append(len(c.websites)))

    # 内容未变化时不通知
    assert config.reload() == True
    assert changes == []

    sites = BASE_CONFIG["website_list"] + [
        {"name": "site-c", "url": "https://c.example/", "check_interval": 120},
    ]
    write_yaml(Path(config.config_file), dict(BASE_CONFIG, website_list=sites))

    assert config.reload() == True
    assert changes == [3]


def test_reload_keeps_old_config_on_error(tmp_path):
    """新配置解析失败时保留旧配置"""
    config = make_manager(tmp_path)

    Path(config.config_file).write_text("website_list: [unclosed", encoding="utf-8")

    assert config.reload() == False
    assert len(config.websites) == 2


def test_example_config_parses():
    """示例配置可以被读取"""
    example = Path(__file__).parent.parent / "conf" / "websitebench.yaml.example"
    config = ConfigManager(str(example), str(example.with_name("none.yaml")))

    assert len(config.websites) == 3
    assert config.browser.max_restarts == 5
    errors = config.validate()
    assert errors == ["influxdb.password 未配置"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
