"""
命令行参数测试
"""
import pytest
import sys
import yaml
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent.parent))

from main import apply_overrides, create_sink, parse_args
from websitebench.config.settings import ConfigManager
from websitebench.sinks import InfluxDBSink, LogSink


def make_config(tmp_path):
    config_file = tmp_path / "websitebench.yaml"
    config_file.write_text(yaml.safe_dump({
        "influxdb": {"hostname": "h", "database": "d", "username": "u", "password": "p"},
        "website_list": [],
    }), encoding="utf-8")
    return ConfigManager(str(config_file), str(tmp_path / "secrets.yaml"))


def test_defaults():
    args = parse_args([])

    assert args.config == "conf/websitebench.yaml"
    assert args.secrets == "conf/websitebench.secrets.yaml"
    assert args.dry_run == False
    assert args.browserpath is None


def test_browsertype_requires_browserpath():
    """--browsertype 需要同时指定 --browserpath"""
    with pytest.raises(SystemExit):
        parse_args(["--browsertype", "firefox"])

    args = parse_args(["--browsertype", "firefox", "--browserpath", "/usr/bin/firefox"])
    assert args.browsertype == "firefox"


def test_overrides_applied(tmp_path):
    """命令行参数覆盖配置文件"""
    config = make_config(tmp_path)
    args = parse_args([
        "--browserpath", "/opt/chrome",
        "--ignore-ssl-errors",
        "--no-headless",
        "--no-sandbox",
        "--log-resource-errors",
        "-d",
    ])

    apply_overrides(config, args)

    assert config.browser.executable_path == "/opt/chrome"
    assert config.browser.headless == False
    assert config.browser.no_sandbox == True
    assert config.settings.ignore_ssl_errors == True
    assert config.settings.log_resource_errors == True
    assert config.logging_config.level == "DEBUG"


def test_create_sink(tmp_path):
    """试运行使用日志存储"""
    config = make_config(tmp_path)

    assert isinstance(create_sink(config, dry_run=True), LogSink)
    assert isinstance(create_sink(config), InfluxDBSink)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
