import logging

import pytest
from typer.testing import CliRunner

from copilot_proxy import __version__, cli, logging_utils
from copilot_proxy.chat_proxy import config_loader

runner = CliRunner()


@pytest.fixture(autouse=True)
def drop_managed_log_handlers():
    root = logging.getLogger()
    level = root.level
    yield
    logging_utils._remove_managed_handlers(root)
    root.setLevel(level)
    for name in logging_utils._NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_version_flag():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_config_set_and_get_roundtrip():
    result = runner.invoke(cli.app, ["config", "set", "base_url", "https://alt.example/v4"])
    assert result.exit_code == 0
    assert "base_url = https://alt.example/v4" in result.stdout

    result = runner.invoke(cli.app, ["config", "get", "base_url"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "base_url = https://alt.example/v4"


def test_api_key_is_masked():
    result = runner.invoke(cli.app, ["config", "set", "api_key", "sk-very-secret"])
    assert result.exit_code == 0
    assert "sk-very-secret" not in result.stdout
    assert cli.MASK in result.stdout

    result = runner.invoke(cli.app, ["config", "get", "api_key"])
    assert result.stdout.strip() == f"api_key = {cli.MASK}"
    assert config_loader.load_proxy_config().api_key == "sk-very-secret"


def test_config_get_unset_key():
    result = runner.invoke(cli.app, ["config", "get", "api_key"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "api_key is not set"


def test_config_set_port_requires_integer():
    result = runner.invoke(cli.app, ["config", "set", "port", "eleven"])
    assert result.exit_code == 1
    assert config_loader.load_proxy_config().port == 11434

    result = runner.invoke(cli.app, ["config", "set", "port", "12001"])
    assert result.exit_code == 0
    assert config_loader.load_proxy_config().port == 12001


def test_config_rejects_unknown_key():
    result = runner.invoke(cli.app, ["config", "set", "gpu", "yes"])
    assert result.exit_code == 1
    result = runner.invoke(cli.app, ["config", "get", "gpu"])
    assert result.exit_code == 1


def test_serve_requires_api_key(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda *a, **kw: calls.append((a, kw)))

    result = runner.invoke(cli.app, ["serve"])

    assert result.exit_code == 1
    assert calls == []


def test_serve_starts_uvicorn_with_overrides(monkeypatch, tmp_path):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    monkeypatch.setenv("ZAI_API_KEY", "env-key")

    result = runner.invoke(cli.app, ["serve", "-H", "0.0.0.0", "-p", "12345", "-d"])

    assert result.exit_code == 0, result.output
    assert len(calls) == 1
    app, kwargs = calls[0]
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 12345
    assert kwargs["access_log"] is True
    assert app.state.config.api_key == "env-key"
    assert app.state.config.debug is True
    assert (tmp_path / "logs" / "copilot-proxy.log").exists()


def test_config_get_shows_env_override_next_to_file_value(monkeypatch):
    runner.invoke(cli.app, ["config", "set", "base_url", "https://file.example/v4"])
    monkeypatch.setenv("ZAI_BASE_URL", "https://env.example/v4")

    result = runner.invoke(cli.app, ["config", "get", "base_url"])

    assert result.exit_code == 0
    assert result.stdout.strip() == (
        "base_url = https://env.example/v4 "
        "(from ZAI_BASE_URL; config file: https://file.example/v4)"
    )


def test_config_get_env_override_without_file_value(monkeypatch):
    monkeypatch.setenv("ZAI_PORT", "9300")
    result = runner.invoke(cli.app, ["config", "get", "port"])
    assert result.stdout.strip() == "port = 9300 (from ZAI_PORT; config file: not set)"


def test_config_get_masks_both_api_key_values(monkeypatch):
    runner.invoke(cli.app, ["config", "set", "api_key", "sk-file-secret"])
    monkeypatch.setenv("GLM_API_KEY", "sk-env-secret")

    result = runner.invoke(cli.app, ["config", "get", "api_key"])

    assert "secret" not in result.stdout
    assert result.stdout.strip() == (
        f"api_key = {cli.MASK} (from GLM_API_KEY; config file: {cli.MASK})"
    )


def test_serve_debug_adds_console_handler(monkeypatch):
    monkeypatch.setattr(cli.uvicorn, "run", lambda *a, **kw: None)
    monkeypatch.setenv("ZAI_API_KEY", "env-key")

    result = runner.invoke(cli.app, ["serve", "-d"])

    assert result.exit_code == 0, result.output
    managed = [
        h
        for h in logging.getLogger().handlers
        if getattr(h, logging_utils._MANAGED_HANDLER_FLAG, False)
    ]
    console = [h for h in managed if not isinstance(h, logging.FileHandler)]
    assert len(managed) == 2
    assert len(console) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert "Starting server on 127.0.0.1:11434" in result.stdout


def test_serve_without_flags_logs_to_file_only(monkeypatch):
    monkeypatch.setattr(cli.uvicorn, "run", lambda *a, **kw: None)
    monkeypatch.setenv("ZAI_API_KEY", "env-key")

    result = runner.invoke(cli.app, ["serve"])

    assert result.exit_code == 0, result.output
    managed = [
        h
        for h in logging.getLogger().handlers
        if getattr(h, logging_utils._MANAGED_HANDLER_FLAG, False)
    ]
    assert [type(h) for h in managed] == [logging.FileHandler]
    assert "Starting server" not in result.stdout
