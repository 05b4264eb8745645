from __future__ import annotations

from pathlib import Path

import pytest

from deploy_console.config import DEFAULT_SWEEP_PATTERN, Config


def test_defaults_match_the_provisioning_layout(tmp_path: Path) -> None:
    config = Config.from_env(tmp_path / "absent.env")

    assert config.workspace_dir == "/workspace/terraform"
    assert config.config_path == "/workspace/packer/script/config_vars.txt"
    assert config.port == 3001
    assert config.shell == "/bin/sh"
    assert config.grace_period == 3.0
    assert config.sweep_pattern == DEFAULT_SWEEP_PATTERN
    assert config.allowed_origins == ("*",)


def test_config_path_follows_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOY_CONSOLE_WORKSPACE", "/srv/infra/terraform")
    config = Config.from_env(tmp_path / "absent.env")
    assert config.config_path == "/srv/infra/packer/script/config_vars.txt"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DEPLOY_CONSOLE_CONFIG_PATH", "/tmp/vars.txt")
    monkeypatch.setenv("DEPLOY_CONSOLE_GRACE_PERIOD", "0.5")
    monkeypatch.setenv("DEPLOY_CONSOLE_SWEEP_PATTERN", "")
    monkeypatch.setenv("DEPLOY_CONSOLE_ALLOWED_ORIGINS", "http://localhost:3000, https://ops.example")

    config = Config.from_env(tmp_path / "absent.env")

    assert config.port == 8080
    assert config.config_path == "/tmp/vars.txt"
    assert config.grace_period == 0.5
    assert config.sweep_pattern == ""
    assert config.allowed_origins == ("http://localhost:3000", "https://ops.example")


def test_prefixed_port_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DEPLOY_CONSOLE_PORT", "9090")
    assert Config.from_env(tmp_path / "absent.env").port == 9090


def test_invalid_number_names_the_variable(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOY_CONSOLE_GRACE_PERIOD", "soon")
    with pytest.raises(ValueError, match="DEPLOY_CONSOLE_GRACE_PERIOD"):
        Config.from_env(tmp_path / "absent.env")


def test_env_file_is_loaded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("DEPLOY_CONSOLE_WORKSPACE=/opt/deploy/terraform\n", encoding="utf-8")
    # Record the variable so monkeypatch removes what load_dotenv sets
    monkeypatch.setenv("DEPLOY_CONSOLE_WORKSPACE", "placeholder")
    monkeypatch.delenv("DEPLOY_CONSOLE_WORKSPACE")

    config = Config.from_env(env_file)

    assert config.workspace_dir == "/opt/deploy/terraform"
