from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_WORKSPACE = "/workspace/terraform"
DEFAULT_PORT = 3001
DEFAULT_SWEEP_PATTERN = "terraform|packer|deploy.sh"


def _default_config_path(workspace_dir: str) -> str:
    """The provisioning scripts read their variables next to the packer tree.

    /workspace/terraform  ->  /workspace/packer/script/config_vars.txt
    """
    return str(Path(workspace_dir).parent / "packer" / "script" / "config_vars.txt")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    workspace_dir: str = DEFAULT_WORKSPACE
    config_path: str = _default_config_path(DEFAULT_WORKSPACE)
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    shell: str = "/bin/sh"
    grace_period: float = 3.0  # seconds between SIGTERM and SIGKILL
    sweep_delay: float = 1.0   # seconds after stop before the pkill sweep
    sweep_pattern: str = DEFAULT_SWEEP_PATTERN
    allowed_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        workspace = os.getenv("DEPLOY_CONSOLE_WORKSPACE", DEFAULT_WORKSPACE)
        config_path = os.getenv("DEPLOY_CONSOLE_CONFIG_PATH") or _default_config_path(workspace)

        # PORT is what container platforms hand us; the prefixed name wins.
        port = _env_int("DEPLOY_CONSOLE_PORT", _env_int("PORT", DEFAULT_PORT))

        raw_origins = os.getenv("DEPLOY_CONSOLE_ALLOWED_ORIGINS", "*")
        origins = tuple(o.strip() for o in raw_origins.split(",") if o.strip())

        return cls(
            workspace_dir=workspace,
            config_path=config_path,
            host=os.getenv("DEPLOY_CONSOLE_HOST", "0.0.0.0"),
            port=port,
            shell=os.getenv("DEPLOY_CONSOLE_SHELL", "/bin/sh"),
            grace_period=_env_float("DEPLOY_CONSOLE_GRACE_PERIOD", 3.0),
            sweep_delay=_env_float("DEPLOY_CONSOLE_SWEEP_DELAY", 1.0),
            sweep_pattern=os.getenv("DEPLOY_CONSOLE_SWEEP_PATTERN", DEFAULT_SWEEP_PATTERN),
            allowed_origins=origins or ("*",),
        )
