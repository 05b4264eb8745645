from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from deploy_console.config import Config
from deploy_console.models import ChannelEvent, ChannelEventType

SAMPLE_CONFIG = {
    "AWS_ACCESS_KEY_ID": "AKIA1",
    "AWS_SECRET_ACCESS_KEY": "s3cr3t",
    "AWS_REGION": "us-west-2",
    "EC2_TYPE": "c5d.xlarge",
    "ASG_MIN_SIZE": "1",
    "ASG_MAX_SIZE": "3",
    "ASG_DESIRED_CAPACITY": "1",
    "FILESPACE1": "acme.dmpfs",
    "FSUSER1": "ops@acme.example",
    "LLPASSWD1": "hunter2",
    "ROOTPOINT1": "/",
    "FSVERSION": "3",
    "ROOT_ACCESS_KEY": "root",
    "ROOT_SECRET_KEY": "rootsecret",
    "VGW_IAM_DIR": "/var/lib/vgw",
    "VGW_VIRTUAL_DOMAIN": "s3.acme.example",
    "FQDOMAIN": "acme.example",
}


@pytest.fixture(autouse=True)
def _isolate_console_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Settings exported in a developer shell must not leak into tests.
    for name in (
        "DEPLOY_CONSOLE_WORKSPACE",
        "DEPLOY_CONSOLE_CONFIG_PATH",
        "DEPLOY_CONSOLE_HOST",
        "DEPLOY_CONSOLE_PORT",
        "DEPLOY_CONSOLE_SHELL",
        "DEPLOY_CONSOLE_GRACE_PERIOD",
        "DEPLOY_CONSOLE_SWEEP_DELAY",
        "DEPLOY_CONSOLE_SWEEP_PATTERN",
        "DEPLOY_CONSOLE_ALLOWED_ORIGINS",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Config rooted in tmp_path with a short grace period and no pkill sweep."""

    def _make(**overrides: object) -> Config:
        values: dict[str, object] = {
            "workspace_dir": str(tmp_path),
            "config_path": str(tmp_path / "config_vars.txt"),
            "grace_period": 0.5,
            "sweep_delay": 0.0,
            "sweep_pattern": "",
        }
        values.update(overrides)
        return Config(**values)  # type: ignore[arg-type]

    return _make


async def collect_until_complete(
    outbox: asyncio.Queue,
    *,
    timeout_s: float = 10.0,
) -> list[ChannelEvent]:
    events: list[ChannelEvent] = []
    while True:
        event = await asyncio.wait_for(outbox.get(), timeout=timeout_s)
        assert event is not None, "session closed before command-complete"
        events.append(event)
        if event.type is ChannelEventType.COMMAND_COMPLETE:
            return events


async def collect_until_text(
    outbox: asyncio.Queue,
    needle: str,
    *,
    timeout_s: float = 10.0,
) -> list[ChannelEvent]:
    events: list[ChannelEvent] = []
    while needle not in output_text(events):
        event = await asyncio.wait_for(outbox.get(), timeout=timeout_s)
        assert event is not None, f"session closed before {needle!r} arrived"
        events.append(event)
    return events


def output_text(events: list[ChannelEvent]) -> str:
    return "".join(e.data or "" for e in events if e.type is ChannelEventType.OUTPUT)
