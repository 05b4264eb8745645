"""Config file writer: renders deployment parameters for the provisioning CLI.

The file is a fixed contract with ``deploy.sh``: ``KEY="value"`` lines grouped
under ``##--Section--##`` banners, some exported so that sub-tools launched by
the script inherit them.  Values are passed through verbatim; keys the
operator did not supply render as ``undefined`` except for the monitoring
fields, which have documented defaults.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigWriteError

log = logging.getLogger(__name__)

MISSING_VALUE = "undefined"


@dataclass(frozen=True)
class _Entry:
    """One ``KEY="value"`` assignment in the rendered file."""

    name: str
    comment: str | None = None
    source: str | None = None   # config key to read, when it differs from name
    export: bool = False
    default: str | None = None  # used when the value is missing or falsy


# (banner, entries); order is part of the file contract
SECTIONS: tuple[tuple[str, tuple[_Entry, ...]], ...] = (
    ("AWS credentials", (
        _Entry("AWS_ACCESS_KEY_ID", "AWS access credentials", export=True),
        _Entry("AWS_SECRET_ACCESS_KEY", export=True),
    )),
    ("AWS deployment options", (
        _Entry("AWS_REGION", "AWS region where infrastructure will be deployed"),
        _Entry("AWS_DEFAULT_REGION", source="AWS_REGION", export=True),
        _Entry("EC2_TYPE", "EC2 instance type for S3 Gateway (must have instance storage)"),
        _Entry("ASG_MIN_SIZE", "Auto Scaling Group configuration"),
        _Entry("ASG_MAX_SIZE"),
        _Entry("ASG_DESIRED_CAPACITY"),
    )),
    ("LucidLink filespace variables", (
        _Entry("FILESPACE1", "LucidLink filespace name"),
        _Entry("FSUSER1", "LucidLink user email for authentication"),
        _Entry("LLPASSWD1", "LucidLink user password (will be encrypted in AMI)"),
        _Entry("ROOTPOINT1", 'Root point in filespace (usually "/")'),
        _Entry("FSVERSION", 'LucidLink version: "2" for legacy, "3" for latest'),
    )),
    ("versitygw variables", (
        _Entry("ROOT_ACCESS_KEY", "S3 API root credentials"),
        _Entry("ROOT_SECRET_KEY"),
        _Entry("VGW_IAM_DIR", "Directory for VersityGW IAM data"),
        _Entry("VGW_VIRTUAL_DOMAIN", "Your domain for S3 virtual-hosted-style requests"),
        _Entry("FQDOMAIN", "Your base domain"),
    )),
    ("Monitoring and Metrics", (
        _Entry("METRICS_ENABLED", "Enable metrics collection and monitoring stack", default="false"),
        _Entry("GRAFANA_PASSWORD", "Grafana admin password (required when metrics enabled)", default=""),
        _Entry("STATSD_SERVER", "StatsD server address for metrics collection", default="127.0.0.1:8125"),
        _Entry("PROMETHEUS_RETENTION", "Prometheus data retention period", default="15d"),
    )),
)


def _format_value(value: Any) -> str:
    # JSON payloads may carry booleans/numbers; render them as the browser sent them.
    if isinstance(value, str):
        return value
    if value is None:
        return MISSING_VALUE
    return json.dumps(value)


def _resolve(entry: _Entry, config: Mapping[str, Any]) -> str:
    value = config.get(entry.source or entry.name)
    if entry.default is not None and not value:
        return entry.default
    return _format_value(value)


def render_config(config: Mapping[str, Any]) -> str:
    """Render *config* into the text consumed by the provisioning CLI.

    Never fails on missing keys.  The same mapping always produces the same
    text.
    """
    blocks: list[str] = []
    for banner, entries in SECTIONS:
        lines = [f"##--{banner}--##"]
        for entry in entries:
            if entry.comment:
                # Commented entries start a paragraph, except the first in a section
                if len(lines) > 1:
                    lines.append("")
                lines.append(f"# {entry.comment}")
            prefix = "export " if entry.export else ""
            lines.append(f'{prefix}{entry.name}="{_resolve(entry, config)}"')
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def write_config(config: Mapping[str, Any], path: str | Path) -> Path:
    """Overwrite *path* with the rendered config.

    Raises ConfigWriteError for any filesystem failure.  The write is not
    atomic: a crash mid-write leaves a truncated file.
    """
    target = Path(path)
    content = render_config(config)
    log.info("Writing config file to %s (%d keys supplied)", target, len(config))
    try:
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        log.error("Failed to write config file %s: %s", target, exc)
        raise ConfigWriteError(f"{target}: {exc.strerror or exc}") from exc
    return target
