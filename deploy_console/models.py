from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .process_manager.process_group import ProcessGroup


# ---------------------------------------------------------------------------
# Wire messages: what travels over a session channel
# ---------------------------------------------------------------------------

class MessageType(str, enum.Enum):
    """Inbound control messages sent by the browser."""

    EXECUTE_COMMAND = "execute-command"
    SAVE_CONFIG = "save-config"
    STOP_COMMAND = "stop-command"
    INPUT = "input"


class ChannelEventType(str, enum.Enum):
    """Outbound events delivered to the browser."""

    OUTPUT = "output"                      # child output or informational text
    ERROR = "error"                        # operation-level failure
    COMMAND_COMPLETE = "command-complete"  # active process has exited


@dataclass(frozen=True)
class ChannelEvent:
    type: ChannelEventType
    data: str | None = None

    @classmethod
    def output(cls, text: str) -> ChannelEvent:
        return cls(ChannelEventType.OUTPUT, text)

    @classmethod
    def error(cls, text: str) -> ChannelEvent:
        return cls(ChannelEventType.ERROR, text)

    @classmethod
    def complete(cls) -> ChannelEvent:
        return cls(ChannelEventType.COMMAND_COMPLETE)

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"type": self.type.value}
        if self.data is not None:
            message["data"] = self.data
        return message


# ---------------------------------------------------------------------------
# Process state
# ---------------------------------------------------------------------------

class ProcessStatus(str, enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


@dataclass(eq=False)
class ActiveProcess:
    """The single command a session may have in flight.

    Compared by identity: the registry only releases an entry when it still
    holds this exact object.
    """

    session_id: str
    command: str
    status: ProcessStatus = ProcessStatus.STARTING
    pid: int | None = None
    exit_code: int | None = None
    start_time: float = field(default_factory=time.time)
    group: ProcessGroup | None = field(default=None, repr=False)
    exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _process: asyncio.subprocess.Process | None = field(
        default=None, repr=False
    )
    _reader_tasks: list[asyncio.Task[None]] = field(
        default_factory=list, repr=False
    )

    @property
    def is_running(self) -> bool:
        return self.status == ProcessStatus.RUNNING
