"""Process group handle: signals a detached command and all its descendants."""

from __future__ import annotations

import enum
import logging
import os
import signal
from collections.abc import Callable

from deploy_console.errors import SignalError

log = logging.getLogger(__name__)


class SignalKind(enum.Enum):
    GRACEFUL = signal.SIGTERM
    FORCED = signal.SIGKILL


class ProcessGroup:
    """A command spawned as the leader of its own process group.

    The leader was started with ``start_new_session`` so its pid doubles as
    the group id.  ``killpg`` and ``kill`` are injectable so escalation can be
    exercised without a real OS process.
    """

    def __init__(
        self,
        pid: int,
        *,
        killpg: Callable[[int, int], None] = os.killpg,
        kill: Callable[[int, int], None] = os.kill,
    ) -> None:
        self.pid = pid
        self._killpg = killpg
        self._kill = kill

    def signal(self, kind: SignalKind) -> None:
        """Signal every process in the group."""
        try:
            self._killpg(self.pid, kind.value)
        except OSError as exc:
            raise SignalError(
                f"could not send {kind.value.name} to process group {self.pid}: {exc}"
            ) from exc
        log.info("Sent %s to process group %d", kind.value.name, self.pid)

    def signal_leader(self, kind: SignalKind) -> None:
        """Signal only the direct child."""
        try:
            self._kill(self.pid, kind.value)
        except OSError as exc:
            raise SignalError(
                f"could not send {kind.value.name} to process {self.pid}: {exc}"
            ) from exc
        log.info("Sent %s to process %d", kind.value.name, self.pid)

    def force_kill(self) -> None:
        """SIGKILL the group, falling back to the leader alone."""
        try:
            self.signal(SignalKind.FORCED)
        except SignalError as exc:
            log.warning("%s; falling back to the leader", exc)
            self.signal_leader(SignalKind.FORCED)

    def __repr__(self) -> str:
        return f"ProcessGroup(pid={self.pid})"
