"""Process Supervisor: spawns, streams, and terminates one command per session."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from deploy_console.config import Config
from deploy_console.config_file import write_config
from deploy_console.errors import SessionBusyError, SignalError, SpawnError
from deploy_console.models import (
    ActiveProcess,
    ChannelEvent,
    ProcessStatus,
)
from deploy_console.process_manager.process_group import ProcessGroup, SignalKind
from deploy_console.process_manager.registry import SessionRegistry

log = logging.getLogger(__name__)

# Config keys exported into the command's environment
CREDENTIAL_ENV_KEYS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_REGION")
SECRET_ENV_KEYS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY")

# None on an outbox closes the session
Outbox = asyncio.Queue["ChannelEvent | None"]


def build_environment(
    config: Mapping[str, Any],
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Inherited environment overridden with the submitted credentials.

    ``AWS_DEFAULT_REGION`` follows ``AWS_REGION``.  An empty ``AWS_PROFILE``
    is dropped so the AWS tooling does not look for a profile named "".
    """
    env = dict(os.environ if base is None else base)
    for key in CREDENTIAL_ENV_KEYS:
        value = config.get(key)
        if value is not None:
            env[key] = str(value)
    if config.get("AWS_REGION") is not None:
        env["AWS_DEFAULT_REGION"] = str(config["AWS_REGION"])
    if not env.get("AWS_PROFILE"):
        env.pop("AWS_PROFILE", None)
    return env


class ProcessSupervisor:
    """Tracks at most one running command per session.

    Events for a session are queued on its outbox, which the transport
    drains.  A ``None`` on the outbox means the session is gone.
    """

    def __init__(
        self,
        config: Config,
        *,
        group_factory: Callable[[int], ProcessGroup] = ProcessGroup,
    ) -> None:
        self._config = config
        self._group_factory = group_factory
        self._registry = SessionRegistry()
        self._outboxes: dict[str, Outbox] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(self, session_id: str) -> Outbox:
        outbox: Outbox = asyncio.Queue()
        self._outboxes[session_id] = outbox
        return outbox

    def publish(self, session_id: str, event: ChannelEvent) -> None:
        """Queue *event* for the session; dropped once it has disconnected."""
        outbox = self._outboxes.get(session_id)
        if outbox is None:
            log.debug("Dropping %s for closed session %s", event.type.value, session_id)
            return
        outbox.put_nowait(event)

    def disconnect(self, session_id: str) -> None:
        """Release everything the session owns.

        No further events reach the session.  A running command is
        terminated best-effort.
        """
        outbox = self._outboxes.pop(session_id, None)
        if outbox is not None:
            # Undelivered events are discarded; the transport is already gone
            while not outbox.empty():
                outbox.get_nowait()
            outbox.put_nowait(None)

        active = self._registry.pop(session_id)
        if active is None or active.group is None:
            # Still starting: start() notices the released entry after spawning
            return

        log.info("Session %s disconnected with pid %s running", session_id, active.pid)
        active.status = ProcessStatus.STOPPING
        try:
            active.group.signal(SignalKind.GRACEFUL)
        except SignalError as exc:
            log.info("Ignoring signal failure on disconnect: %s", exc)
            return
        self._spawn_task(self._escalate(active), name=f"{session_id}-escalate")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def save_config(self, config: Mapping[str, Any]) -> Path:
        """Write the config file without blocking the event loop."""
        return await asyncio.to_thread(write_config, config, self._config.config_path)

    async def start(
        self,
        session_id: str,
        command: str,
        config: Mapping[str, Any],
    ) -> ActiveProcess:
        """Write the config file and run *command* for the session.

        Raises SessionBusyError if the session already has a command,
        ConfigWriteError if the config file cannot be written and SpawnError
        if the shell cannot be started.  The registry entry is released on
        every failure path.
        """
        active = ActiveProcess(session_id=session_id, command=command)
        if not self._registry.insert_if_absent(session_id, active):
            raise SessionBusyError("A command is already running for this session")

        try:
            await self.save_config(config)
        except Exception:
            self._registry.discard(session_id, active)
            raise

        env = build_environment(config)
        log.info(
            "Session %s spawning %r in %s (AWS_ACCESS_KEY_ID=%s, AWS_SECRET_ACCESS_KEY=%s, AWS_REGION=%s)",
            session_id,
            command,
            self._config.workspace_dir,
            *("[PRESENT]" if env.get(key) else "[MISSING]" for key in SECRET_ENV_KEYS),
            env.get("AWS_REGION"),
        )
        self.publish(session_id, ChannelEvent.output(f"Executing: {command}\r\n"))

        try:
            process = await asyncio.create_subprocess_exec(
                self._config.shell,
                "-c",
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._config.workspace_dir,
                env=env,
                # New process group so stop reaches every provisioning sub-tool
                start_new_session=True,
            )
        except OSError as exc:
            self._registry.discard(session_id, active)
            log.error("Session %s failed to spawn %r: %s", session_id, command, exc)
            raise SpawnError(f"Failed to start command: {exc}") from exc

        active._process = process
        active.pid = process.pid
        active.group = self._group_factory(process.pid)
        active.status = ProcessStatus.RUNNING

        active._reader_tasks = [
            self._spawn_task(
                self._read_stream(process.stdout, session_id),  # type: ignore[arg-type]
                name=f"{session_id}-stdout",
            ),
            self._spawn_task(
                self._read_stream(process.stderr, session_id),  # type: ignore[arg-type]
                name=f"{session_id}-stderr",
            ),
        ]
        self._spawn_task(self._wait_for_exit(active), name=f"{session_id}-waiter")

        if self._registry.get(session_id) is not active:
            # The session went away while we were starting
            log.info("Session %s closed during start; terminating pid %d", session_id, process.pid)
            active.status = ProcessStatus.STOPPING
            try:
                active.group.signal(SignalKind.GRACEFUL)
            except SignalError as exc:
                log.info("Ignoring signal failure: %s", exc)
            else:
                self._spawn_task(self._escalate(active), name=f"{session_id}-escalate")

        return active

    def send_input(self, session_id: str, data: bytes) -> None:
        """Queue *data* for the running command's stdin; no-op otherwise.

        Never waits for the child to read: the pipe transport buffers the
        bytes, so a command that ignores stdin cannot hold up the session.
        """
        active = self._registry.get(session_id)
        if active is None or not active.is_running:
            return
        proc = active._process
        if proc is None or proc.returncode is not None or proc.stdin is None:
            return
        if proc.stdin.is_closing():
            return
        try:
            proc.stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as exc:
            log.debug("Session %s stdin closed: %s", session_id, exc)

    def stop(self, session_id: str) -> bool:
        """Terminate the session's command. Returns False if none is running.

        Sends SIGTERM to the process group, releases the session at once and
        escalates to SIGKILL if the command outlives the grace period.
        """
        active = self._registry.get(session_id)
        if active is None or not active.is_running or active.group is None:
            return False

        active.status = ProcessStatus.STOPPING
        try:
            active.group.signal(SignalKind.GRACEFUL)
        except SignalError as exc:
            self.publish(
                session_id,
                ChannelEvent.output(f"\r\nError stopping command: {exc}\r\n$ "),
            )
        else:
            self.publish(
                session_id,
                ChannelEvent.output("\r\n^C Command stopped (terminating all processes...)\r\n$ "),
            )
            self._spawn_task(self._escalate(active), name=f"{session_id}-escalate")

        # Do not make a new start wait for the old command to finish exiting
        self._registry.discard(session_id, active)

        if self._config.sweep_pattern:
            self._spawn_task(self._sweep_stragglers(), name=f"{session_id}-sweep")
        return True

    async def stop_all(self) -> None:
        """Terminate every tracked command and wait for them to exit."""
        for session_id in list(self._outboxes):
            self.disconnect(session_id)
        for active in self._registry.values():
            self.disconnect(active.session_id)

        pending = [t for t in self._tasks if not t.done()]
        if pending:
            log.info("Waiting for %d supervisor tasks", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _spawn_task(self, coro: Any, *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _read_stream(
        self,
        stream: asyncio.StreamReader,
        session_id: str,
    ) -> None:
        """Forward every chunk of *stream* to the session as it arrives."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                self.publish(session_id, ChannelEvent.output(text))
        tail = decoder.decode(b"", final=True)
        if tail:
            self.publish(session_id, ChannelEvent.output(tail))

    async def _wait_for_exit(self, active: ActiveProcess) -> None:
        """Report the exit code once the process is gone and its output drained."""
        proc = active._process
        if proc is None:
            return
        code = await proc.wait()
        # Completion must follow every output chunk
        await asyncio.gather(*active._reader_tasks, return_exceptions=True)
        if proc.stdin is not None:
            proc.stdin.close()

        active.exit_code = code
        active.status = ProcessStatus.EXITED
        active.exited.set()
        self._registry.discard(active.session_id, active)

        log.info("Session %s: pid %d exited with code %s", active.session_id, active.pid, code)
        self.publish(active.session_id, ChannelEvent.output(f"\r\nProcess exited with code {code}\r\n"))
        self.publish(active.session_id, ChannelEvent.complete())

    async def _escalate(self, active: ActiveProcess) -> None:
        """SIGKILL the group if it is still alive after the grace period."""
        try:
            await asyncio.wait_for(active.exited.wait(), timeout=self._config.grace_period)
            return
        except asyncio.TimeoutError:
            pass

        if active.exited.is_set() or active.group is None:
            return
        log.warning(
            "pid %d ignored SIGTERM for %.1fs, sending SIGKILL",
            active.pid, self._config.grace_period,
        )
        try:
            active.group.force_kill()
        except SignalError as exc:
            log.warning("Could not kill pid %d: %s", active.pid, exc)

    async def _sweep_stragglers(self) -> None:
        """Best-effort pkill of orphaned provisioning tools, system-wide."""
        await asyncio.sleep(self._config.sweep_delay)
        try:
            proc = await asyncio.create_subprocess_exec(
                "pkill",
                "-f",
                self._config.sweep_pattern,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            code = await proc.wait()
        except OSError as exc:
            log.warning("Straggler sweep failed: %s", exc)
            return
        # pkill exits 1 when nothing matched
        log.info("Straggler sweep for %r completed (exit %d)", self._config.sweep_pattern, code)
