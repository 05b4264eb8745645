"""Session channel: one WebSocket client bridged onto the process supervisor.

Inbound text frames are JSON objects ``{"type": ..., "data": ...}``; each type
maps to exactly one supervisor operation.  Binary frames are raw terminal input.
Outbound events are drained from the session's outbox by a pump task so process
output never waits on the receive loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect

from .errors import ConfigWriteError, DeployConsoleError, ProtocolError
from .models import ChannelEvent, MessageType
from .process_manager.supervisor import Outbox, ProcessSupervisor

log = logging.getLogger(__name__)


def parse_message(raw: str) -> tuple[MessageType, Any]:
    """Decode one inbound frame into its type and payload."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Malformed message: {exc.msg}") from None
    if not isinstance(message, dict):
        raise ProtocolError("Malformed message: expected a JSON object")
    try:
        kind = MessageType(message.get("type"))
    except ValueError:
        raise ProtocolError(f"Unknown message type: {message.get('type')!r}") from None
    return kind, message.get("data")


def _require_mapping(payload: Any, kind: MessageType) -> Mapping[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolError(f"{kind.value} requires a configuration object")
    return payload


class SessionChannel:
    def __init__(self, websocket: WebSocket, supervisor: ProcessSupervisor) -> None:
        self.websocket = websocket
        self.supervisor = supervisor
        self.session_id = uuid.uuid4().hex

    def _send(self, event: ChannelEvent) -> None:
        self.supervisor.publish(self.session_id, event)

    async def run(self) -> None:
        """Serve the client until it disconnects."""
        await self.websocket.accept()
        outbox = self.supervisor.open_session(self.session_id)
        pump = asyncio.create_task(self._pump(outbox), name=f"{self.session_id}-pump")
        log.info("Client connected: %s", self.session_id)

        workspace = self.supervisor.config.workspace_dir
        self._send(ChannelEvent.output("Connected to S3 Gateway Deployment Server\r\n"))
        self._send(ChannelEvent.output(f"Workspace: {workspace}\r\n"))
        self._send(ChannelEvent.output("$ "))

        try:
            while True:
                frame = await self.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000), frame.get("reason"))
                try:
                    if frame.get("bytes") is not None:
                        # Binary frames are raw terminal input
                        await self.dispatch(MessageType.INPUT, frame["bytes"])
                    else:
                        await self.dispatch(*parse_message(frame.get("text") or ""))
                except DeployConsoleError as exc:
                    log.warning("Session %s: %s", self.session_id, exc)
                    self._send(ChannelEvent.error(str(exc)))
        except WebSocketDisconnect:
            log.info("Client disconnected: %s", self.session_id)
        finally:
            self.supervisor.disconnect(self.session_id)
            await asyncio.gather(pump, return_exceptions=True)

    async def dispatch(self, kind: MessageType, payload: Any) -> None:
        if kind is MessageType.EXECUTE_COMMAND:
            if not isinstance(payload, dict) or not isinstance(payload.get("command"), str):
                raise ProtocolError("execute-command requires a command string")
            config = _require_mapping(payload.get("config"), kind)
            try:
                await self.supervisor.start(self.session_id, payload["command"], config)
            except ConfigWriteError as exc:
                self._send(ChannelEvent.error(f"Failed to create configuration file: {exc}"))

        elif kind is MessageType.SAVE_CONFIG:
            config = _require_mapping(payload, kind)
            try:
                await self.supervisor.save_config(config)
            except ConfigWriteError as exc:
                self._send(ChannelEvent.output(f"\r\n❌ Error saving config: {exc}\r\n$ "))
            else:
                self._send(ChannelEvent.output("\r\n✅ Configuration saved successfully\r\n$ "))

        elif kind is MessageType.STOP_COMMAND:
            if not self.supervisor.stop(self.session_id):
                self._send(ChannelEvent.output("\r\nNo active command to stop\r\n$ "))

        elif kind is MessageType.INPUT:
            if isinstance(payload, str):
                payload = payload.encode("utf-8")
            if not isinstance(payload, bytes):
                raise ProtocolError("input requires a string")
            self.supervisor.send_input(self.session_id, payload)

    async def _pump(self, outbox: Outbox) -> None:
        """Deliver outbox events in order until the session closes."""
        while True:
            event = await outbox.get()
            if event is None:
                return
            try:
                await self.websocket.send_json(event.to_message())
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                # Transport is gone; the receive loop will release the session
                log.debug("Session %s send failed: %s", self.session_id, exc)
                return
