"""Errors raised at the operation boundary and turned into session messages."""

from __future__ import annotations


class DeployConsoleError(Exception):
    """Base class for failures reported back to a session."""


class ConfigWriteError(DeployConsoleError):
    """The configuration file could not be written."""


class SpawnError(DeployConsoleError):
    """The shell for a command could not be started."""


class SessionBusyError(DeployConsoleError):
    """A command is already active for the session."""


class SignalError(DeployConsoleError):
    """A termination signal could not be delivered."""


class ProtocolError(DeployConsoleError):
    """An inbound message could not be decoded."""
