"""Session-scoped process lifecycle management.

  - ProcessSupervisor: start / send_input / stop / disconnect per session
  - SessionRegistry:   the session -> ActiveProcess map it owns
  - ProcessGroup:      SIGTERM / SIGKILL delivery to a detached process group
"""

from deploy_console.process_manager.process_group import ProcessGroup, SignalKind
from deploy_console.process_manager.registry import SessionRegistry
from deploy_console.process_manager.supervisor import ProcessSupervisor, build_environment

__all__ = [
    "ProcessGroup",
    "ProcessSupervisor",
    "SessionRegistry",
    "SignalKind",
    "build_environment",
]
