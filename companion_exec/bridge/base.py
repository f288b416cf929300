"""HostBridge — the one interface the execution pipeline uses to reach the host.

Two implementations exist and one is picked at startup:
- DirectBridge: runs operations in this process
- MessageBridge: posts correlated requests to a separate privileged process

Both return the same result models and raise only BridgeError subclasses.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from companion_exec.core.protocols import CommandOutput, SaveFileResult, SystemInfo

# Fixed per-operation timeouts, in seconds.
RUN_COMMAND_TIMEOUT = 30.0
SYSTEM_INFO_TIMEOUT = 5.0
SAVE_FILE_TIMEOUT = 10.0


@runtime_checkable
class HostBridge(Protocol):
    """Privileged operations performed on behalf of the approval gate."""

    async def run_command(self, command: str) -> CommandOutput: ...

    async def get_system_info(self) -> SystemInfo: ...

    async def save_file(self, path: str, content: str) -> SaveFileResult: ...

    async def close(self) -> None: ...
