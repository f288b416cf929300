"""DirectBridge — host operations called in this process."""

from __future__ import annotations

import asyncio
import logging

from companion_exec.bridge.base import (
    RUN_COMMAND_TIMEOUT,
    SAVE_FILE_TIMEOUT,
    SYSTEM_INFO_TIMEOUT,
)
from companion_exec.core.errors import BridgeTimeoutError
from companion_exec.core.protocols import CommandOutput, SaveFileResult, SystemInfo
from companion_exec.host import executor

logger = logging.getLogger(__name__)


class DirectBridge:
    """Runs commands as children of this process.

    The executor enforces the command timeout itself, killing the child's
    process group, so nothing is left running when the call returns.
    """

    async def run_command(self, command: str) -> CommandOutput:
        return await executor.run_command(command, timeout=RUN_COMMAND_TIMEOUT)

    async def get_system_info(self) -> SystemInfo:
        try:
            return await asyncio.wait_for(executor.get_system_info(), SYSTEM_INFO_TIMEOUT)
        except asyncio.TimeoutError:
            raise BridgeTimeoutError("System info request timed out") from None

    async def save_file(self, path: str, content: str) -> SaveFileResult:
        try:
            return await asyncio.wait_for(executor.save_file(path, content), SAVE_FILE_TIMEOUT)
        except asyncio.TimeoutError:
            raise BridgeTimeoutError("Save file timed out") from None

    async def close(self) -> None:
        return None
