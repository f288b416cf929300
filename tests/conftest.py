"""Shared test fixtures."""

from __future__ import annotations

import os

import pytest

from companion_exec.config import load_config, reset_config
from companion_exec.core.protocols import CommandOutput, SaveFileResult, SystemInfo


@pytest.fixture(autouse=True)
def isolated_config(tmp_path):
    """Point config, logs and exports at a per-test temporary directory."""
    reset_config()

    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        f"llm:\n  base_url: http://localhost:0\n  api_key: test-key\n  model: test\n"
        f"bridge:\n  mode: direct\n  socket_path: {tmp_path / 'host.sock'}\n"
        f"assistant:\n  export_dir: {tmp_path / 'exports'}\n"
        f"log:\n  dir: {tmp_path / 'logs'}\n"
    )

    os.chdir(tmp_path)
    load_config(config_file)
    yield tmp_path

    reset_config()


class SpyBridge:
    """HostBridge stand-in that records every call."""

    def __init__(self, output: CommandOutput | None = None, error: Exception | None = None) -> None:
        self.output = output or CommandOutput(stdout="ok\n", stderr="", exit_code=0)
        self.error = error
        self.commands: list[str] = []
        self.saved: dict[str, str] = {}
        self.closed = False
        self.hold = None  # an asyncio.Event to block run_command on

    async def run_command(self, command: str) -> CommandOutput:
        self.commands.append(command)
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        return self.output

    async def get_system_info(self) -> SystemInfo:
        return SystemInfo(os="linux", arch="x86_64", distro="Ubuntu", shell="bash", package_manager="apt")

    async def save_file(self, path: str, content: str) -> SaveFileResult:
        self.saved[path] = content
        return SaveFileResult(success=True)

    async def close(self) -> None:
        self.closed = True


class ScriptedLLM:
    """ChatModel stand-in returning canned replies in order."""

    def __init__(self, *replies: str) -> None:
        self.replies = list(replies)
        self.calls: list[list[dict]] = []
        self.closed = False

    async def chat(self, messages):
        self.calls.append(messages)
        return self.replies.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def spy_bridge():
    return SpyBridge()
