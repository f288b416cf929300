"""Host operations — the code that actually spawns processes and touches the disk.

Used in-process by DirectBridge and remotely by HostServer. Commands run
with the full privileges of this process; the approval gate upstream is
the only safety check.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import signal
import sys
from pathlib import Path
from typing import Optional

from companion_exec.bridge.base import RUN_COMMAND_TIMEOUT
from companion_exec.core.errors import BridgeTimeoutError, HostOperationError
from companion_exec.core.protocols import CommandOutput, SaveFileResult, SystemInfo

logger = logging.getLogger(__name__)

_OS_NAMES = {"linux": "linux", "darwin": "macos", "windows": "windows"}
_ARCH_NAMES = {"amd64": "x86_64", "x64": "x86_64", "arm64": "aarch64", "i386": "x86", "i686": "x86"}

# Probed in order; the first one on PATH wins.
PACKAGE_MANAGERS = (
    ("apt", "apt"),
    ("dnf", "dnf"),
    ("yum", "yum"),
    ("pacman", "pacman"),
    ("zypper", "zypper"),
    ("apk", "apk"),
    ("nix-env", "nix"),
)

OS_RELEASE_PATH = Path("/etc/os-release")


# ── Command execution ──


def _kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the command's whole process group (``sh`` and its children)."""
    if proc.returncode is not None:
        return
    try:
        if sys.platform != "win32":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    logger.warning("Killed command process group %d", proc.pid)


async def run_command(command: str, timeout: Optional[float] = RUN_COMMAND_TIMEOUT) -> CommandOutput:
    """Run ``sh -c command`` and capture both streams in full.

    On timeout the process group is killed and reaped before
    BridgeTimeoutError is raised; on cancellation it is killed and the
    cancellation propagates.
    """
    logger.info("Executing command: %s", command)
    try:
        proc = await asyncio.create_subprocess_exec(
            "sh", "-c", command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except (OSError, ValueError) as e:
        # ValueError: the command text holds a NUL byte
        logger.error("Command execution failed: %s", e)
        raise HostOperationError(f"Failed to execute command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_tree(proc)
        await proc.wait()
        raise BridgeTimeoutError(
            f"Command execution timed out after {timeout:g}s"
        ) from None
    except asyncio.CancelledError:
        _kill_process_tree(proc)
        await proc.wait()
        raise

    # A signal-terminated child has no exit code of its own.
    exit_code = proc.returncode if proc.returncode is not None and proc.returncode >= 0 else -1
    result = CommandOutput(
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        exit_code=exit_code,
    )
    logger.info(
        "Command completed with exit code %d (stdout=%d chars, stderr=%d chars)",
        result.exit_code, len(result.stdout), len(result.stderr),
    )
    return result


# ── System info ──


def _read_distro(path: Path = OS_RELEASE_PATH) -> Optional[str]:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    for line in content.splitlines():
        if line.startswith("NAME="):
            return line[len("NAME="):].strip().strip('"').strip("'")
    return None


def _detect_package_manager() -> Optional[str]:
    for binary, name in PACKAGE_MANAGERS:
        if shutil.which(binary):
            return name
    return None


def detect_system_info() -> SystemInfo:
    """Describe the host for the assistant's system prompt."""
    system = platform.system().lower()
    os_name = _OS_NAMES.get(system, system)
    machine = platform.machine().lower()
    info = SystemInfo(
        os=os_name,
        arch=_ARCH_NAMES.get(machine, machine),
        shell=os.environ.get("SHELL") or None,
    )

    if os_name == "linux":
        info.distro = _read_distro()
        info.package_manager = _detect_package_manager()
    elif os_name == "macos":
        info.distro = "macOS"
        if shutil.which("brew"):
            info.package_manager = "homebrew"

    return info


async def get_system_info() -> SystemInfo:
    return await asyncio.to_thread(detect_system_info)


# ── File save ──


def _write_file(path: str, content: str) -> SaveFileResult:
    try:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error("Failed to save %s: %s", path, e)
        return SaveFileResult(success=False, error=str(e))
    logger.info("Saved %d chars to %s", len(content), target)
    return SaveFileResult(success=True)


async def save_file(path: str, content: str) -> SaveFileResult:
    return await asyncio.to_thread(_write_file, path, content)
