"""Tests for the host executor and DirectBridge."""

import time

import pytest

from companion_exec.bridge.direct import DirectBridge
from companion_exec.bridge.base import HostBridge
from companion_exec.core.errors import BridgeTimeoutError, HostOperationError
from companion_exec.host import executor


@pytest.mark.asyncio
async def test_run_command_captures_both_streams():
    out = await executor.run_command("echo hello; echo oops >&2")
    assert out.stdout == "hello\n"
    assert out.stderr == "oops\n"
    assert out.exit_code == 0


@pytest.mark.asyncio
async def test_run_command_nonzero_exit():
    out = await executor.run_command("echo partial; exit 3")
    assert out.exit_code == 3
    assert out.stdout == "partial\n"


@pytest.mark.asyncio
async def test_run_command_shell_features():
    out = await executor.run_command("printf 'a\\nb\\n' | wc -l")
    assert out.stdout.strip() == "2"


@pytest.mark.asyncio
async def test_run_command_timeout_kills_children(tmp_path):
    marker = tmp_path / "survived"
    start = time.monotonic()
    with pytest.raises(BridgeTimeoutError, match="timed out after 0.3s"):
        # The background sleep would outlive a kill of sh alone
        await executor.run_command(f"(sleep 1; touch {marker}) & wait", timeout=0.3)
    assert time.monotonic() - start < 1.0

    time.sleep(1.2)
    assert not marker.exists()


@pytest.mark.asyncio
async def test_run_command_with_nul_byte_is_host_error():
    with pytest.raises(HostOperationError, match="Failed to execute command"):
        await executor.run_command("echo a\x00b")


@pytest.mark.asyncio
async def test_run_command_decodes_invalid_utf8():
    out = await executor.run_command("printf '\\377ok'")
    assert out.stdout.endswith("ok")
    assert out.exit_code == 0


def test_read_distro(tmp_path):
    os_release = tmp_path / "os-release"
    os_release.write_text('PRETTY_NAME="Ubuntu 24.04 LTS"\nNAME="Ubuntu"\nVERSION_ID="24.04"\n')
    assert executor._read_distro(os_release) == "Ubuntu"
    assert executor._read_distro(tmp_path / "missing") is None


def test_detect_package_manager_order(monkeypatch):
    available = {"yum", "dnf"}
    monkeypatch.setattr(executor.shutil, "which", lambda name: f"/usr/bin/{name}" if name in available else None)
    assert executor._detect_package_manager() == "dnf"

    available.clear()
    available.add("nix-env")
    assert executor._detect_package_manager() == "nix"

    available.clear()
    assert executor._detect_package_manager() is None


def test_detect_system_info_normalises_names(monkeypatch):
    monkeypatch.setattr(executor.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(executor.platform, "machine", lambda: "arm64")
    monkeypatch.setattr(executor.shutil, "which", lambda name: "/opt/homebrew/bin/brew" if name == "brew" else None)
    monkeypatch.setenv("SHELL", "/bin/zsh")

    info = executor.detect_system_info()
    assert info.os == "macos"
    assert info.arch == "aarch64"
    assert info.distro == "macOS"
    assert info.shell == "/bin/zsh"
    assert info.package_manager == "homebrew"


@pytest.mark.asyncio
async def test_save_file_creates_parents(tmp_path):
    target = tmp_path / "exports" / "nested" / "chat.md"
    result = await executor.save_file(str(target), "# Chat")
    assert result.success is True
    assert target.read_text() == "# Chat"


@pytest.mark.asyncio
async def test_save_file_reports_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    result = await executor.save_file(str(blocker / "child.md"), "content")
    assert result.success is False
    assert result.error


@pytest.mark.asyncio
async def test_direct_bridge_operations(tmp_path):
    bridge = DirectBridge()
    assert isinstance(bridge, HostBridge)

    out = await bridge.run_command("echo direct")
    assert out.stdout == "direct\n"

    info = await bridge.get_system_info()
    assert info.os
    assert info.arch

    saved = await bridge.save_file(str(tmp_path / "x.json"), "[]")
    assert saved.success is True
    await bridge.close()
