"""Tests for ExecutionService — directive to delivered result."""

import asyncio

import pytest

from companion_exec.bridge.direct import DirectBridge
from companion_exec.core.enums import ExecutionStatus
from companion_exec.core.errors import BridgeTimeoutError, ChannelError
from companion_exec.core.protocols import CommandOutput
from companion_exec.kernel.approval_gate import IDLE
from companion_exec.services.execution_service import BUSY_MESSAGE, CANCELLED_MESSAGE, ExecutionService

from conftest import SpyBridge


class GateCheckingBridge(SpyBridge):
    """Records the gate state seen at the moment run_command starts."""

    def __init__(self, service_ref: list, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service_ref = service_ref
        self.states_at_call = []

    async def run_command(self, command):
        self.states_at_call.append(self._service_ref[0].state)
        return await super().run_command(command)


async def _wait_for_call(bridge, count=1):
    for _ in range(100):
        if len(bridge.commands) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("bridge was never called")


def test_receive_reply_without_directive():
    svc = ExecutionService(SpyBridge())
    assert svc.receive_reply("hi", "Hello there!") is None
    assert svc.state == IDLE


def test_receive_reply_empty_directive_stays_idle():
    svc = ExecutionService(SpyBridge())
    assert svc.receive_reply("task", "[EXECUTE: ]") is None
    assert svc.state.status == ExecutionStatus.IDLE


def test_receive_reply_enters_pending():
    svc = ExecutionService(SpyBridge())
    directive = svc.receive_reply("list my files", "Sure![EXECUTE: ls -la]")
    assert directive.command == "ls -la"
    assert directive.clean_text == "Sure!"
    assert svc.state.status == ExecutionStatus.PENDING_APPROVAL
    assert svc.state.task == "list my files"


@pytest.mark.asyncio
async def test_bridge_not_called_without_approval():
    bridge = SpyBridge()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: ls]")

    assert await svc.run_approved() is None
    svc.edit_command("ls -la")
    assert await svc.run_approved() is None
    svc.reject()
    assert await svc.run_approved() is None
    assert bridge.commands == []


@pytest.mark.asyncio
async def test_bridge_called_only_after_approval_is_consumed():
    ref = []
    bridge = GateCheckingBridge(ref)
    svc = ExecutionService(bridge)
    ref.append(svc)

    transitions = []
    svc.gate.subscribe(lambda s: transitions.append((s.status, s.approved)))

    svc.receive_reply("t", "[EXECUTE: ls]")
    finished = await svc.approve_and_run()

    assert bridge.commands == ["ls"]
    seen = bridge.states_at_call[0]
    assert seen.status == ExecutionStatus.EXECUTING
    assert seen.approved is False
    # The approval was present right before the ticket was taken
    assert (ExecutionStatus.EXECUTING, True) in transitions
    idx = transitions.index((ExecutionStatus.EXECUTING, True))
    assert transitions[idx + 1] == (ExecutionStatus.EXECUTING, False)
    assert finished.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_double_approve_runs_once():
    bridge = SpyBridge()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: ls]")

    first, second = await asyncio.gather(svc.approve_and_run(), svc.approve_and_run())
    assert bridge.commands == ["ls"]
    assert [first is None, second is None].count(True) == 1


@pytest.mark.asyncio
async def test_concurrent_run_approved_runs_once():
    bridge = SpyBridge()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: ls]")
    svc.approve()

    results = await asyncio.gather(*(svc.run_approved() for _ in range(5)))
    assert bridge.commands == ["ls"]
    assert sum(r is not None for r in results) == 1


@pytest.mark.asyncio
async def test_edited_command_is_what_runs():
    bridge = SpyBridge()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: ls]")
    svc.edit_command("ls -la /tmp")
    await svc.approve_and_run()
    assert bridge.commands == ["ls -la /tmp"]


@pytest.mark.asyncio
async def test_nonzero_exit_is_surfaced_not_raised():
    bridge = SpyBridge(output=CommandOutput(stdout="", stderr="missing", exit_code=1))
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: false]")

    finished = await svc.approve_and_run()
    assert finished.status == ExecutionStatus.FAILED
    assert finished.output.exit_code == 1
    assert finished.error is None


@pytest.mark.asyncio
async def test_bridge_error_becomes_failed_state():
    bridge = SpyBridge(error=BridgeTimeoutError("Command execution timed out"))
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: sleep 100]")

    finished = await svc.approve_and_run()
    assert finished.status == ExecutionStatus.FAILED
    assert finished.error == "Command execution timed out"
    assert finished.output is None
    # No retry
    assert bridge.commands == ["sleep 100"]


@pytest.mark.asyncio
async def test_new_directive_during_execution_keeps_new_request():
    bridge = SpyBridge()
    bridge.hold = asyncio.Event()
    svc = ExecutionService(bridge)
    svc.receive_reply("t1", "[EXECUTE: sleep 1]")
    run = asyncio.create_task(svc.approve_and_run())
    await _wait_for_call(bridge)

    svc.receive_reply("t2", "[EXECUTE: pwd]")
    bridge.hold.set()
    finished = await run

    # The old result is still reported, but the gate now holds the new request
    assert finished.command == "sleep 1"
    assert finished.status == ExecutionStatus.COMPLETED
    assert svc.state.status == ExecutionStatus.PENDING_APPROVAL
    assert svc.state.command == "pwd"
    assert svc.consume(finished.request_id) is None


@pytest.mark.asyncio
async def test_cancel_running_command():
    bridge = SpyBridge()
    bridge.hold = asyncio.Event()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: sleep 100]")
    run = asyncio.create_task(svc.approve_and_run())
    await _wait_for_call(bridge)

    assert svc.cancel() is True
    finished = await run
    assert finished.status == ExecutionStatus.FAILED
    assert finished.error == CANCELLED_MESSAGE
    assert svc.cancel() is False


def test_cancel_with_nothing_running():
    svc = ExecutionService(SpyBridge())
    assert svc.cancel() is False


@pytest.mark.asyncio
async def test_outer_cancellation_propagates():
    bridge = SpyBridge()
    bridge.hold = asyncio.Event()
    svc = ExecutionService(bridge)
    svc.receive_reply("t", "[EXECUTE: sleep 100]")
    run = asyncio.create_task(svc.approve_and_run())
    await _wait_for_call(bridge)

    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run
    assert svc.state.status == ExecutionStatus.FAILED
    assert svc.state.error == "Command execution interrupted"


@pytest.mark.asyncio
async def test_system_info_failure_returns_none():
    class Broken(SpyBridge):
        async def get_system_info(self):
            raise ChannelError("Host not reachable")

    svc = ExecutionService(Broken())
    assert await svc.fetch_system_info() is None


@pytest.mark.asyncio
async def test_save_file_failure_becomes_result():
    class Broken(SpyBridge):
        async def save_file(self, path, content):
            raise BridgeTimeoutError("Save file timed out")

    svc = ExecutionService(Broken())
    result = await svc.save_file("/tmp/x.md", "hi")
    assert result.success is False
    assert result.error == "Save file timed out"


@pytest.mark.asyncio
async def test_close_closes_bridge():
    bridge = SpyBridge()
    svc = ExecutionService(bridge)
    await svc.close()
    assert bridge.closed is True


@pytest.mark.asyncio
async def test_unspawnable_command_fails_instead_of_hanging():
    svc = ExecutionService(DirectBridge())
    svc.receive_reply("t", "[EXECUTE: echo a\x00b]")

    finished = await svc.approve_and_run()
    assert finished.status == ExecutionStatus.FAILED
    assert finished.error.startswith("Failed to execute command")
    assert svc.state.status == ExecutionStatus.FAILED
    assert svc.consume(finished.request_id) is not None
    assert svc.state.status == ExecutionStatus.IDLE


@pytest.mark.asyncio
async def test_unexpected_bridge_exception_fails_request():
    svc = ExecutionService(SpyBridge(error=RuntimeError("boom")))
    svc.receive_reply("t", "[EXECUTE: ls]")

    finished = await svc.approve_and_run()
    assert finished.status == ExecutionStatus.FAILED
    assert finished.error == "Command execution failed: boom"
    assert not svc.busy


@pytest.mark.asyncio
async def test_second_command_waits_for_the_first():
    bridge = SpyBridge()
    bridge.hold = asyncio.Event()
    svc = ExecutionService(bridge)
    svc.receive_reply("t1", "[EXECUTE: cmdA]")
    first = asyncio.create_task(svc.approve_and_run())
    await _wait_for_call(bridge)

    svc.receive_reply("t2", "[EXECUTE: cmdB]")
    assert svc.busy
    assert await svc.approve_and_run() is None
    assert svc.state.status == ExecutionStatus.PENDING_APPROVAL
    assert svc.state.command == "cmdB"
    assert bridge.commands == ["cmdA"]

    bridge.hold.set()
    await first
    assert not svc.busy

    finished = await svc.approve_and_run()
    assert finished.command == "cmdB"
    assert bridge.commands == ["cmdA", "cmdB"]


@pytest.mark.asyncio
async def test_approval_taken_while_busy_fails_and_keeps_cancel():
    bridge = SpyBridge()
    bridge.hold = asyncio.Event()
    svc = ExecutionService(bridge)
    svc.receive_reply("t1", "[EXECUTE: cmdA]")
    first = asyncio.create_task(svc.approve_and_run())
    await _wait_for_call(bridge)

    svc.receive_reply("t2", "[EXECUTE: cmdB]")
    svc.gate.approve()
    second = await svc.run_approved()
    assert second.status == ExecutionStatus.FAILED
    assert second.error == BUSY_MESSAGE
    assert bridge.commands == ["cmdA"]

    # The running command is still the one cancel() reaches
    assert svc.cancel() is True
    finished = await first
    assert finished.command == "cmdA"
    assert finished.error == CANCELLED_MESSAGE
    assert svc.cancel() is False
