"""Execution service — drives one request from directive to delivered result.

Sits between the conversation and the host bridge:

    assistant text → extract → gate.propose      (pending_approval)
    user approve   → gate.approve                (executing, approved)
    run_approved   → gate.take_approval → bridge (approved reset first)
    bridge returns → gate.complete / gate.fail   (completed / failed)
    presenter      → gate.consume                (idle)

Every failure of the run is caught here and stored on the state; callers
never see a BridgeError. Only one command runs at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from companion_exec.bridge.base import HostBridge
from companion_exec.core.enums import ExecutionStatus
from companion_exec.core.errors import BridgeError
from companion_exec.core.protocols import Directive, SaveFileResult, SystemInfo
from companion_exec.kernel.approval_gate import ApprovalGate, ApprovalTicket, ExecutionState
from companion_exec.kernel.directive import extract
from companion_exec.logging_config import log_command_result

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Command cancelled by user"
BUSY_MESSAGE = "Another command is still running"


class ExecutionService:
    """Approval-gated command execution over a HostBridge."""

    def __init__(self, bridge: HostBridge, gate: ApprovalGate | None = None) -> None:
        self.bridge = bridge
        self.gate = gate or ApprovalGate()
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_request_id: Optional[int] = None
        self._cancelled: Optional[asyncio.Future] = None

    @property
    def state(self) -> ExecutionState:
        return self.gate.state

    # ── Directive intake ──

    def receive_reply(self, task: Optional[str], text: str) -> Optional[Directive]:
        """Look for a directive in assistant text; hold it for approval if found.

        Returns the directive, or None when ``text`` is plain chat.
        """
        directive = extract(text)
        if directive is None:
            return None
        self.gate.propose(task, directive.command)
        return directive

    # ── User actions ──

    def approve(self) -> bool:
        """Approve the pending command. Refused while another one is running."""
        if self.busy:
            logger.info("Approval refused: a command is still running")
            return False
        return self.gate.approve()

    def reject(self) -> bool:
        return self.gate.reject()

    def edit_command(self, command: str) -> bool:
        return self.gate.edit_command(command)

    def dismiss(self) -> bool:
        return self.gate.dismiss()

    def consume(self, request_id: Optional[int] = None) -> Optional[ExecutionState]:
        return self.gate.consume(request_id)

    def cancel(self) -> bool:
        """Stop the command that is currently running, if any."""
        run = self._inflight
        if run is None or run.done():
            return False
        logger.info("Cancelling running command (request #%s)", self._inflight_request_id)
        self._cancelled = run
        run.cancel()
        return True

    @property
    def busy(self) -> bool:
        """True while a command is still running on the host."""
        return self._inflight is not None and not self._inflight.done()

    async def approve_and_run(self) -> Optional[ExecutionState]:
        if not self.approve():
            return None
        return await self.run_approved()

    # ── Execution ──

    async def run_approved(self) -> Optional[ExecutionState]:
        """Run the approved command, if there is one.

        Returns the finished state of that request, or None when there was
        no approval to consume (already consumed, never given, or reset by
        a newer directive).
        """
        ticket = self.gate.take_approval()
        if ticket is None:
            return None
        if self.busy:
            # Only one command runs at a time; the approval is spent either way.
            logger.warning("Request #%s approved while another command is running", ticket.request_id)
            self.gate.fail(ticket.request_id, BUSY_MESSAGE)
            return self._finished(ticket, ExecutionStatus.FAILED, error=BUSY_MESSAGE)

        run = asyncio.ensure_future(self.bridge.run_command(ticket.command))
        self._inflight = run
        self._inflight_request_id = ticket.request_id
        try:
            output = await run
        except BridgeError as e:
            error = str(e) or type(e).__name__
            return self._failed(ticket, error)
        except asyncio.CancelledError:
            if self._cancelled is not run:
                self.gate.fail(ticket.request_id, "Command execution interrupted")
                raise
            return self._failed(ticket, CANCELLED_MESSAGE)
        except Exception as e:
            logger.exception("Unexpected error running request #%s", ticket.request_id)
            return self._failed(ticket, f"Command execution failed: {e}")
        finally:
            if self._inflight is run:
                self._inflight = None
                self._inflight_request_id = None
            if self._cancelled is run:
                self._cancelled = None

        self.gate.complete(ticket.request_id, output)
        log_command_result(ticket.command, ticket.request_id, output=output.model_dump())
        status = ExecutionStatus.COMPLETED if output.exit_code == 0 else ExecutionStatus.FAILED
        return self._finished(ticket, status, output=output)

    def _failed(self, ticket: ApprovalTicket, error: str) -> ExecutionState:
        self.gate.fail(ticket.request_id, error)
        log_command_result(ticket.command, ticket.request_id, error=error)
        return self._finished(ticket, ExecutionStatus.FAILED, error=error)

    def _finished(self, ticket: ApprovalTicket, status: ExecutionStatus, **fields) -> ExecutionState:
        """The request's final state, even if a newer directive already replaced it."""
        current = self.gate.state
        if current.request_id == ticket.request_id and current.is_finished:
            return current
        return ExecutionState(
            status=status, command=ticket.command, request_id=ticket.request_id, **fields,
        )

    # ── Other host operations ──

    async def fetch_system_info(self) -> Optional[SystemInfo]:
        try:
            return await self.bridge.get_system_info()
        except BridgeError as e:
            logger.error("Failed to get system info: %s", e)
            return None

    async def save_file(self, path: str, content: str) -> SaveFileResult:
        try:
            return await self.bridge.save_file(path, content)
        except BridgeError as e:
            logger.error("Failed to save %s: %s", path, e)
            return SaveFileResult(success=False, error=str(e))

    async def close(self) -> None:
        self.cancel()
        await self.bridge.close()
