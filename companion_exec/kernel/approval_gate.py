"""ApprovalGate — the single source of truth for "may this command run".

The gate owns one ExecutionState and replaces it wholesale on every
transition, so a reader never sees a half-updated state (for example
``approved=True`` next to the command of a different request).

Hard rule: ``approved`` becomes True only through ``approve()``, and
``take_approval()`` flips it back to False in the same locked step that
reads it. Whoever holds the returned ticket is the one caller allowed to
invoke the host bridge for that request. A second approve, a repeated
trigger, or a late UI event finds ``approved=False`` and does nothing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, NamedTuple, Optional

from companion_exec.core.enums import ExecutionStatus
from companion_exec.core.protocols import CommandOutput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionState:
    """Immutable snapshot of the pipeline."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    task: Optional[str] = None
    command: Optional[str] = None
    output: Optional[CommandOutput] = None
    error: Optional[str] = None
    approved: bool = False
    request_id: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ExecutionStatus.PENDING_APPROVAL

    @property
    def is_finished(self) -> bool:
        return self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


IDLE = ExecutionState()


class ApprovalTicket(NamedTuple):
    """Single-use permission to run one command."""
    request_id: int
    command: str


StateListener = Callable[[ExecutionState], None]


class ApprovalGate:
    """State machine for pending → executing → completed/failed → idle."""

    def __init__(self) -> None:
        self._state = IDLE
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []
        self._request_counter = 0

    @property
    def state(self) -> ExecutionState:
        return self._state

    # ── Subscription ──

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new state. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: ExecutionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)

    # ── Transitions ──

    def mark_generating(self) -> bool:
        """idle → generating while the model is producing a reply."""
        with self._lock:
            if self._state.status != ExecutionStatus.IDLE:
                return False
            new = replace(IDLE, status=ExecutionStatus.GENERATING)
            self._state = new
        self._notify(new)
        return True

    def clear_generating(self) -> bool:
        with self._lock:
            if self._state.status != ExecutionStatus.GENERATING:
                return False
            self._state = IDLE
        self._notify(IDLE)
        return True

    def propose(self, task: Optional[str], command: str) -> ExecutionState:
        """A new directive arrived: hold it for approval.

        Valid from every state. Any earlier request, approved or not, is
        overwritten and ``approved`` is forced back to False.
        """
        if not command or not command.strip():
            raise ValueError("Cannot propose an empty command")
        with self._lock:
            previous = self._state
            self._request_counter += 1
            new = ExecutionState(
                status=ExecutionStatus.PENDING_APPROVAL,
                task=task,
                command=command,
                request_id=self._request_counter,
            )
            self._state = new
        if previous.status in (ExecutionStatus.PENDING_APPROVAL, ExecutionStatus.EXECUTING):
            logger.info(
                "Request #%s (%s) superseded by #%d",
                previous.request_id, previous.status.value, new.request_id,
            )
        logger.info("Request #%d pending approval: %s", new.request_id, command)
        self._notify(new)
        return new

    def edit_command(self, command: str) -> bool:
        """Replace the pending command text. Never approves."""
        with self._lock:
            if self._state.status != ExecutionStatus.PENDING_APPROVAL:
                return False
            new = replace(self._state, command=command)
            self._state = new
        logger.debug("Request #%s command edited: %s", new.request_id, command)
        self._notify(new)
        return True

    def approve(self) -> bool:
        """The user approved the pending command. The only path to ``approved=True``."""
        with self._lock:
            current = self._state
            if current.status != ExecutionStatus.PENDING_APPROVAL:
                logger.debug("approve() ignored in state %s", current.status.value)
                return False
            if not current.command or not current.command.strip():
                logger.warning("approve() ignored: request #%s has an empty command",
                               current.request_id)
                return False
            new = replace(current, status=ExecutionStatus.EXECUTING, approved=True)
            self._state = new
        logger.info("Request #%s approved by user", new.request_id)
        self._notify(new)
        return True

    def take_approval(self) -> Optional[ApprovalTicket]:
        """Consume the approval: read it and reset it in one step.

        Returns a ticket only when ``status == executing`` and
        ``approved is True``; afterwards ``approved`` is False, so the
        next caller gets None.
        """
        with self._lock:
            current = self._state
            if current.status != ExecutionStatus.EXECUTING or not current.approved:
                return None
            new = replace(current, approved=False)
            self._state = new
            ticket = ApprovalTicket(request_id=new.request_id, command=new.command)
        self._notify(new)
        return ticket

    def complete(self, request_id: int, output: CommandOutput) -> bool:
        """The bridge returned. A nonzero exit code lands in ``failed`` with the output kept."""
        status = (
            ExecutionStatus.COMPLETED if output.exit_code == 0 else ExecutionStatus.FAILED
        )
        with self._lock:
            if not self._owns(request_id):
                return False
            new = replace(self._state, status=status, output=output, approved=False)
            self._state = new
        logger.info("Request #%d finished with exit code %d", request_id, output.exit_code)
        self._notify(new)
        return True

    def fail(self, request_id: int, error: str) -> bool:
        """The bridge raised (timeout, channel failure, cancellation)."""
        with self._lock:
            if not self._owns(request_id):
                return False
            new = replace(
                self._state, status=ExecutionStatus.FAILED, error=error, approved=False,
            )
            self._state = new
        logger.warning("Request #%d failed: %s", request_id, error)
        self._notify(new)
        return True

    def consume(self, request_id: Optional[int] = None) -> Optional[ExecutionState]:
        """Hand the finished state to the presenter and reset to idle.

        With ``request_id``, only that request's result is consumed.
        """
        with self._lock:
            finished = self._state
            if not finished.is_finished:
                return None
            if request_id is not None and finished.request_id != request_id:
                return None
            self._state = IDLE
        self._notify(IDLE)
        return finished

    def reject(self) -> bool:
        """The user rejected the pending command. No transport is touched."""
        with self._lock:
            if self._state.status != ExecutionStatus.PENDING_APPROVAL:
                return False
            request_id = self._state.request_id
            self._state = IDLE
        logger.info("Request #%s rejected by user", request_id)
        self._notify(IDLE)
        return True

    def dismiss(self) -> bool:
        """Clear whatever is shown, except a command that is still running."""
        with self._lock:
            if self._state.status == ExecutionStatus.EXECUTING:
                return False
            if self._state == IDLE:
                return True
            self._state = IDLE
        self._notify(IDLE)
        return True

    def _owns(self, request_id: int) -> bool:
        current = self._state
        if current.status != ExecutionStatus.EXECUTING or current.request_id != request_id:
            logger.info(
                "Ignoring stale result for request #%s (current #%s, %s)",
                request_id, current.request_id, current.status.value,
            )
            return False
        return True
