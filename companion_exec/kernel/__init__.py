"""Kernel package — the parts that decide whether a command may run.

- directive: finds the one ``[EXECUTE: ...]`` request in assistant text
- ApprovalGate: the approval state machine and its single-use ticket
- CorrelationRegistry: exactly-once delivery for the message transport

Nothing outside the kernel may flip ``approved``; the host bridge is only
ever called by the holder of an ApprovalTicket.
"""

from companion_exec.kernel.approval_gate import (
    ApprovalGate,
    ApprovalTicket,
    ExecutionState,
)
from companion_exec.kernel.correlation import CorrelationRegistry, PendingRequest
from companion_exec.kernel.directive import extract

__all__ = [
    "ApprovalGate",
    "ApprovalTicket",
    "ExecutionState",
    "CorrelationRegistry",
    "PendingRequest",
    "extract",
]
