"""CorrelationRegistry — in-flight request tracking for the message transport.

Each request gets a fresh callback id and a future. Exactly one of two
things completes that future: the matching response, or the request's
timeout. Whichever comes first removes the entry; the other finds nothing
and is a no-op.

The registry is confined to one event loop. Responses arriving from
another thread must go through ``resolve_threadsafe``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from companion_exec.core.errors import BridgeTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """One registered request awaiting its response."""

    id: str
    created_at: float
    future: asyncio.Future
    timeout: float
    _timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class CorrelationRegistry:
    """Map of callback id → pending request with single-resolution semantics."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._pending: Dict[str, PendingRequest] = {}
        self._counter = itertools.count()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def __contains__(self, callback_id: str) -> bool:
        return callback_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def next_id(self) -> str:
        """Generate a callback id: wall-clock millis plus a per-registry counter."""
        return f"cb_{int(time.time() * 1000)}_{next(self._counter)}"

    def register(self, timeout: float, timeout_message: str = "Request timed out") -> PendingRequest:
        """Create an entry and start its timeout timer."""
        callback_id = self.next_id()
        future = self.loop.create_future()
        pending = PendingRequest(
            id=callback_id,
            created_at=time.monotonic(),
            future=future,
            timeout=timeout,
        )
        pending._timer = self.loop.call_later(
            timeout, self._expire, callback_id, timeout_message,
        )
        self._pending[callback_id] = pending
        logger.debug("Registered %s (timeout=%.1fs, in_flight=%d)",
                     callback_id, timeout, len(self._pending))
        return pending

    def resolve(self, callback_id: str, result: Any) -> bool:
        """Deliver a result. Returns False if the id is unknown or already settled."""
        pending = self._take(callback_id)
        if pending is None:
            logger.debug("Dropping response for unknown or expired id %s", callback_id)
            return False
        if not pending.future.done():
            pending.future.set_result(result)
        return True

    def reject(self, callback_id: str, exc: BaseException) -> bool:
        """Deliver an error instead of a result. Same single-use rules as resolve."""
        pending = self._take(callback_id)
        if pending is None:
            logger.debug("Dropping error for unknown or expired id %s: %s", callback_id, exc)
            return False
        if not pending.future.done():
            pending.future.set_exception(exc)
        return True

    def resolve_threadsafe(self, callback_id: str, result: Any) -> None:
        self.loop.call_soon_threadsafe(self.resolve, callback_id, result)

    def discard(self, callback_id: str) -> bool:
        """Drop an entry without settling its future (caller gave up waiting)."""
        return self._take(callback_id) is not None

    def reject_all(self, exc: BaseException) -> int:
        """Fail every in-flight request, e.g. when the channel goes away."""
        count = 0
        for callback_id in list(self._pending):
            if self.reject(callback_id, exc):
                count += 1
        return count

    def _take(self, callback_id: str) -> Optional[PendingRequest]:
        pending = self._pending.pop(callback_id, None)
        if pending is not None and pending._timer is not None:
            pending._timer.cancel()
        return pending

    def _expire(self, callback_id: str, message: str) -> None:
        pending = self._pending.pop(callback_id, None)
        if pending is None:
            return
        logger.warning("Request %s timed out after %.1fs", callback_id, pending.timeout)
        if not pending.future.done():
            pending.future.set_exception(BridgeTimeoutError(message))
