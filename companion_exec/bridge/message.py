"""MessageBridge — host operations over an asynchronous, correlated channel.

For a surface that cannot spawn processes itself: every call is posted as
``{operation, args, callbackId}`` and the privileged host answers later
with ``{callbackId, result}`` or ``{callbackId, error}``, in any order.
The CorrelationRegistry pairs each answer with its waiter and guarantees
the waiter sees exactly one outcome: the answer or a timeout.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set, runtime_checkable

from pydantic import BaseModel, ValidationError

from companion_exec.bridge.base import (
    RUN_COMMAND_TIMEOUT,
    SAVE_FILE_TIMEOUT,
    SYSTEM_INFO_TIMEOUT,
)
from companion_exec.core.enums import Operation
from companion_exec.core.errors import ChannelError, HostOperationError
from companion_exec.core.protocols import (
    CommandOutput,
    RequestEnvelope,
    ResponseEnvelope,
    SaveFileResult,
    SystemInfo,
)
from companion_exec.kernel.correlation import CorrelationRegistry

logger = logging.getLogger(__name__)

Receiver = Callable[[Dict[str, Any]], Any]

# Command output can be large; one JSON line must fit in the stream buffer.
STREAM_LIMIT = 16 * 1024 * 1024


@runtime_checkable
class MessageChannel(Protocol):
    """Transport for envelopes. Delivery back happens through the receiver."""

    def set_receiver(self, receiver: Receiver, on_disconnect: Optional[Callable[[], None]] = None) -> None: ...

    async def post(self, message: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class MessageBridge:
    """HostBridge implementation on top of a MessageChannel."""

    def __init__(
        self,
        channel: MessageChannel,
        registry: CorrelationRegistry | None = None,
    ) -> None:
        self._channel = channel
        self._registry = registry or CorrelationRegistry()
        self._background: Set[asyncio.Task] = set()
        channel.set_receiver(self.deliver, on_disconnect=self._on_disconnect)

    @property
    def registry(self) -> CorrelationRegistry:
        return self._registry

    # ── Inbound ──

    def deliver(self, message: Dict[str, Any]) -> bool:
        """Route one response envelope to its waiter. Never raises.

        Returns False when the response was dropped (unknown, late or
        duplicate id, or an envelope that does not parse).
        """
        try:
            envelope = ResponseEnvelope.model_validate(message)
        except ValidationError as e:
            logger.warning("Dropping malformed host response: %s", e)
            return False

        if envelope.error is not None:
            return self._registry.reject(
                envelope.callback_id, HostOperationError(envelope.error),
            )
        if envelope.result is None:
            return self._registry.reject(
                envelope.callback_id, ChannelError("Host response carried no result"),
            )
        return self._registry.resolve(envelope.callback_id, envelope.result)

    def _on_disconnect(self) -> None:
        failed = self._registry.reject_all(ChannelError("Connection to host lost"))
        if failed:
            logger.warning("Host channel dropped with %d request(s) in flight", failed)

    # ── Outbound ──

    async def _call(
        self,
        operation: Operation,
        args: Dict[str, Any],
        timeout: float,
        timeout_message: str,
    ) -> Dict[str, Any]:
        pending = self._registry.register(timeout, timeout_message)
        envelope = RequestEnvelope(operation=operation, args=args, callback_id=pending.id)
        logger.debug("Posting %s as %s", operation.value, pending.id)

        try:
            await self._channel.post(envelope.to_wire())
        except BaseException:
            self._registry.discard(pending.id)
            raise

        try:
            return await pending.future
        except asyncio.CancelledError:
            # The caller gave up: forget the id and ask the host to stop.
            if self._registry.discard(pending.id):
                self._post_cancel(pending.id)
            raise

    def _post_cancel(self, target: str) -> None:
        envelope = RequestEnvelope(
            operation=Operation.CANCEL,
            args={"target": target},
            callback_id=self._registry.next_id(),
        )
        task = asyncio.ensure_future(self._post_quietly(envelope.to_wire()))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _post_quietly(self, message: Dict[str, Any]) -> None:
        try:
            await self._channel.post(message)
        except ChannelError as e:
            logger.warning("Could not post cancel for %s: %s", message["args"]["target"], e)

    @staticmethod
    def _parse(model: type[BaseModel], result: Dict[str, Any], operation: Operation):
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise ChannelError(f"Malformed {operation.value} result from host: {e}") from e

    async def run_command(self, command: str) -> CommandOutput:
        result = await self._call(
            Operation.EXECUTE_COMMAND, {"cmd": command},
            RUN_COMMAND_TIMEOUT, "Command execution timed out",
        )
        return self._parse(CommandOutput, result, Operation.EXECUTE_COMMAND)

    async def get_system_info(self) -> SystemInfo:
        result = await self._call(
            Operation.GET_SYSTEM_INFO, {},
            SYSTEM_INFO_TIMEOUT, "System info request timed out",
        )
        return self._parse(SystemInfo, result, Operation.GET_SYSTEM_INFO)

    async def save_file(self, path: str, content: str) -> SaveFileResult:
        result = await self._call(
            Operation.SAVE_FILE, {"path": path, "content": content},
            SAVE_FILE_TIMEOUT, "Save file timed out",
        )
        return self._parse(SaveFileResult, result, Operation.SAVE_FILE)

    async def close(self) -> None:
        self._registry.reject_all(ChannelError("Bridge closed"))
        await self._channel.close()


class UnixSocketChannel:
    """Newline-delimited JSON over a Unix domain socket to ``HostServer``.

    Connects lazily on the first post and reconnects after a drop.
    """

    def __init__(self, socket_path: str) -> None:
        self._socket_path = socket_path
        self._receiver: Optional[Receiver] = None
        self._on_disconnect: Optional[Callable[[], None]] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    def set_receiver(self, receiver: Receiver, on_disconnect: Optional[Callable[[], None]] = None) -> None:
        self._receiver = receiver
        self._on_disconnect = on_disconnect

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def _ensure_connected(self) -> asyncio.StreamWriter:
        if self.connected:
            return self._writer
        try:
            reader, writer = await asyncio.open_unix_connection(
                self._socket_path, limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ChannelError(f"Host not reachable at {self._socket_path}: {e}") from e
        logger.info("Connected to host at %s", self._socket_path)
        self._writer = writer
        self._read_task = asyncio.create_task(self._read_loop(reader, writer))
        return writer

    async def post(self, message: Dict[str, Any]) -> None:
        data = json.dumps(message, ensure_ascii=False).encode("utf-8") + b"\n"
        async with self._lock:
            writer = await self._ensure_connected()
            try:
                writer.write(data)
                await writer.drain()
            except (ConnectionError, OSError) as e:
                writer.close()
                raise ChannelError(f"Failed to send to host: {e}") from e

    async def _read_loop(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON line from host: %r", line[:200])
                    continue
                if not isinstance(message, dict):
                    logger.warning("Ignoring non-object message from host: %r", message)
                    continue
                if self._receiver is not None:
                    self._receiver(message)
        except (ConnectionError, OSError, ValueError) as e:
            logger.warning("Host connection error: %s", e)
        finally:
            writer.close()
            if self._writer is writer:
                self._writer = None
            logger.info("Host connection closed")
            if self._on_disconnect is not None:
                self._on_disconnect()

    async def close(self) -> None:
        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
