"""HostServer — the privileged end of the message transport.

Listens on a Unix domain socket (owner-only permissions) for
newline-delimited request envelopes, runs each operation as its own task,
and writes one response envelope per request as soon as it is ready, so
answers may come back in any order. Failures become ``error`` envelopes;
malformed input is logged and skipped. Nothing a client sends can take
the server down.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Set

from pydantic import ValidationError

from companion_exec.bridge.base import (
    RUN_COMMAND_TIMEOUT,
    SAVE_FILE_TIMEOUT,
    SYSTEM_INFO_TIMEOUT,
)
from companion_exec.bridge.message import STREAM_LIMIT
from companion_exec.core.enums import Operation
from companion_exec.core.errors import BridgeError
from companion_exec.core.protocols import RequestEnvelope, ResponseEnvelope
from companion_exec.host import executor

logger = logging.getLogger(__name__)


class HostServer:
    """Serves executeCommand / getSystemInfo / saveFile / cancel over a socket."""

    def __init__(self, socket_path: str | Path, run_timeout: float = RUN_COMMAND_TIMEOUT) -> None:
        self._socket_path = Path(socket_path)
        self._run_timeout = run_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()
        self._writers: Set[asyncio.StreamWriter] = set()

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    async def start(self) -> None:
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        # Remove a stale socket left by a previous run
        if self._socket_path.exists():
            self._socket_path.unlink()
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self._socket_path), limit=STREAM_LIMIT,
        )
        os.chmod(self._socket_path, 0o600)
        logger.info("Host server listening on %s", self._socket_path)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        # wait_closed() also waits for open client connections
        for writer in list(self._writers):
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        if self._socket_path.exists():
            self._socket_path.unlink()
        logger.info("Host server stopped")

    # ── Operations ──

    async def handle(self, envelope: RequestEnvelope) -> ResponseEnvelope:
        """Run one request and build its response. Failures become error envelopes."""
        callback_id = envelope.callback_id
        args = envelope.args
        try:
            if envelope.operation == Operation.EXECUTE_COMMAND:
                cmd = args.get("cmd")
                if not isinstance(cmd, str) or not cmd.strip():
                    return ResponseEnvelope(callback_id=callback_id, error="No command specified")
                output = await executor.run_command(cmd, timeout=self._run_timeout)
                return ResponseEnvelope(callback_id=callback_id, result=output.model_dump())

            if envelope.operation == Operation.GET_SYSTEM_INFO:
                try:
                    info = await asyncio.wait_for(executor.get_system_info(), SYSTEM_INFO_TIMEOUT)
                except asyncio.TimeoutError:
                    return ResponseEnvelope(callback_id=callback_id, error="System info request timed out")
                return ResponseEnvelope(callback_id=callback_id, result=info.model_dump())

            if envelope.operation == Operation.SAVE_FILE:
                path = args.get("path")
                content = args.get("content", "")
                if not isinstance(path, str) or not path or not isinstance(content, str):
                    return ResponseEnvelope(callback_id=callback_id, error="saveFile needs 'path' and 'content'")
                try:
                    saved = await asyncio.wait_for(executor.save_file(path, content), SAVE_FILE_TIMEOUT)
                except asyncio.TimeoutError:
                    return ResponseEnvelope(callback_id=callback_id, error="Save file timed out")
                return ResponseEnvelope(callback_id=callback_id, result=saved.model_dump())

        except BridgeError as e:
            return ResponseEnvelope(callback_id=callback_id, error=str(e))
        except Exception as e:
            logger.exception("Request %s failed", callback_id)
            return ResponseEnvelope(callback_id=callback_id, error=f"Host error: {e}")

        return ResponseEnvelope(
            callback_id=callback_id, error=f"Unsupported operation: {envelope.operation.value}",
        )

    @staticmethod
    def cancel(running: Dict[str, asyncio.Task], target: Any) -> bool:
        """Cancel one of a connection's own requests by callback id."""
        task = running.get(target) if isinstance(target, str) else None
        if task is None:
            logger.debug("Cancel for unknown request %r", target)
            return False
        logger.info("Cancelling request %s", target)
        task.cancel()
        return True

    # ── Connection handling ──

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        write_lock = asyncio.Lock()
        # callback id → running task; a cancel envelope only reaches its own connection
        running: Dict[str, asyncio.Task] = {}
        tasks: Set[asyncio.Task] = set()
        self._writers.add(writer)
        logger.info("Client connected")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                envelope = await self._parse_request(line, writer, write_lock)
                if envelope is None:
                    continue
                if envelope.operation == Operation.CANCEL:
                    self.cancel(running, envelope.args.get("target"))
                    continue
                task = asyncio.create_task(self._serve_request(envelope, writer, write_lock))
                running[envelope.callback_id] = task
                tasks.add(task)
                self._tasks.add(task)
                task.add_done_callback(tasks.discard)
                task.add_done_callback(self._tasks.discard)
                task.add_done_callback(
                    lambda t, cid=envelope.callback_id: running.get(cid) is t and running.pop(cid)
                )
        except (ConnectionError, OSError, ValueError) as e:
            logger.warning("Client connection error: %s", e)
        finally:
            # Nobody is left to read the answers: stop the work.
            for task in list(tasks):
                task.cancel()
            writer.close()
            self._writers.discard(writer)
            logger.info("Client disconnected")

    async def _parse_request(
        self, line: bytes, writer: asyncio.StreamWriter, write_lock: asyncio.Lock,
    ) -> Optional[RequestEnvelope]:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON request line: %r", line[:200])
            return None
        try:
            return RequestEnvelope.model_validate(message)
        except ValidationError as e:
            logger.warning("Rejecting malformed request: %s", e)
            callback_id = message.get("callbackId") if isinstance(message, dict) else None
            if isinstance(callback_id, str):
                await self._send(
                    writer, write_lock,
                    ResponseEnvelope(callback_id=callback_id, error="Malformed request"),
                )
            return None

    async def _serve_request(
        self, envelope: RequestEnvelope, writer: asyncio.StreamWriter, write_lock: asyncio.Lock,
    ) -> None:
        logger.debug("Handling %s (%s)", envelope.operation.value, envelope.callback_id)
        response = await self.handle(envelope)
        await self._send(writer, write_lock, response)

    @staticmethod
    async def _send(writer: asyncio.StreamWriter, write_lock: asyncio.Lock, response: ResponseEnvelope) -> None:
        data = json.dumps(response.to_wire(), ensure_ascii=False).encode("utf-8") + b"\n"
        async with write_lock:
            try:
                writer.write(data)
                await writer.drain()
            except (ConnectionError, OSError) as e:
                logger.warning("Could not deliver response %s: %s", response.callback_id, e)
