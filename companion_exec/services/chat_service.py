"""Chat service — the conversation and the presentation of command results."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from companion_exec.core.protocols import ChatMessage, Directive, SaveFileResult, SystemInfo
from companion_exec.kernel.approval_gate import ExecutionState
from companion_exec.services import export_service
from companion_exec.services.execution_service import ExecutionService
from companion_exec.services.llm_service import ChatModel, LLMError
from companion_exec.services.prompt_service import build_system_prompt
from companion_exec.services.slash_commands import execute_slash_command

logger = logging.getLogger(__name__)

MessageListener = Callable[[ChatMessage], None]


def format_result(state: ExecutionState) -> str:
    """Turn a finished execution into the text of a chat message.

    stdout first, then stderr under an ``Errors:`` heading, then the exit
    code when it is not zero. A transport failure becomes an error line.
    """
    output = state.output
    if output is None:
        return f"**Error:** {state.error or 'Command failed'}"

    text = output.stdout.strip()
    if output.stderr:
        text += f"\n\nErrors:\n{output.stderr.strip()}"
    if output.exit_code != 0:
        text += f"\n\nExit code: {output.exit_code}"
    return text


class ChatService:
    """Holds the conversation and routes replies through the execution pipeline."""

    def __init__(
        self,
        execution: ExecutionService,
        llm: Optional[ChatModel] = None,
        personality: str = "",
        export_dir: str | Path | None = None,
    ) -> None:
        self.execution = execution
        self._llm = llm
        self._personality = personality
        self._export_dir = Path(export_dir).expanduser() if export_dir else Path.cwd()
        self.messages: List[ChatMessage] = []
        self.system_info: Optional[SystemInfo] = None
        self._listeners: List[MessageListener] = []
        self._on_clear: Optional[Callable[[], None]] = None

    def set_callbacks(
        self,
        on_message: Optional[MessageListener] = None,
        on_clear: Optional[Callable[[], None]] = None,
    ) -> None:
        """Set callback functions for TUI communication."""
        if on_message is not None:
            self._listeners.append(on_message)
        self._on_clear = on_clear

    async def start(self) -> None:
        """Fetch system info once so the prompt can describe the machine."""
        self.system_info = await self.execution.fetch_system_info()
        if self.system_info:
            logger.info("System info: %s", self.system_info.model_dump())

    # ── Messages ──

    def add_message(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        for listener in list(self._listeners):
            listener(message)
        return message

    def clear_messages(self) -> None:
        self.messages.clear()
        if self._on_clear:
            self._on_clear()

    def build_llm_messages(self) -> List[Dict[str, str]]:
        system_prompt = build_system_prompt(self.system_info, self._personality)
        return [{"role": "system", "content": system_prompt}] + [
            {"role": m.role, "content": m.content} for m in self.messages
        ]

    # ── Conversation ──

    async def send(self, content: str) -> None:
        """Handle one line of user input."""
        result = execute_slash_command(content, self)
        if result is not None:
            if result.error:
                self.add_message("assistant", f"**Error:** {result.error}")
            elif result.feedback:
                self.add_message("assistant", result.feedback)
            return

        if self._llm is None:
            self.add_message("assistant", "**Error:** No language model configured.")
            return

        self.add_message("user", content)
        self.execution.gate.mark_generating()
        try:
            reply = await self._llm.chat(self.build_llm_messages())
        except LLMError as e:
            self.add_message("assistant", f"**Error:** {e}")
            return
        finally:
            self.execution.gate.clear_generating()

        self.handle_reply(content, reply)

    def handle_reply(self, task: Optional[str], reply: str) -> Optional[Directive]:
        """Show an assistant reply; a directive goes to the approval gate.

        Without a directive (including an empty ``[EXECUTE: ]``) the reply
        is shown exactly as received.
        """
        directive = self.execution.receive_reply(task, reply)
        if directive is None:
            self.add_message("assistant", reply)
            return None
        # The approval panel shows the command, so an empty remainder adds nothing.
        if directive.clean_text:
            self.add_message("assistant", directive.clean_text)
        return directive

    # ── Approval actions ──

    async def approve(self) -> Optional[ChatMessage]:
        """Approve and run the pending command, then post its result."""
        finished = await self.execution.approve_and_run()
        if finished is None:
            return None
        return self.deliver_result(finished)

    def reject(self) -> bool:
        return self.execution.reject()

    def edit_command(self, command: str) -> bool:
        return self.execution.edit_command(command)

    def cancel(self) -> bool:
        return self.execution.cancel()

    def deliver_result(self, finished: ExecutionState) -> ChatMessage:
        message = self.add_message("assistant", format_result(finished))
        self.execution.consume(finished.request_id)
        return message

    # ── Export ──

    def export_path(self, fmt: str = "markdown") -> Path:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        return self._export_dir / f"chat-{stamp}.{export_service.EXTENSIONS[fmt]}"

    async def export(self, fmt: str = "markdown", path: str | Path | None = None) -> SaveFileResult:
        """Write the conversation through the host, which creates missing directories."""
        content = export_service.render(self.messages, fmt)
        if path is None:
            path = self.export_path(fmt)
        result = await self.execution.save_file(str(path), content)
        if result.success:
            logger.info("Exported %d messages to %s", len(self.messages), path)
        return result

    async def close(self) -> None:
        await self.execution.close()
        if self._llm is not None:
            await self._llm.close()
