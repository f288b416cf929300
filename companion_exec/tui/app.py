"""CompanionApp — main Textual application, wires TUI to services."""

from __future__ import annotations

import logging
from pathlib import Path

from textual.app import App
from textual.binding import Binding
from textual.css.query import NoMatches
from textual.message import Message
from textual.widgets import Input

from companion_exec.bridge.factory import create_bridge
from companion_exec.config import get_config
from companion_exec.core.enums import ExecutionStatus
from companion_exec.core.protocols import ChatMessage
from companion_exec.kernel.approval_gate import ExecutionState
from companion_exec.services.chat_service import ChatService
from companion_exec.services.execution_service import ExecutionService
from companion_exec.services.llm_service import LLMService
from companion_exec.tui.screens.home import HomeScreen
from companion_exec.tui.widgets.chat_log import ChatLog
from companion_exec.tui.widgets.command_approval import CommandApproval

logger = logging.getLogger(__name__)

CSS_PATH = Path(__file__).parent / "styles" / "app.tcss"

SUBTITLES = {
    ExecutionStatus.GENERATING: "Thinking...",
    ExecutionStatus.PENDING_APPROVAL: "Waiting for your approval",
    ExecutionStatus.EXECUTING: "Running command...",
}


# ── Custom Messages for service → app communication ──
# Services run as async workers in the same event loop,
# so we use post_message() instead of call_from_thread().

class MessageAdded(Message):
    def __init__(self, message: ChatMessage) -> None:
        super().__init__()
        self.message = message


class ChatCleared(Message):
    pass


class StateChanged(Message):
    def __init__(self, state: ExecutionState) -> None:
        super().__init__()
        self.state = state


def build_chat_service() -> ChatService:
    """Assemble the services from the loaded config."""
    config = get_config()
    return ChatService(
        ExecutionService(create_bridge(config)),
        llm=LLMService(config.llm),
        personality=config.assistant.personality,
        export_dir=config.assistant.export_dir,
    )


class CompanionApp(App):
    """companion-exec — chat with approval-gated shell commands."""

    TITLE = "companion-exec v0.1.0"
    CSS_PATH = CSS_PATH

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=False),
    ]

    def __init__(self, chat: ChatService | None = None) -> None:
        super().__init__()
        self._chat = chat or build_chat_service()
        self._chat.set_callbacks(
            on_message=lambda m: self.post_message(MessageAdded(m)),
            on_clear=lambda: self.post_message(ChatCleared()),
        )
        self._unsubscribe = self._chat.execution.gate.subscribe(
            lambda state: self.post_message(StateChanged(state))
        )

    @property
    def chat(self) -> ChatService:
        return self._chat

    def on_mount(self) -> None:
        self.push_screen(HomeScreen())
        self.run_worker(self._start(), group="startup")

    async def _start(self) -> None:
        await self._chat.start()
        if self._chat.system_info is None:
            self.notify("Could not detect system info", severity="warning")

    async def on_unmount(self) -> None:
        self._unsubscribe()
        await self._chat.close()

    # ── Chat ──

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "chat-input":
            return
        text = event.value.strip()
        if not text:
            return
        event.input.value = ""
        self.run_worker(self._chat.send(text), group="chat")

    def on_message_added(self, message: MessageAdded) -> None:
        try:
            self.screen.query_one(ChatLog).add_message(message.message)
        except NoMatches:
            logger.debug("ChatLog widget not available yet", exc_info=True)

    def on_chat_cleared(self, message: ChatCleared) -> None:
        try:
            self.screen.query_one(ChatLog).clear()
        except NoMatches:
            logger.debug("ChatLog widget not available yet", exc_info=True)

    def action_clear_chat(self) -> None:
        self._chat.clear_messages()

    # ── Approval ──

    def on_state_changed(self, message: StateChanged) -> None:
        state = message.state
        self.sub_title = SUBTITLES.get(state.status, "")
        try:
            panel = self.screen.query_one(CommandApproval)
        except NoMatches:
            logger.debug("CommandApproval widget not available yet", exc_info=True)
            return

        if state.status == ExecutionStatus.PENDING_APPROVAL:
            # Edits only change the command text; keep the user's cursor where it is.
            if not panel.is_visible or panel.command != state.command:
                panel.show_pending(state.command or "", state.task)
        elif state.status == ExecutionStatus.EXECUTING:
            panel.show_running(state.command or "")
        elif panel.is_visible:
            panel.hide()
            self._focus_chat_input()

    def on_command_approval_approved(self, message: CommandApproval.Approved) -> None:
        state = self._chat.execution.state
        if not state.is_pending:
            return
        if message.command != state.command:
            self._chat.edit_command(message.command)
        self.run_worker(self._approve(), group="execution")

    async def _approve(self) -> None:
        delivered = await self._chat.approve()
        if delivered is None and self._chat.execution.state.is_pending:
            if self._chat.execution.busy:
                self.notify("Another command is still running", severity="warning")
            else:
                self.notify("Command is empty", severity="warning")

    def on_command_approval_rejected(self, message: CommandApproval.Rejected) -> None:
        if self._chat.reject():
            self.notify("Command rejected")

    def on_command_approval_cancel_requested(self, message: CommandApproval.CancelRequested) -> None:
        self.action_cancel_command()

    def action_cancel_command(self) -> None:
        if not self._chat.cancel():
            self.notify("No command is running", severity="warning")

    # ── Export ──

    def action_export(self, fmt: str = "markdown") -> None:
        self.run_worker(self._export(fmt), group="export")

    async def _export(self, fmt: str) -> None:
        if not self._chat.messages:
            self.notify("Nothing to export", severity="warning")
            return
        path = self._chat.export_path(fmt)
        result = await self._chat.export(fmt, path)
        if result.success:
            self.notify(f"Chat exported to {path}")
        else:
            self.notify(f"Export failed: {result.error}", severity="error")

    def _focus_chat_input(self) -> None:
        try:
            self.screen.query_one("#chat-input", Input).focus()
        except NoMatches:
            pass
