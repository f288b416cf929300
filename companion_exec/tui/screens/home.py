"""Home screen — chat transcript, command approval panel and input."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Vertical
from textual.screen import Screen
from textual.widgets import Footer, Header, Input

from companion_exec.tui.widgets.chat_log import ChatLog
from companion_exec.tui.widgets.command_approval import CommandApproval


class HomeScreen(Screen):
    """Main chat screen."""

    BINDINGS = [
        ("ctrl+e", "export_markdown", "Export MD"),
        ("ctrl+o", "export_json", "Export JSON"),
        ("ctrl+x", "cancel_command", "Cancel Cmd"),
        ("ctrl+l", "clear_chat", "Clear"),
        ("ctrl+q", "quit_app", "Quit"),
    ]

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="chat-container"):
            yield ChatLog(id="chat-log")
            yield CommandApproval(id="command-approval")
            yield Input(placeholder="Message the assistant, or /help...", id="chat-input")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#chat-input", Input).focus()

    def action_export_markdown(self) -> None:
        self.app.action_export("markdown")

    def action_export_json(self) -> None:
        self.app.action_export("json")

    def action_cancel_command(self) -> None:
        self.app.action_cancel_command()

    def action_clear_chat(self) -> None:
        self.app.action_clear_chat()

    async def action_quit_app(self) -> None:
        await self.app.action_quit()
