"""Chat log widget — the conversation transcript."""

from __future__ import annotations

from rich.markup import escape as escape_markup
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import RichLog

from companion_exec.core.protocols import ChatMessage

SPEAKERS = {
    "user": "[bold cyan]You[/bold cyan]",
    "assistant": "[bold green]Assistant[/bold green]",
}


class ChatLog(Vertical):
    """Displays chat messages as they are added."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._count = 0

    def compose(self) -> ComposeResult:
        yield RichLog(wrap=True, markup=True, id="chat-richlog")

    def on_mount(self) -> None:
        self.border_title = "Chat"

    @property
    def _log(self) -> RichLog:
        return self.query_one("#chat-richlog", RichLog)

    @property
    def message_count(self) -> int:
        return self._count

    def add_message(self, message: ChatMessage) -> None:
        if self._count:
            self._log.write("")
        speaker = SPEAKERS.get(message.role, escape_markup(message.role))
        self._log.write(speaker)
        # Model and command output may contain [brackets]; never treat them as markup.
        self._log.write(escape_markup(message.content))
        self._count += 1

    def write_notice(self, text: str) -> None:
        self._log.write(f"[dim]{escape_markup(text)}[/dim]")

    def clear(self) -> None:
        self._count = 0
        self._log.clear()
