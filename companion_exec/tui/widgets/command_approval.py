"""Command approval panel — shows a proposed command for the user to approve, edit or reject."""

from __future__ import annotations

from rich.markup import escape as escape_markup
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import Button, Input, Static


class CommandApproval(Vertical):
    """Panel for approving/rejecting a pending shell command.

    The command sits in an editable input. Enter approves whatever the
    input holds, Escape rejects. While the command runs the panel only
    offers Cancel.
    """

    BINDINGS = [
        Binding("escape", "reject", "Reject", show=False),
    ]

    class Approved(Message):
        def __init__(self, command: str) -> None:
            super().__init__()
            self.command = command

    class Rejected(Message):
        def __init__(self) -> None:
            super().__init__()

    class CancelRequested(Message):
        def __init__(self) -> None:
            super().__init__()

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._running = False

    def compose(self) -> ComposeResult:
        yield Static("", id="approval-title")
        yield Input(placeholder="Command to run...", id="approval-command", select_on_focus=False)
        yield Horizontal(
            Button("Approve", id="approval-approve", variant="success"),
            Button("Reject", id="approval-reject", variant="error"),
            Button("Cancel", id="approval-cancel", variant="warning"),
            id="approval-buttons",
        )

    @property
    def is_visible(self) -> bool:
        return self.has_class("visible")

    @property
    def command(self) -> str:
        return self.query_one("#approval-command", Input).value

    def show_pending(self, command: str, task: str | None = None) -> None:
        """Show a command waiting for approval and focus the editor."""
        self._running = False
        self.add_class("visible")
        title = "[bold yellow]Run this command?[/bold yellow]"
        if task:
            title += f"\n[dim]Request: {escape_markup(task)}[/dim]"
        self.query_one("#approval-title", Static).update(title)
        inp = self.query_one("#approval-command", Input)
        inp.value = command
        inp.cursor_position = len(command)
        inp.disabled = False
        inp.focus()
        self.query_one("#approval-approve", Button).display = True
        self.query_one("#approval-reject", Button).display = True
        self.query_one("#approval-cancel", Button).display = False

    def show_running(self, command: str) -> None:
        self._running = True
        self.add_class("visible")
        self.query_one("#approval-title", Static).update(
            f"[bold cyan]Running:[/bold cyan] {escape_markup(command)}"
        )
        inp = self.query_one("#approval-command", Input)
        inp.value = command
        inp.disabled = True
        self.query_one("#approval-approve", Button).display = False
        self.query_one("#approval-reject", Button).display = False
        self.query_one("#approval-cancel", Button).display = True

    def hide(self) -> None:
        self._running = False
        self.remove_class("visible")
        self.query_one("#approval-command", Input).blur()

    def action_reject(self) -> None:
        if self.is_visible and not self._running:
            self.post_message(self.Rejected())

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if event.button.id == "approval-approve":
            self.post_message(self.Approved(self.command))
        elif event.button.id == "approval-reject":
            self.post_message(self.Rejected())
        elif event.button.id == "approval-cancel":
            self.post_message(self.CancelRequested())

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Enter in the command editor approves the (possibly edited) command."""
        event.stop()
        if not self._running:
            self.post_message(self.Approved(event.value))
