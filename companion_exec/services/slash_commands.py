"""Slash commands — handled locally, never sent to the model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from companion_exec.core.protocols import SystemInfo
from companion_exec.services.prompt_service import describe_system


class CommandContext(Protocol):
    """What a slash command may touch in the conversation."""

    system_info: Optional[SystemInfo]

    def clear_messages(self) -> None: ...


@dataclass
class CommandResult:
    handled: bool = True
    feedback: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ParsedCommand:
    name: str
    args: List[str] = field(default_factory=list)
    raw_args: str = ""


CommandHandler = Callable[[ParsedCommand, CommandContext], CommandResult]


@dataclass
class CommandDefinition:
    name: str
    description: str
    usage: str
    handler: CommandHandler


def is_slash_command(text: str) -> bool:
    return text.lstrip().startswith("/")


def parse_slash_command(text: str) -> Optional[ParsedCommand]:
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return None
    parts = trimmed[1:].split()
    if not parts:
        return None
    name = parts[0].lower()
    return ParsedCommand(
        name=name,
        args=parts[1:],
        raw_args=trimmed[1 + len(parts[0]):].strip(),
    )


def _clear(_cmd: ParsedCommand, context: CommandContext) -> CommandResult:
    context.clear_messages()
    return CommandResult()


def _sysinfo(_cmd: ParsedCommand, context: CommandContext) -> CommandResult:
    if context.system_info is None:
        return CommandResult(error="System information is not available.")
    return CommandResult(feedback=describe_system(context.system_info))


def _help(_cmd: ParsedCommand, _context: CommandContext) -> CommandResult:
    lines = [
        f"**/{cmd.name}** - {cmd.description}\n  Usage: `{cmd.usage}`"
        for cmd in COMMAND_REGISTRY
    ]
    return CommandResult(feedback="**Available Commands:**\n\n" + "\n\n".join(lines))


COMMAND_REGISTRY: List[CommandDefinition] = [
    CommandDefinition("clear", "Clear all chat messages", "/clear", _clear),
    CommandDefinition("sysinfo", "Show what the assistant knows about this machine", "/sysinfo", _sysinfo),
    CommandDefinition("help", "Show available commands", "/help", _help),
]


def get_command(name: str) -> Optional[CommandDefinition]:
    name = name.lower()
    for cmd in COMMAND_REGISTRY:
        if cmd.name == name:
            return cmd
    return None


def execute_slash_command(text: str, context: CommandContext) -> Optional[CommandResult]:
    """Run ``text`` as a slash command. Returns None if it is not one."""
    if not is_slash_command(text):
        return None

    parsed = parse_slash_command(text)
    if parsed is None:
        return CommandResult(error="Invalid command format. Type `/help` for available commands.")

    command = get_command(parsed.name)
    if command is None:
        return CommandResult(
            error=f'Unknown command "/{parsed.name}". Type `/help` for available commands.'
        )
    return command.handler(parsed, context)
