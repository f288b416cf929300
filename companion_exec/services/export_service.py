"""Conversation export formats."""

from __future__ import annotations

import json
from typing import Iterable

from companion_exec.core.protocols import ChatMessage

EXTENSIONS = {"json": "json", "markdown": "md"}


def export_to_json(messages: Iterable[ChatMessage]) -> str:
    simplified = [{"role": m.role, "content": m.content} for m in messages]
    return json.dumps(simplified, indent=2, ensure_ascii=False)


def export_to_markdown(messages: Iterable[ChatMessage]) -> str:
    blocks = []
    for m in messages:
        speaker = "**You**" if m.role == "user" else "**Assistant**"
        blocks.append(f"{speaker}\n\n{m.content}")
    return "\n\n---\n\n".join(blocks)


def render(messages: Iterable[ChatMessage], fmt: str) -> str:
    if fmt == "json":
        return export_to_json(messages)
    if fmt == "markdown":
        return export_to_markdown(messages)
    raise ValueError(f"Unknown export format: {fmt}")
