"""Tests for prompt, slash command, export and LLM services."""

import httpx
import pytest

from companion_exec.config import LLMConfig
from companion_exec.core.protocols import ChatMessage, SystemInfo
from companion_exec.services import export_service
from companion_exec.services.llm_service import ChatModel, LLMError, LLMService
from companion_exec.services.prompt_service import build_system_prompt, describe_system
from companion_exec.services.slash_commands import (
    execute_slash_command,
    get_command,
    is_slash_command,
    parse_slash_command,
)


# ── Prompt ──


def test_system_prompt_contains_execute_instructions():
    prompt = build_system_prompt()
    assert "[EXECUTE: command-here]" in prompt
    assert "USER'S SYSTEM" not in prompt
    assert "PERSONALITY" not in prompt


def test_system_prompt_with_system_info_and_personality():
    info = SystemInfo(os="linux", arch="aarch64", distro="Arch Linux", shell="/usr/bin/fish", package_manager="pacman")
    prompt = build_system_prompt(info, personality="  Cheerful and terse.  ")
    assert "PERSONALITY:\nCheerful and terse." in prompt
    assert "- Operating System: linux (Arch Linux)" in prompt
    assert "- Package Manager: pacman" in prompt
    assert prompt.index("COMMAND EXECUTION") < prompt.index("USER'S SYSTEM")


def test_describe_system_unknown_fields():
    text = describe_system(SystemInfo(os="windows", arch="x86_64"))
    assert "- Operating System: windows\n" in text
    assert "- Shell: unknown" in text
    assert "- Package Manager: unknown" in text
    assert describe_system(None) == ""


# ── Slash commands ──


class _Context:
    def __init__(self):
        self.system_info = None
        self.cleared = False

    def clear_messages(self):
        self.cleared = True


def test_parse_slash_command():
    parsed = parse_slash_command("  /Help  me now ")
    assert parsed.name == "help"
    assert parsed.args == ["me", "now"]
    assert parsed.raw_args == "me now"
    assert parse_slash_command("hello") is None
    assert parse_slash_command("/") is None


def test_is_slash_command():
    assert is_slash_command("/clear")
    assert is_slash_command("   /clear")
    assert not is_slash_command("what does /usr hold?")


def test_execute_slash_command_variants():
    ctx = _Context()
    assert execute_slash_command("not a command", ctx) is None

    result = execute_slash_command("/", ctx)
    assert result.error.startswith("Invalid command format")

    result = execute_slash_command("/CLEAR", ctx)
    assert result.error is None
    assert ctx.cleared is True

    result = execute_slash_command("/frobnicate", ctx)
    assert result.error == 'Unknown command "/frobnicate". Type `/help` for available commands.'


def test_help_lists_every_command():
    feedback = execute_slash_command("/help", _Context()).feedback
    for name in ("clear", "sysinfo", "help"):
        assert f"**/{name}**" in feedback
        assert get_command(name) is not None


# ── Export ──


def test_export_formats():
    messages = [ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="héllo")]
    assert export_service.render(messages, "markdown") == "**You**\n\nhi\n\n---\n\n**Assistant**\n\nhéllo"
    assert '"héllo"' in export_service.render(messages, "json")
    assert export_service.render([], "markdown") == ""
    with pytest.raises(ValueError):
        export_service.render(messages, "pdf")


# ── LLM ──


def _llm_with(handler, **cfg):
    config = LLMConfig(base_url="http://llm.test/v1/", api_key="k", model="m", **cfg)
    svc = LLMService(config)
    svc._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return svc


def test_llm_service_is_a_chat_model():
    assert isinstance(LLMService(LLMConfig(api_key="x")), ChatModel)


@pytest.mark.asyncio
async def test_llm_chat_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"choices": [{"message": {"content": "[EXECUTE: ls]"}}]})

    svc = _llm_with(handler)
    reply = await svc.chat([{"role": "user", "content": "list"}])
    assert reply == "[EXECUTE: ls]"
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer k"
    await svc.close()


@pytest.mark.asyncio
async def test_llm_http_error():
    svc = _llm_with(lambda request: httpx.Response(500, json={"error": "down"}))
    with pytest.raises(LLMError, match="500"):
        await svc.chat([])
    await svc.close()


@pytest.mark.asyncio
async def test_llm_bad_shape():
    svc = _llm_with(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LLMError, match="Unexpected response"):
        await svc.chat([])
    await svc.close()


@pytest.mark.asyncio
async def test_llm_requires_api_key():
    svc = LLMService(LLMConfig(api_key=""))
    assert svc.configured is False
    with pytest.raises(LLMError, match="No API key"):
        await svc.chat([])
