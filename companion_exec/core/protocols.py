"""Wire and result models shared by the bridge, the host and the presenter."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from companion_exec.core.enums import Operation


class CommandOutput(BaseModel):
    """Captured result of one shell command."""
    stdout: str = ""
    stderr: str = ""
    # Hosts written against the web surface send camelCase keys.
    exit_code: int = Field(default=-1, validation_alias=AliasChoices("exit_code", "exitCode"))


class SystemInfo(BaseModel):
    os: str
    arch: str
    distro: Optional[str] = None
    shell: Optional[str] = None
    package_manager: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("package_manager", "packageManager"),
    )


class SaveFileResult(BaseModel):
    success: bool
    error: str = ""


class Directive(BaseModel):
    """An execution directive split out of assistant text."""
    command: str
    clean_text: str = ""


class ChatMessage(BaseModel):
    role: str  # "user" | "assistant"
    content: str


# ── Correlated-message envelopes ──


class RequestEnvelope(BaseModel):
    """Request posted from the restricted surface to the privileged host."""
    model_config = ConfigDict(populate_by_name=True)

    operation: Operation
    args: Dict[str, Any] = Field(default_factory=dict)
    callback_id: str = Field(alias="callbackId")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ResponseEnvelope(BaseModel):
    """Reply from the host, matched to its request by callback id."""
    model_config = ConfigDict(populate_by_name=True)

    callback_id: str = Field(alias="callbackId")
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
