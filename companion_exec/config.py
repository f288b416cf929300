"""YAML configuration loading with Pydantic validation."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from companion_exec.core.enums import BridgeMode


def _default_data_dir() -> Path:
    """Return the default data directory: ~/.companion_exec"""
    return Path.home() / ".companion_exec"


def _default_socket_path() -> str:
    """Host socket lives in the per-user runtime dir when there is one."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return str(Path(runtime_dir) / "companion-exec.sock")
    return str(_default_data_dir() / "companion-exec.sock")


class LLMConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    api_key: str = ""
    max_tokens: int = 4096
    temperature: float = 0.8
    timeout: float = 120.0  # seconds


class BridgeConfig(BaseModel):
    """How the UI reaches the privileged host.

    ``direct`` runs commands in this process; ``message`` talks to a
    separate ``companion-exec host`` process over a Unix socket.
    """
    mode: BridgeMode = BridgeMode.DIRECT
    socket_path: str = Field(default_factory=_default_socket_path)


class AssistantConfig(BaseModel):
    personality: str = ""
    export_dir: str = str(_default_data_dir() / "exports")


class LogConfig(BaseModel):
    dir: str = str(_default_data_dir() / "logs")


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    log: LogConfig = Field(default_factory=LogConfig)


_config: AppConfig | None = None


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load config from YAML file. Falls back to defaults if file not found."""
    global _config
    if _config is not None:
        return _config

    paths_to_try = []
    if config_path:
        paths_to_try.append(Path(config_path))
    paths_to_try.extend([
        Path("config.yaml"),
        Path("config.yml"),
        _default_data_dir() / "config.yaml",
        _default_data_dir() / "config.yml",
    ])

    for p in paths_to_try:
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            _config = AppConfig(**data)
            return _config

    _config = AppConfig()
    return _config


def get_config() -> AppConfig:
    """Get the current config, loading defaults if needed."""
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    """Reset config (for testing)."""
    global _config
    _config = None
