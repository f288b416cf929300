"""LLM service — OpenAI-compatible chat completions over httpx.

The model is a black box here: it gets the conversation and returns text
that may or may not contain an execution directive.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Protocol, runtime_checkable

import httpx

from companion_exec.config import LLMConfig, get_config

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The model could not produce a reply."""


@runtime_checkable
class ChatModel(Protocol):
    """Anything that turns a message list into reply text."""

    async def chat(self, messages: List[Dict[str, str]]) -> str: ...

    async def close(self) -> None: ...


class LLMService:
    def __init__(self, config: LLMConfig | None = None):
        self._cfg = config or get_config().llm
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self._cfg.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazily create a persistent async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._cfg.timeout)
        return self._client

    async def close(self) -> None:
        """Close the persistent HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def chat(self, messages: List[Dict[str, str]]) -> str:
        if not self.configured:
            raise LLMError("No API key configured. Set llm.api_key in config.yaml.")

        payload = {
            "model": self._cfg.model,
            "messages": messages,
            "max_tokens": self._cfg.max_tokens,
            "temperature": self._cfg.temperature,
        }
        url = f"{self._cfg.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._cfg.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug("Sending %d messages to %s", len(messages), self._cfg.model)
        client = await self._get_client()
        try:
            resp = await client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            logger.error("LLM API error %d: %s", e.response.status_code, e)
            raise LLMError(f"LLM API error {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("LLM request failed: %s", e)
            raise LLMError(f"LLM request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("Unexpected LLM response shape: %s", e)
            raise LLMError("Unexpected response from the LLM API") from e

        logger.debug("Response received, length=%d", len(content or ""))
        return content or ""
