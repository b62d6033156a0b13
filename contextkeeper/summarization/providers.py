"""Completion providers used by the summarizer."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx
from dotenv import load_dotenv

from ..errors import ConfigurationError, SummarizationError

logger = logging.getLogger(__name__)

load_dotenv()


class CompletionProvider(ABC):
    """Minimal interface to whatever answers chat completions.

    Implementations must not have side effects on failure beyond raising.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> str:
        """
        Generate a completion.

        Args:
            messages: List of message dicts with 'role' and 'content' keys
            temperature: Optional sampling temperature
            max_tokens: Optional cap on output tokens
            timeout: Optional per-call timeout in seconds

        Returns:
            The completion text
        """
        pass


class HttpCompletionProvider(CompletionProvider):
    """Calls an OpenAI-compatible ``/v1/chat/completions`` endpoint with httpx.

    Defaults come from ``CONTEXTKEEPER_LLM_API_URL``, ``CONTEXTKEEPER_LLM_API_KEY``
    and ``CONTEXTKEEPER_LLM_MODEL``.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = (api_url or os.getenv("CONTEXTKEEPER_LLM_API_URL") or "").rstrip("/")
        if not self.api_url:
            raise ConfigurationError(
                "api_url is required. Pass it or set CONTEXTKEEPER_LLM_API_URL."
            )
        self.api_key = api_key or os.getenv("CONTEXTKEEPER_LLM_API_KEY")
        self.model = model or os.getenv("CONTEXTKEEPER_LLM_MODEL", "default")
        self._client = client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> str:
        payload: dict[str, Any] = {"model": self.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        url = f"{self.api_url}/v1/chat/completions"
        request_timeout = httpx.Timeout(timeout) if timeout else httpx.Timeout(300.0)

        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=self._get_headers(), timeout=request_timeout
                )
                response.raise_for_status()
            else:
                async with httpx.AsyncClient(timeout=request_timeout) as client:
                    response = await client.post(url, json=payload, headers=self._get_headers())
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SummarizationError(
                f"Completion request failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise SummarizationError(f"Completion request failed: {e}") from e

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise SummarizationError("Malformed completion response") from e
        return content or ""
