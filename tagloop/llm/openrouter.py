"""Streaming OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from tagloop.errors import TransientProviderError, error_for_status
from tagloop.keys import Credential
from tagloop.llm.base import LLMProvider

_LOGGER = logging.getLogger(__name__)

_DATA_PREFIX = "data:"
_DONE = "[DONE]"


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible streaming endpoint.

    Retries are not done here; errors are classified and raised for the
    orchestrator, which owns rotation and backoff.
    """

    def __init__(
        self,
        base_url: str,
        request_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = httpx.Timeout(request_timeout_seconds)
        self._transport = transport

    async def stream(self, messages: list[dict[str, str]], credential: Credential) -> AsyncIterator[str]:
        payload: dict[str, Any] = {
            "model": credential.model,
            "messages": messages,
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {credential.api_key}",
            "Content-Type": "application/json",
        }

        _LOGGER.debug("Streaming from %s with key %s", credential.model, credential.masked)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                async with client.stream("POST", "/chat/completions", headers=headers, json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode(errors="replace")
                        raise error_for_status(
                            response.status_code,
                            f"OpenRouter returned HTTP {response.status_code}: {body[:200]}",
                        )
                    async for line in response.aiter_lines():
                        data = _event_data(line)
                        if data is None:
                            continue
                        if data == _DONE:
                            break
                        text = _delta_text(data)
                        if text:
                            yield text
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientProviderError(f"OpenRouter request failed: {exc}") from exc


def _event_data(line: str) -> str | None:
    """Payload of a server-sent-events data line, None for anything else."""

    line = line.strip()
    if not line.startswith(_DATA_PREFIX):
        return None
    return line[len(_DATA_PREFIX):].strip()


def _delta_text(data: str) -> str | None:
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        _LOGGER.debug("Skipping malformed stream event: %r", data[:100])
        return None
    if not isinstance(event, dict):
        return None

    error = event.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        raise error_for_status(code if isinstance(code, int) else 500, str(error.get("message", error)))

    choices = event.get("choices") or []
    if not choices:
        return None
    content = (choices[0].get("delta") or {}).get("content")
    return content or None
