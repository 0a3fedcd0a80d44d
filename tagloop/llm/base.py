"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from tagloop.keys import Credential


class LLMProvider(ABC):
    """Abstract streaming model provider used by the orchestrator.

    Implementations raise ``tagloop.errors.ProviderError`` subclasses so the
    orchestrator can tell rate limits from transient and fatal failures.
    """

    @abstractmethod
    def stream(self, messages: list[dict[str, str]], credential: Credential) -> AsyncIterator[str]:
        """Yield text chunks of one model response."""
