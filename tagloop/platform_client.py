"""Chat platform interface consumed by the dispatcher and tool engine."""

from __future__ import annotations

from abc import ABC, abstractmethod

from tagloop.models import Artifact

UndoTarget = int | str | tuple[int, int]


class PlatformClient(ABC):
    """Delivers recognized actions to the chat platform.

    Implementations own message lookup, so indexes are passed through as the
    model wrote them (``-1`` is the session's own most recent message).
    """

    @abstractmethod
    async def on_reaction(self, reaction: str, target_index: int | None = None) -> None:
        """React to a message."""

    @abstractmethod
    async def on_sticker(self, keyword: str) -> None:
        """Send a sticker matching the keyword."""

    @abstractmethod
    async def on_message(self, text: str, quote_index: int | None = None) -> None:
        """Send a text message, optionally quoting another message."""

    @abstractmethod
    async def on_link(self, url: str, caption: str | None = None) -> None:
        """Send a link."""

    @abstractmethod
    async def on_card(self, user_id: str | None = None) -> None:
        """Send a contact card (the bot's own when no user id is given)."""

    @abstractmethod
    async def on_undo(self, target: UndoTarget) -> None:
        """Retract a single message, an inclusive (start, end) range, or "all"."""

    @abstractmethod
    async def on_image(self, url: str, caption: str | None = None) -> None:
        """Send an image by URL."""

    @abstractmethod
    async def on_artifact(self, artifact: Artifact) -> None:
        """Upload a file, image or audio buffer produced by a tool."""

    @abstractmethod
    async def on_complete(self) -> None:
        """The turn finished."""

    @abstractmethod
    async def on_error(self, error: BaseException) -> None:
        """The turn failed. Implementations decide what, if anything, the user sees."""
