"""Core domain models shared by the parser, tool engine and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Action tag categories understood by the platform client."""

    REACTION = "reaction"
    STICKER = "sticker"
    MESSAGE = "message"
    QUOTE = "quote"
    UNDO = "undo"
    LINK = "link"
    CARD = "card"
    IMAGE = "image"


@dataclass(slots=True)
class ActionTag:
    """A bracketed instruction mapping to a user-visible side effect."""

    category: Category
    payload: str
    raw_span: str
    target_index: int | None = None
    caption: str | None = None
    children: list[ActionTag] = field(default_factory=list)
    span: tuple[int, int] = (0, 0)


@dataclass(slots=True)
class ToolCall:
    """A tool invocation recognized in model output."""

    tool_name: str
    params: dict[str, Any]
    raw_span: str
    span: tuple[int, int] = (0, 0)


@dataclass(slots=True)
class Artifact:
    """Binary output a tool wants delivered to the user."""

    kind: str
    content: bytes
    filename: str | None = None
    mime_type: str | None = None
    caption: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Outcome of a single tool execution."""

    success: bool
    data: Any = None
    error: str | None = None
    artifacts: list[Artifact] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, artifacts: list[Artifact] | None = None) -> ToolResult:
        return cls(success=True, data=data, artifacts=list(artifacts or []))

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


TOOL_KEYS = "tool"


def _empty_key_sets() -> dict[str, set[str]]:
    keys: dict[str, set[str]] = {category.value: set() for category in Category}
    keys[TOOL_KEYS] = set()
    return keys


@dataclass(slots=True)
class ParserState:
    """Per-attempt buffer and emitted dedup keys.

    A key present in one of the sets is never dispatched again for the
    lifetime of this object. A retry builds a new instance.
    """

    buffer: str = ""
    emitted: dict[str, set[str]] = field(default_factory=_empty_key_sets)
    tool_calls: list[ToolCall] = field(default_factory=list)

    def has_emitted(self, category: str, key: str) -> bool:
        return key in self.emitted[category]

    def mark(self, category: str, key: str) -> None:
        self.emitted[category].add(key)

    @property
    def messages_emitted(self) -> bool:
        return bool(self.emitted[Category.MESSAGE.value] or self.emitted[Category.QUOTE.value])

    @property
    def anything_emitted(self) -> bool:
        return any(keys for name, keys in self.emitted.items() if name != TOOL_KEYS)


@dataclass(slots=True)
class Session:
    """One conversation turn being processed by the orchestrator."""

    session_id: str
    depth: int = 0
    attempt: int = 0
    aborted: bool = False

    def cancel(self) -> None:
        """Request cooperative cancellation."""

        self.aborted = True


class TurnState(str, Enum):
    """States of the orchestration loop."""

    AWAITING_GENERATION = "awaiting_generation"
    STREAMING = "streaming"
    ACTIONS_DISPATCHED = "actions_dispatched"
    EXECUTING = "executing"
    FEEDBACK_APPENDED = "feedback_appended"
    RETRY = "retry_with_rotated_credential"
    ABORTED_PARTIAL = "aborted_partial"
    COMPLETE = "complete"


@dataclass(slots=True)
class ToolExecution:
    """A tool call paired with its result."""

    call: ToolCall
    result: ToolResult


@dataclass(slots=True)
class TurnOutcome:
    """What happened while processing one user turn."""

    state: TurnState
    depth: int
    responses: list[str] = field(default_factory=list)
    executions: list[ToolExecution] = field(default_factory=list)
    # History including model responses and tool feedback, for the caller to persist.
    messages: list[dict[str, str]] = field(default_factory=list)
