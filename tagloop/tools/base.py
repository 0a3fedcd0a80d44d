"""Tool contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tagloop.models import ToolResult


@dataclass(frozen=True, slots=True)
class ToolParameter:
    """One declared tool parameter."""

    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


@dataclass(slots=True)
class ToolContext:
    """Who and where a tool is running for."""

    session_id: str
    sender_id: str | None = None
    sender_name: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult]]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A registered capability: metadata plus one async execute function."""

    name: str
    description: str
    execute: ToolHandler
    parameters: tuple[ToolParameter, ...] = ()

    def required_parameters(self) -> list[str]:
        return [param.name for param in self.parameters if param.required]
