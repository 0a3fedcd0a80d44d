"""Registry for tool registration and safe execution."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ConfigDict, ValidationError, create_model

from tagloop.models import ToolCall, ToolResult
from tagloop.platform_client import PlatformClient
from tagloop.tools.base import ToolContext, ToolDefinition, ToolParameter
from tagloop.tools.feedback import delivery_intents

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Explicit name -> definition map; execution never raises."""

    def __init__(self, platform: PlatformClient | None = None) -> None:
        self._platform = platform
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool already registered: {definition.name}")
        self._tools[definition.name] = definition

    def lookup(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def list_all(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def describe(self) -> str:
        """Tool list and call syntax for the model's system instructions."""

        blocks = []
        for tool in self._tools.values():
            params = "\n".join(
                f"  - {p.name} ({p.type}, {'required' if p.required else 'optional'}): {p.description}"
                for p in tool.parameters
            )
            blocks.append(f"{tool.name}\nDescription: {tool.description}\nParameters:\n{params or '  (none)'}")
        return (
            "Available tools:\n\n"
            + "\n\n".join(blocks)
            + "\n\nCall a tool with [tool:name key=\"value\"] or "
            + "[tool:name]{\"key\": \"value\"}[/tool]. The closing tag is always [/tool]."
        )

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        tool = self._tools.get(call.tool_name)
        if tool is None:
            LOGGER.warning("Model called unknown tool %r", call.tool_name)
            return ToolResult.fail(f'Tool "{call.tool_name}" not found')

        try:
            params = _validate_params(tool.parameters, call.params)
        except ValueError as exc:
            LOGGER.info("Rejected %s call: %s", call.tool_name, exc)
            return ToolResult.fail(str(exc))

        LOGGER.info("Executing tool %s", call.tool_name)
        try:
            result = await tool.execute(params, context)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Tool %s raised", call.tool_name)
            return ToolResult.fail(f"Tool execution failed: {exc}")

        if not isinstance(result, ToolResult):
            result = ToolResult.ok(result)
        LOGGER.debug("Tool %s result: %s", call.tool_name, str(result.data)[:200])

        await self._deliver(call.tool_name, result)
        return result

    async def _deliver(self, tool_name: str, result: ToolResult) -> None:
        if self._platform is None:
            return
        for artifact in delivery_intents(result):
            try:
                await self._platform.on_artifact(artifact)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Delivering %s from %s failed", artifact.kind, tool_name)


def _validate_params(parameters: tuple[ToolParameter, ...], payload: dict[str, Any]) -> dict[str, Any]:
    for param in parameters:
        if param.required and param.name not in payload:
            raise ValueError(f"Missing required parameter: {param.name}")

    fields: dict[str, tuple[Any, Any]] = {}
    for param in parameters:
        typ = _python_type(param.type)
        if param.required:
            fields[param.name] = (typ, ...)
        else:
            fields[param.name] = (typ | None, None)

    model = create_model(
        "ToolInputModel",
        __config__=ConfigDict(extra="allow", coerce_numbers_to_str=True),
        **fields,
    )
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)
