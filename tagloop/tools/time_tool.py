"""Time utility tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tagloop.models import ToolResult
from tagloop.tools.base import ToolContext, ToolDefinition, ToolParameter


async def get_current_time(params: dict[str, Any], context: ToolContext) -> ToolResult:
    zone_name = params.get("timezone")
    if not zone_name:
        return ToolResult.ok({"utc_time": datetime.now(timezone.utc).isoformat()})
    try:
        zone = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ToolResult.fail(f"Unknown timezone: {zone_name}")
    return ToolResult.ok({"time": datetime.now(zone).isoformat(), "timezone": zone_name})


GET_CURRENT_TIME = ToolDefinition(
    name="get_current_time",
    description="Get the current date/time in ISO-8601 format, in UTC unless a timezone is given.",
    execute=get_current_time,
    parameters=(ToolParameter("timezone", description="IANA timezone name, e.g. Europe/Berlin"),),
)
