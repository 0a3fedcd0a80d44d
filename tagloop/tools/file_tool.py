"""Tool that turns model-written text into a file sent to the user."""

from __future__ import annotations

import logging
import re
from typing import Any

from tagloop.models import Artifact, ToolResult
from tagloop.tools.base import ToolContext, ToolDefinition, ToolParameter

LOGGER = logging.getLogger(__name__)

_MIME_TYPES = {
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",
}
_MAX_BYTES = 1_000_000
_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


def _safe_filename(name: str, extension: str) -> str:
    stem = _UNSAFE_CHARS.sub("_", name.rsplit(".", 1)[0] if "." in name else name).strip("._")
    return f"{stem or 'file'}.{extension}"


async def create_file(params: dict[str, Any], context: ToolContext) -> ToolResult:
    content = params["content"]
    extension = str(params.get("format") or "txt").lower().lstrip(".")
    if extension not in _MIME_TYPES:
        return ToolResult.fail(f"Unsupported format: {extension}. Use one of {', '.join(_MIME_TYPES)}")

    data = content.encode("utf-8")
    if len(data) > _MAX_BYTES:
        return ToolResult.fail(f"File too large ({len(data)} bytes, limit {_MAX_BYTES})")

    filename = _safe_filename(params["filename"], extension)
    LOGGER.info("Creating %s (%d bytes) for session %s", filename, len(data), context.session_id)
    artifact = Artifact(
        kind="file",
        content=data,
        filename=filename,
        mime_type=_MIME_TYPES[extension],
        caption=params.get("caption"),
    )
    return ToolResult.ok({"filename": filename, "size": len(data)}, artifacts=[artifact])


CREATE_FILE = ToolDefinition(
    name="create_file",
    description="Create a text file (txt, md, csv or json) and send it to the user.",
    execute=create_file,
    parameters=(
        ToolParameter("filename", required=True, description="Name of the file without path"),
        ToolParameter("content", required=True, description="Full file content"),
        ToolParameter("format", description="txt, md, csv or json (default txt)"),
        ToolParameter("caption", description="Optional caption shown with the file"),
    ),
)
