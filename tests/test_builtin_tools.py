from datetime import datetime

import pytest

from tagloop.app import build_registry
from tagloop.models import ToolCall
from tagloop.tools.base import ToolContext
from tagloop.tools.file_tool import create_file
from tagloop.tools.time_tool import get_current_time

CONTEXT = ToolContext(session_id="s1")


@pytest.mark.asyncio
async def test_get_current_time_defaults_to_utc():
    result = await get_current_time({}, CONTEXT)

    assert result.success
    assert datetime.fromisoformat(result.data["utc_time"]).utcoffset().total_seconds() == 0


@pytest.mark.asyncio
async def test_get_current_time_with_timezone():
    result = await get_current_time({"timezone": "Asia/Ho_Chi_Minh"}, CONTEXT)

    assert result.success
    assert datetime.fromisoformat(result.data["time"]).utcoffset().total_seconds() == 7 * 3600


@pytest.mark.asyncio
async def test_get_current_time_rejects_unknown_timezone():
    result = await get_current_time({"timezone": "Mars/Olympus"}, CONTEXT)

    assert not result.success


@pytest.mark.asyncio
async def test_create_file_returns_artifact():
    result = await create_file({"filename": "my notes!.md", "content": "# Hi", "format": "md"}, CONTEXT)

    assert result.success
    assert result.data == {"filename": "my_notes.md", "size": 4}
    artifact = result.artifacts[0]
    assert (artifact.kind, artifact.content, artifact.mime_type) == ("file", b"# Hi", "text/markdown")


@pytest.mark.asyncio
async def test_create_file_rejects_unknown_format():
    result = await create_file({"filename": "a", "content": "x", "format": "exe"}, CONTEXT)

    assert not result.success


@pytest.mark.asyncio
async def test_builtin_registry_delivers_created_file(platform):
    registry = build_registry(platform)

    result = await registry.execute(
        ToolCall(tool_name="create_file", params={"filename": "list", "content": "a,b"}, raw_span=""),
        CONTEXT,
    )

    assert result.success
    assert [(a.kind, a.filename) for a in platform.artifacts] == [("file", "list.txt")]
