from __future__ import annotations

import pytest

from tagloop.errors import TagloopError
from tagloop.models import Artifact
from tagloop.platform_client import PlatformClient, UndoTarget


class RecordingPlatform(PlatformClient):
    """Platform double that records every callback in order."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.artifacts: list[Artifact] = []
        self.errors: list[BaseException] = []

    def named(self, name: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == name]

    async def on_reaction(self, reaction, target_index=None):  # noqa: ANN001, ANN201
        self.calls.append(("reaction", reaction, target_index))

    async def on_sticker(self, keyword):  # noqa: ANN001, ANN201
        self.calls.append(("sticker", keyword))

    async def on_message(self, text, quote_index=None):  # noqa: ANN001, ANN201
        self.calls.append(("message", text, quote_index))

    async def on_link(self, url, caption=None):  # noqa: ANN001, ANN201
        self.calls.append(("link", url, caption))

    async def on_card(self, user_id=None):  # noqa: ANN001, ANN201
        self.calls.append(("card", user_id))

    async def on_undo(self, target: UndoTarget):  # noqa: ANN201
        self.calls.append(("undo", target))

    async def on_image(self, url, caption=None):  # noqa: ANN001, ANN201
        self.calls.append(("image", url, caption))

    async def on_artifact(self, artifact):  # noqa: ANN001, ANN201
        self.artifacts.append(artifact)
        self.calls.append(("artifact", artifact.kind))

    async def on_complete(self):  # noqa: ANN201
        self.calls.append(("complete",))

    async def on_error(self, error):  # noqa: ANN001, ANN201
        self.errors.append(error)
        self.calls.append(("error", type(error).__name__))


class ScriptedProvider:
    """Yields one scripted response per call.

    A script entry is either a list of chunks, or an exception instance which
    is raised after the chunks preceding it in a tuple ``(chunks, exc)``.
    """

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.requests: list[tuple[list[dict[str, str]], str]] = []

    async def stream(self, messages, credential):  # noqa: ANN001, ANN201
        self.requests.append(([dict(m) for m in messages], credential.api_key))
        if not self.script:
            raise TagloopError("script exhausted")
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        chunks, error = entry if isinstance(entry, tuple) else (entry, None)
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error


@pytest.fixture
def platform() -> RecordingPlatform:
    return RecordingPlatform()


@pytest.fixture
def scripted_provider():  # noqa: ANN201
    return ScriptedProvider


@pytest.fixture
def make_platform():  # noqa: ANN201
    return RecordingPlatform
