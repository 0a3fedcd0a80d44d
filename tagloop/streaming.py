"""Incremental dispatch of tags from a growing response buffer."""

from __future__ import annotations

import logging
import re

from tagloop.errors import TurnCancelled
from tagloop.models import TOOL_KEYS, ActionTag, Category, ParserState, Session, ToolCall
from tagloop.platform_client import PlatformClient, UndoTarget
from tagloop.protocol.tags import VALID_REACTIONS, parse_tags, strip_tags

LOGGER = logging.getLogger(__name__)

_TABLE_OR_CODE_RE = re.compile(r"(\|[^\n]+\|\n\|[-:\s|]+\|)|(```\w*\n[\s\S]*?```)")


def dedup_key(tag: ActionTag) -> str:
    """Key identifying an action within one generation attempt."""

    if tag.category is Category.REACTION:
        if tag.target_index is not None:
            return f"reaction:{tag.target_index}:{tag.payload}"
        return f"reaction:{tag.payload}"
    if tag.category is Category.MESSAGE:
        return f"msg:{tag.raw_span}"
    if tag.category is Category.QUOTE:
        return f"quote:{tag.target_index}:{tag.payload}"
    return f"{tag.category.value}:{tag.payload}"


def _undo_target(payload: str) -> UndoTarget:
    if payload == "all":
        return "all"
    if ":" in payload:
        start, end = payload.split(":", 1)
        return int(start), int(end)
    return int(payload)


class StreamDispatcher:
    """Dispatches each action at most once per ParserState.

    The whole buffer is re-parsed on every chunk; dedup keys in the state make
    that safe. Tool calls are collected on the state in buffer order and left
    for the orchestrator to execute.
    """

    def __init__(self, platform: PlatformClient) -> None:
        self._platform = platform

    async def feed(self, state: ParserState, chunk: str, session: Session | None = None) -> None:
        """Append a streamed chunk and dispatch anything newly complete."""

        state.buffer += chunk
        await self._process(state, session, final=False)

    async def finish(self, state: ParserState, session: Session | None = None) -> None:
        """Dispatch what only a complete buffer can resolve, then the plain-text fallback."""

        await self._process(state, session, final=True)

        plain = strip_tags(state.buffer)
        if not plain:
            return
        if not state.messages_emitted or _TABLE_OR_CODE_RE.search(plain):
            _check_cancelled(session)
            LOGGER.debug("Delivering untagged text as a plain message (%d chars)", len(plain))
            await self._platform.on_message(plain)

    def collect_tool_calls(self, state: ParserState) -> list[ToolCall]:
        """Record tool calls from the buffer as if it were complete, without dispatching actions."""

        for item in parse_tags(state.buffer, final=True):
            if isinstance(item, ToolCall):
                self._record_tool_call(state, item)
        return state.tool_calls

    async def _process(self, state: ParserState, session: Session | None, final: bool) -> None:
        for item in parse_tags(state.buffer, final=final):
            if isinstance(item, ToolCall):
                self._record_tool_call(state, item)
            elif item.category in (Category.MESSAGE, Category.QUOTE):
                await self._dispatch_block(state, item, session)
            else:
                await self._dispatch(state, item, session)

    @staticmethod
    def _record_tool_call(state: ParserState, call: ToolCall) -> None:
        if state.has_emitted(TOOL_KEYS, call.raw_span):
            return
        state.mark(TOOL_KEYS, call.raw_span)
        state.tool_calls.append(call)

    async def _dispatch_block(self, state: ParserState, tag: ActionTag, session: Session | None) -> None:
        for child in tag.children:
            await self._dispatch(state, child, session)

        key = dedup_key(tag)
        category = tag.category.value
        if not tag.payload or state.has_emitted(category, key):
            return
        _check_cancelled(session)
        state.mark(category, key)
        await self._platform.on_message(tag.payload, tag.target_index)

    async def _dispatch(self, state: ParserState, tag: ActionTag, session: Session | None) -> None:
        for child in tag.children:
            await self._dispatch(state, child, session)

        key = dedup_key(tag)
        category = tag.category.value
        if state.has_emitted(category, key):
            return
        if tag.category is Category.REACTION and tag.payload not in VALID_REACTIONS:
            LOGGER.debug("Ignoring unknown reaction %r", tag.payload)
            return

        _check_cancelled(session)
        state.mark(category, key)
        platform = self._platform
        if tag.category is Category.REACTION:
            await platform.on_reaction(tag.payload, tag.target_index)
        elif tag.category is Category.STICKER:
            await platform.on_sticker(tag.payload)
        elif tag.category is Category.UNDO:
            await platform.on_undo(_undo_target(tag.payload))
        elif tag.category is Category.CARD:
            await platform.on_card(tag.payload or None)
        elif tag.category is Category.LINK:
            await platform.on_link(tag.payload, tag.caption)
        elif tag.category is Category.IMAGE:
            await platform.on_image(tag.payload, tag.caption)


def _check_cancelled(session: Session | None) -> None:
    if session is not None and session.aborted:
        raise TurnCancelled(f"Session {session.session_id} cancelled")
