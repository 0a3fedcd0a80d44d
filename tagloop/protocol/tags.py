"""Tag grammar for the bracket control protocol embedded in model output.

Recognized constructs::

    [reaction:heart]  [reaction:2:haha]  [sticker:cat]  [card]  [card:123]
    [undo:-1]  [undo:-1:-3]  [undo:all]
    [msg]text[/msg]  [quote:0]quoted reply[/quote] trailing reply
    [link:https://...]caption[/link]  [image:https://...]caption[/image]
    [tool:name key="value"]  [tool:name]{"key": "value"}[/tool]

Tool calls are located first. Their spans hide any action-looking text inside
a JSON payload from the action scanner.

``final=False`` is used while a response is still streaming. In that mode
anything that could still change when more text is appended is withheld, so
every construct that is reported has exactly the shape a parse of the full
response would give it.
"""

from __future__ import annotations

import logging
import re

from tagloop.models import ActionTag, Category, ToolCall
from tagloop.protocol.params import recover_params

LOGGER = logging.getLogger(__name__)

TOOL_CLOSE = "[/tool]"

VALID_REACTIONS = frozenset({"heart", "haha", "wow", "sad", "angry", "like"})

_TOOL_OPEN_RE = re.compile(r"\[tool:(\w+)(?:\s+([^\]]*))?\]", re.IGNORECASE)

_ACTION_RE = re.compile(
    r"\[(?:"
    r"reaction:(?:(?P<reaction_index>-?\d+):)?(?P<reaction>\w+)"
    r"|sticker:(?P<sticker>\w+)"
    r"|undo:(?P<undo>all|-?\d+(?::-?\d+)?)"
    r"|card(?::(?P<card>\w+))?"
    r"|(?P<msg>msg)"
    r"|quote:(?P<quote>-?\d+)"
    r"|link:(?P<link>https?://[^\]\s]+)"
    r"|image:(?P<image>https?://[^\]\s]+)"
    r")\]",
    re.IGNORECASE,
)

_CLOSERS = {
    Category.MESSAGE: re.compile(r"\[/msg\]", re.IGNORECASE),
    Category.QUOTE: re.compile(r"\[/quote\]", re.IGNORECASE),
    Category.LINK: re.compile(r"\[/link\]", re.IGNORECASE),
    Category.IMAGE: re.compile(r"\[/image\]", re.IGNORECASE),
}

# Tags that may appear inside a [msg], [quote], [link] or [image] body.
_INLINE_CATEGORIES = frozenset(
    {Category.REACTION, Category.STICKER, Category.LINK, Category.CARD, Category.UNDO}
)

# Block markup left in a message or caption body once its inline tags are removed.
_BLOCK_MARKUP_RE = re.compile(
    r"\[/?(?:msg|quote(?::-?\d+)?|link(?::[^\]\s]+)?|image(?::[^\]\s]+)?)\]",
    re.IGNORECASE,
)

Span = tuple[int, int]


def find_close_tag(text: str, terminator: str = TOOL_CLOSE, start: int = 0) -> int:
    """Return the index of the first terminator outside a quoted string.

    Everything from ``start`` up to each candidate is walked, toggling string
    state on unescaped double quotes. Returns -1 when every occurrence sits
    inside a string.
    """
    pattern = re.compile(re.escape(terminator), re.IGNORECASE)
    for match in pattern.finditer(text, start):
        if not _inside_string(text, start, match.start()):
            return match.start()
    return -1


def _inside_string(text: str, start: int, end: int) -> bool:
    in_string = False
    escape_next = False
    for char in text[start:end]:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
    return in_string


def _scan_tools(text: str, final: bool) -> tuple[list[ToolCall], int | None]:
    """Find tool calls in order.

    Returns the calls plus, in streaming mode, the offset of a tool tag whose
    body may still be arriving (everything from there on is undecided).
    """
    calls: list[ToolCall] = []
    pos = 0
    while True:
        match = _TOOL_OPEN_RE.search(text, pos)
        if match is None:
            return calls, None

        tag_end = match.end()
        rest = text[tag_end:]
        body = rest.lstrip()
        body_start = tag_end + len(rest) - len(body)
        payload: str | None = None

        if body.startswith("{"):
            close = find_close_tag(text, TOOL_CLOSE, body_start)
            if close != -1:
                payload = text[body_start:close].strip()
                end = close + len(TOOL_CLOSE)
            elif final:
                LOGGER.warning("Tool %s payload has no %s, using inline params", match.group(1), TOOL_CLOSE)
                end = len(text)
            else:
                return calls, match.start()
        elif body[: len(TOOL_CLOSE)].lower() == TOOL_CLOSE:
            end = body_start + len(TOOL_CLOSE)
        elif not final and TOOL_CLOSE.startswith(body.lower()):
            return calls, match.start()
        else:
            end = tag_end

        calls.append(
            ToolCall(
                tool_name=match.group(1),
                params=recover_params(match.group(2), payload),
                raw_span=text[match.start():end],
                span=(match.start(), end),
            )
        )
        LOGGER.debug("Parsed tool call %s: %s", match.group(1), calls[-1].params)
        pos = end


def _region_at(regions: list[Span], index: int) -> Span | None:
    for region in regions:
        if region[0] <= index < region[1]:
            return region
    return None


def _find_close(pattern: re.Pattern[str], text: str, start: int, end: int, masked: list[Span]) -> re.Match[str] | None:
    pos = start
    while pos < end:
        match = pattern.search(text, pos, end)
        if match is None:
            return None
        region = _region_at(masked, match.start())
        if region is None:
            return match
        pos = region[1]
    return None


def _category(match: re.Match[str]) -> Category:
    groups = match.groupdict()
    if groups["reaction"] is not None:
        return Category.REACTION
    if groups["sticker"] is not None:
        return Category.STICKER
    if groups["undo"] is not None:
        return Category.UNDO
    if groups["msg"] is not None:
        return Category.MESSAGE
    if groups["quote"] is not None:
        return Category.QUOTE
    if groups["link"] is not None:
        return Category.LINK
    if groups["image"] is not None:
        return Category.IMAGE
    return Category.CARD


def _simple_tag(category: Category, match: re.Match[str]) -> ActionTag:
    raw = match.group(0)
    span = (match.start(), match.end())
    if category is Category.REACTION:
        index = match.group("reaction_index")
        return ActionTag(
            category,
            payload=match.group("reaction").lower(),
            raw_span=raw,
            target_index=int(index) if index is not None else None,
            span=span,
        )
    if category is Category.STICKER:
        return ActionTag(category, payload=match.group("sticker"), raw_span=raw, span=span)
    if category is Category.UNDO:
        target = match.group("undo").lower()
        single = None if target == "all" or ":" in target else int(target)
        return ActionTag(category, payload=target, raw_span=raw, target_index=single, span=span)
    return ActionTag(category, payload=match.group("card") or "", raw_span=raw, span=span)


def _scan_actions(
    text: str,
    start: int,
    end: int,
    masked: list[Span],
    final: bool,
    inline_only: bool = False,
) -> list[ActionTag]:
    tags: list[ActionTag] = []
    pos = start
    while pos < end:
        match = _ACTION_RE.search(text, pos, end)
        if match is None:
            break
        region = _region_at(masked, match.start())
        if region is not None:
            pos = region[1]
            continue

        category = _category(match)
        if inline_only and category not in _INLINE_CATEGORIES:
            pos = match.end()
            continue
        if category not in _CLOSERS:
            tags.append(_simple_tag(category, match))
            pos = match.end()
            continue

        close = _find_close(_CLOSERS[category], text, match.end(), end, masked)
        if close is not None:
            body_end, block_end = close.start(), close.end()
        elif not final:
            # Anything after an unclosed opener may still end up inside it.
            break
        elif category in (Category.LINK, Category.IMAGE):
            body_end = block_end = match.end()
        else:
            body_end = block_end = end

        trailing = ""
        if category is Category.QUOTE and block_end < end:
            next_tag = text.find("[", block_end)
            if next_tag == -1:
                if not final:
                    break
                next_tag = len(text)
            trailing = text[block_end:next_tag].strip()
            block_end = next_tag
        elif category is Category.QUOTE and not final:
            break

        tags.append(_block_tag(category, match, text, body_end, block_end, trailing, masked))
        pos = block_end
    return tags


def _block_tag(
    category: Category,
    match: re.Match[str],
    text: str,
    body_end: int,
    block_end: int,
    trailing: str,
    masked: list[Span],
) -> ActionTag:
    body_start = match.end()
    span = (match.start(), block_end)
    raw = text[match.start():block_end]

    children = _scan_actions(text, body_start, body_end, masked, final=True, inline_only=True)
    hidden = masked + [child.span for child in children] + _markup_spans(text, body_start, body_end)
    body = _cut(text, body_start, body_end, hidden).strip()

    if category in (Category.LINK, Category.IMAGE):
        return ActionTag(
            category,
            payload=match.group(category.value),
            raw_span=raw,
            caption=body or None,
            children=children,
            span=span,
        )

    if trailing:
        body = f"{body} {trailing}".strip()
    target = int(match.group("quote")) if category is Category.QUOTE else None
    return ActionTag(category, payload=body, raw_span=raw, target_index=target, children=children, span=span)


def _markup_spans(text: str, start: int, end: int) -> list[Span]:
    """Block openers and closers that cannot nest inside a body."""

    return [match.span() for match in _BLOCK_MARKUP_RE.finditer(text, start, end)]


def _join(pieces: list[str]) -> str:
    out = ""
    for piece in pieces:
        if not piece:
            continue
        if out:
            if out[-1].isalnum() and piece[0].isalnum():
                out += " "
            elif out[-1] == " " and piece[0] == " ":
                piece = piece.lstrip(" ")
        out += piece
    return out


def _cut(text: str, start: int, end: int, spans: list[Span]) -> str:
    """Return text[start:end] with the given spans removed."""

    pieces: list[str] = []
    pos = start
    for span_start, span_end in sorted(spans):
        if span_end <= pos or span_start >= end:
            continue
        pieces.append(text[pos:max(span_start, pos)])
        pos = min(span_end, end)
    pieces.append(text[pos:end])
    return _join(pieces)


def parse_tags(text: str, final: bool = True) -> list[ActionTag | ToolCall]:
    """Parse every action tag and tool call in ``text``, ordered by position."""

    tool_calls, pending_from = _scan_tools(text, final)
    masked: list[Span] = [call.span for call in tool_calls]
    end = len(text) if pending_from is None else pending_from

    actions = _scan_actions(text, 0, end, masked, final)
    items: list[ActionTag | ToolCall] = [*actions, *tool_calls]
    items.sort(key=lambda item: item.span[0])
    return items


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Parse tool calls from a complete response."""

    calls, _ = _scan_tools(text, final=True)
    return calls


def has_tool_calls(text: str) -> bool:
    return _TOOL_OPEN_RE.search(text) is not None


def strip_tags(text: str) -> str:
    """Remove every recognized construct, leaving the conversational text."""

    spans = [item.span for item in parse_tags(text, final=True)]
    return _cut(text, 0, len(text), spans).strip()
