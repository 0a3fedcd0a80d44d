"""Parameter recovery for tool tags.

Tool tags carry parameters two ways: inline ``key="value"`` pairs in the
opening tag and an optional JSON body. Models frequently produce slightly
broken JSON, so the body goes through ``json_repair`` when a strict parse
fails.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import json_repair

LOGGER = logging.getLogger(__name__)

_PARAM_RE = re.compile(r"""(\w+)=(?:"((?:[^"\\]|\\.)*)"|'((?:[^'\\]|\\.)*)'|(\S+))""")
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {'"': '"', "'": "'", "n": "\n", "t": "\t", "\\": "\\"}
_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_MISSING_VALUE_RE = re.compile(r'"(\w+)":\s*[,}\]]')

_MAX_NUMERIC_LENGTH = 15


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(0)), value)


def _keep_as_string(key: str, value: str) -> bool:
    lowered = key.lower()
    return (
        len(value) > _MAX_NUMERIC_LENGTH
        or lowered.endswith("id")
        or "phone" in lowered
        or value.startswith("0")
    )


def _coerce(key: str, value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    if _NUMBER_RE.fullmatch(value) and not _keep_as_string(key, value):
        if any(ch in value for ch in ".eE"):
            return float(value)
        return int(value)
    return value


def parse_inline_params(text: str | None) -> dict[str, Any]:
    """Parse ``key="value" key2=123`` pairs from an opening tool tag.

    Quoted values are unescaped and kept as strings. Unquoted values are
    coerced to booleans and numbers, except identifiers, phone numbers,
    leading-zero codes and very long digit strings.
    """
    params: dict[str, Any] = {}
    if not text:
        return params

    for match in _PARAM_RE.finditer(text):
        key, double_quoted, single_quoted, bare = match.groups()
        if double_quoted is not None:
            params[key] = _unescape(double_quoted)
        elif single_quoted is not None:
            params[key] = _unescape(single_quoted)
        else:
            params[key] = _coerce(key, bare)
    return params


def parse_payload(text: str) -> dict[str, Any] | None:
    """Parse a JSON object body, repairing it when the strict parse fails.

    Returns None when neither attempt yields a JSON object.
    """
    missing = _MISSING_VALUE_RE.search(text)
    if missing:
        LOGGER.warning(
            "Tool payload field %r has no value, output was probably truncated: %s",
            missing.group(1),
            text[:150],
        )

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        return parsed if isinstance(parsed, dict) else None

    try:
        repaired = json_repair.repair_json(text)
        parsed = json.loads(repaired)
    except (ValueError, RecursionError) as exc:
        LOGGER.warning("Tool payload repair failed: %s", exc)
        return None

    if not isinstance(parsed, dict):
        LOGGER.warning("Tool payload is not a JSON object after repair: %s", text[:100])
        return None
    LOGGER.debug("Tool payload repaired: %s -> %s", text[:100], repaired[:100])
    return parsed


def recover_params(inline: str | None, payload: str | None = None) -> dict[str, Any]:
    """Combine inline and payload parameters; payload values win on conflict."""

    params = parse_inline_params(inline)
    if payload is None:
        return params
    parsed = parse_payload(payload)
    if parsed is None:
        return params
    return {**params, **parsed}
