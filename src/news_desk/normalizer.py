"""Tolerant extraction of JSON payloads from free-text model responses.

Model output is unreliable: the JSON may be wrapped in prose, fenced in
markdown, or simply malformed. ``normalize_response`` walks a fallback chain
(bracket-span scan -> outermost span -> fence strip) and reports failure as
data (``data is None``) instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator, Literal

Mode = Literal["array", "object"]

_BRACKETS = {"array": ("[", "]"), "object": ("{", "}")}
_FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_+-]*")


@dataclass(frozen=True)
class NormalizedResponse:
    data: Any
    raw_text: str

    @property
    def structured(self) -> bool:
        return self.data is not None


def _balanced_end(text: str, start: int, opener: str, closer: str) -> int | None:
    """Return the index of the closer matching ``text[start]``, skipping JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return idx
    return None


def _iter_spans(text: str, opener: str, closer: str) -> Iterator[str]:
    start = text.find(opener)
    while start != -1:
        end = _balanced_end(text, start, opener, closer)
        if end is not None:
            yield text[start : end + 1]
        start = text.find(opener, start + 1)


def _try_parse(candidate: str, expected: type | tuple[type, ...]) -> Any:
    try:
        parsed = json.loads(candidate)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, expected) else None


def _is_payload(parsed: Any) -> bool:
    """Objects always qualify; a list must be empty or hold at least one container."""
    if isinstance(parsed, list):
        return not parsed or any(isinstance(item, (dict, list)) for item in parsed)
    return True


def strip_code_fences(text: str) -> str:
    """Remove ``` markers (with an optional language tag) and surrounding whitespace."""
    return _FENCE_PATTERN.sub("", text).strip()


def normalize_response(text: str | None, mode: Mode = "array") -> NormalizedResponse:
    """
    Best-effort parse of a JSON array (``mode="array"``) or object embedded in text.

    Returns ``NormalizedResponse(data=None, raw_text=text)`` when nothing parses;
    the raw text is always preserved unchanged.
    """
    raw_text = text if isinstance(text, str) else ""
    if not raw_text.strip():
        return NormalizedResponse(data=None, raw_text=raw_text)

    opener, closer = _BRACKETS[mode]
    expected = list if mode == "array" else dict

    # Scalar-only lists such as citation markers ("[1]") are kept as a last resort.
    fallback = None
    for span in _iter_spans(raw_text, opener, closer):
        parsed = _try_parse(span, expected)
        if parsed is None:
            continue
        if _is_payload(parsed):
            return NormalizedResponse(data=parsed, raw_text=raw_text)
        if fallback is None:
            fallback = parsed

    first, last = raw_text.find(opener), raw_text.rfind(closer)
    if first != -1 and last > first:
        parsed = _try_parse(raw_text[first : last + 1], expected)
        if parsed is not None and _is_payload(parsed):
            return NormalizedResponse(data=parsed, raw_text=raw_text)

    if fallback is not None:
        return NormalizedResponse(data=fallback, raw_text=raw_text)

    stripped = strip_code_fences(raw_text)
    if stripped:
        parsed = _try_parse(stripped, (list, dict))
        if parsed is not None:
            return NormalizedResponse(data=parsed, raw_text=raw_text)

    return NormalizedResponse(data=None, raw_text=raw_text)


def as_list(data: Any) -> list:
    """Coerce a parsed payload to a list: objects become one-element lists."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


def first_object(data: Any) -> dict | None:
    """Return the payload if it is an object, or the first object of a list."""
    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        return next((item for item in data if isinstance(item, dict)), None)
    return None
