"""Repair and parse backend text into candidate alert records.

Backends wrap JSON in markdown fences, prepend prose, drop or duplicate
commas and get cut off mid-document. ``normalize_response`` recovers as many
complete objects as it can from such text and never raises.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


FENCE_PATTERN = re.compile(r"```[A-Za-z]*")

# Control characters except tab, newline and carriage return
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

MAX_RECORD_DEPTH = 32

WRAPPER_KEYS = ("alerts", "records", "events", "documents", "results", "data", "items")

OPENERS = {"{": "}", "[": "]"}
CLOSERS = {"}", "]"}

REPAIRS: Tuple[Tuple[re.Pattern, str], ...] = (
    # trailing separators
    (re.compile(r",\s*([}\]])"), r"\1"),
    # duplicate separators
    (re.compile(r",(\s*,)+"), ","),
    # missing separators between adjacent objects / arrays
    (re.compile(r"}\s*{"), "},{"),
    (re.compile(r"]\s*\["), "],["),
    # missing separator between a value and the next key or value on a new line
    (re.compile(r'("|\d|}|]|true|false|null)([ \t]*\r?\n\s*)(")'), r"\1,\2\3"),
)


def normalize_response(text: Any, max_records: Optional[int] = None) -> List[Dict[str, Any]]:
    """Turn raw backend text into a list of candidate records.

    Args:
        text: Raw backend output
        max_records: Upper bound on the number of records returned

    Returns:
        Possibly empty list of dicts, never longer than ``max_records``
    """
    if not isinstance(text, str) or not text.strip():
        return []

    cleaned = CONTROL_CHARS.sub("", FENCE_PATTERN.sub("", text))
    span, span_end = _outermost_span(cleaned)
    if span is None:
        logger.debug("No JSON structure found in backend response")
        return []

    records: List[Dict[str, Any]] = []
    parsed = _parse(span)
    if parsed is None:
        parsed = _parse(_repair(span))
    if parsed is not None:
        records = _records_from(parsed)

    if parsed is None or _has_more_structure(cleaned, span_end):
        extracted = []
        for obj in _extract_objects(cleaned):
            extracted.extend(_records_from(obj))
        if len(extracted) > len(records):
            logger.debug(f"Recovered {len(extracted)} objects by scanning malformed response")
            records = extracted

    sanitized = [_sanitize(record) for record in records]
    records = [record for record in sanitized if record is not None]
    if len(records) < len(sanitized):
        logger.debug(f"Dropped {len(sanitized) - len(records)} records nested deeper than {MAX_RECORD_DEPTH} levels")
    if max_records is not None:
        records = records[:max(0, max_records)]
    return records


def _parse(text: str) -> Optional[Any]:
    try:
        return json.loads(text, strict=False)
    except (ValueError, RecursionError):
        return None


def _repair(text: str) -> str:
    for pattern, replacement in REPAIRS:
        text = pattern.sub(replacement, text)
    return text


def _match_end(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing the one at ``start``, ignoring string contents."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in OPENERS:
            depth += 1
        elif ch in CLOSERS:
            depth -= 1
            if depth == 0:
                return i
    return None


def _outermost_span(text: str) -> Tuple[Optional[str], int]:
    """Trim ``text`` to its first complete array/object, or to the last closer when truncated."""
    positions = [p for p in (text.find("{"), text.find("[")) if p != -1]
    if not positions:
        return None, len(text)
    start = min(positions)
    end = _match_end(text, start)
    if end is None:
        end = text.rfind(OPENERS[text[start]])
        if end <= start:
            return text[start:], len(text)
    return text[start:end + 1], end + 1


def _has_more_structure(text: str, offset: int) -> bool:
    return "{" in text[offset:]


def _extract_objects(text: str) -> List[Dict[str, Any]]:
    """Every syntactically complete top-level object, scanning past broken ones."""
    objects = []
    pos = 0
    while True:
        start = text.find("{", pos)
        if start == -1:
            break
        end = _match_end(text, start)
        if end is not None:
            candidate = text[start:end + 1]
            value = _parse(candidate)
            if value is None:
                value = _parse(_repair(candidate))
            if isinstance(value, dict):
                objects.append(value)
                pos = end + 1
                continue
        pos = start + 1
    return objects


def _records_from(value: Any) -> List[Dict[str, Any]]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if not isinstance(value, dict):
        return []

    for key in WRAPPER_KEYS:
        inner = value.get(key)
        if isinstance(inner, list):
            return [item for item in inner if isinstance(item, dict)]

    for inner in value.values():
        if isinstance(inner, list) and inner and all(isinstance(item, dict) for item in inner):
            return list(inner)

    return [value] if value else []


def _sanitize(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Copy ``record`` with control characters stripped from every string.

    Walks the structure with an explicit stack. Records nested deeper than
    ``MAX_RECORD_DEPTH`` are rejected with None.
    """
    root: Dict[str, Any] = {}
    stack: List[Tuple[Any, Any, int]] = [(record, root, 1)]
    while stack:
        source, target, depth = stack.pop()
        if depth > MAX_RECORD_DEPTH:
            return None
        items = source.items() if isinstance(source, dict) else enumerate(source)
        for key, value in items:
            if isinstance(value, str):
                value = CONTROL_CHARS.sub("", value)
            elif isinstance(value, (dict, list)):
                child: Any = {} if isinstance(value, dict) else []
                stack.append((value, child, depth + 1))
                value = child
            if isinstance(target, dict):
                target[str(key)] = value
            else:
                target.append(value)
    return root
