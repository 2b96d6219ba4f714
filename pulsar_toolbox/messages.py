"""
Ordering, identity and merging of broker message batches.

Everything here is pure: functions take message lists and return new
lists, never mutating their inputs.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Sequence

from pulsar_toolbox.types import Message

__all__ = [
    "TIMESTAMP_EXTRACTORS",
    "register_timestamp_extractor",
    "publish_instant",
    "sort_newest_first",
    "message_key",
    "merge_unique_newest_first",
]

TimestampExtractor = Callable[[Message], Any]


def _field(*path: str) -> TimestampExtractor:
    def extract(message: Message) -> Any:
        value: Any = message
        for name in path:
            if not isinstance(value, dict):
                return None
            value = value.get(name)
        return value

    extract.__name__ = "field:" + ".".join(path)
    return extract


# Candidate timestamp locations, most authoritative first.
TIMESTAMP_EXTRACTORS: list[TimestampExtractor] = [
    _field("publishTime"),
    _field("eventTime"),
    _field("publishTimestamp"),
    _field("eventTimestamp"),
    _field("timestamp"),
    _field("metadata", "publishTime"),
    _field("metadata", "eventTime"),
    _field("message", "publishTime"),
    _field("message", "eventTime"),
    _field("properties", "publishTime"),
    _field("properties", "eventTime"),
    _field("properties", "timestamp"),
    _field("properties", "ts"),
    _field("properties", "publish-time"),
    _field("properties", "event-time"),
    _field("decoded", "timestamp"),
    _field("decoded", "time"),
    _field("decoded", "ts"),
]


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def register_timestamp_extractor(extractor: TimestampExtractor, index: int | None = None) -> None:
    """Teach :func:`publish_instant` about another message shape.

    Args:
        extractor: Callable returning a raw timestamp (or ``None``) for a message.
        index: Position in the priority list; appended when omitted.
    """
    if index is None:
        TIMESTAMP_EXTRACTORS.append(extractor)
    else:
        TIMESTAMP_EXTRACTORS.insert(index, extractor)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    return None


def _parse_string(value: str) -> float | None:
    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        return number if math.isfinite(number) else None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return (parsed - _EPOCH) // timedelta(milliseconds=1)


def _normalize(ts: float) -> int:
    if ts < 1e11:
        return int(ts * 1000)
    if 1e13 < ts < 1e16:
        return math.floor(ts / 1000)
    if ts >= 1e16:
        return math.floor(ts / 1e6)
    return int(ts)


def publish_instant(message: Message) -> int:
    """Best-effort publish time of *message* in epoch milliseconds (0 if unknown)."""
    candidates = []
    for extractor in TIMESTAMP_EXTRACTORS:
        try:
            value = extractor(message)
        except (AttributeError, KeyError, TypeError):
            continue
        if value is not None:
            candidates.append(value)

    ts: float | None = None
    for value in candidates:
        ts = _as_number(value)
        if ts is not None:
            break

    if ts is None:
        for value in candidates:
            if isinstance(value, str):
                ts = _parse_string(value)
                if ts is not None:
                    break

    if ts is None:
        return 0
    return _normalize(ts)


def sort_newest_first(messages: Iterable[Message]) -> list[Message]:
    """Stable sort, newest publish instant first."""
    return sorted(messages, key=publish_instant, reverse=True)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def message_key(message: Message, fallback_index: int | None = None) -> str:
    """Identity of *message* for deduplication within one window."""
    raw_id = message.get("messageId") if isinstance(message, dict) else None

    if isinstance(raw_id, str) or (isinstance(raw_id, (int, float)) and not isinstance(raw_id, bool)):
        return str(raw_id)

    if raw_id is not None and not isinstance(raw_id, bool):
        try:
            return _canonical(raw_id)
        except (TypeError, ValueError):
            pass

    published = publish_instant(message)
    payload = message.get("payload")
    if not isinstance(payload, str):
        decoded = message.get("decoded")
        payload = decoded if isinstance(decoded, str) else ""

    if published:
        return f"{published}:{payload}"

    if fallback_index is not None:
        return f"index:{fallback_index}"

    try:
        return _canonical(message)
    except (TypeError, ValueError):
        return repr(message)


def merge_unique_newest_first(
    incoming: Sequence[Message],
    previous: Sequence[Message],
    max_items: int,
) -> list[Message]:
    """Merge two batches into a deduplicated, newest-first list of at most *max_items*.

    On duplicate keys with equal publish instants the copy from *incoming*
    wins, since the sort is stable and *incoming* comes first.
    """
    if max_items <= 0:
        return []
    merged = sort_newest_first([*incoming, *previous])
    seen: set[str] = set()
    output: list[Message] = []

    for message in merged:
        key = message_key(message)
        if key in seen:
            continue
        seen.add(key)
        output.append(message)
        if len(output) >= max_items:
            break

    return output
