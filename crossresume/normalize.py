"""Normalization helpers shared by provider readers and writers."""

from __future__ import annotations

import json
import math
import re
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from .models import CanonicalMessage, MessageRole

# Epoch values below this are seconds, at or above are milliseconds.
MILLIS_THRESHOLD = 100_000_000_000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Millisecond range a datetime can hold.
_MIN_MILLIS = (datetime.min.replace(tzinfo=timezone.utc) - _EPOCH) // timedelta(milliseconds=1)
_MAX_MILLIS = (datetime.max.replace(tzinfo=timezone.utc) - _EPOCH) // timedelta(milliseconds=1)
# Carried by tool calls/results or not user-visible.
_NON_TEXT_BLOCK_TYPES = {"tool_use", "tool_result", "thinking", "redacted_thinking", "image"}
_FRACTION_RE = re.compile(r"(?<=:\d\d)\.(\d+)")

_ROLE_ALIASES = {
    "user": MessageRole.USER,
    "human": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "model": MessageRole.ASSISTANT,
    "agent": MessageRole.ASSISTANT,
    "gemini": MessageRole.ASSISTANT,
    "ai": MessageRole.ASSISTANT,
    "tool": MessageRole.TOOL,
    "function": MessageRole.TOOL,
    "system": MessageRole.SYSTEM,
}


def coerce_text(value: Any) -> str:
    """Render arbitrary values into stable text for transcript storage."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


def flatten_content(value: Any) -> str:
    """Extract visible text from a string body or a list of content blocks.

    Tool use/result and thinking blocks are excluded; those travel as
    structured tool calls and results instead of text.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get("text")
        return text if isinstance(text, str) else ""
    if not isinstance(value, list):
        return ""

    parts: list[str] = []
    for block in value:
        if isinstance(block, str):
            if block:
                parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        block_type = str(block.get("type") or "").lower()
        if block_type in _NON_TEXT_BLOCK_TYPES:
            continue
        text = block.get("text")
        if isinstance(text, str):
            parts.append(text)
    return "\n".join(parts)


def _from_number(value: int | float) -> int | None:
    if abs(value) < MILLIS_THRESHOLD:
        ms = int(round(value * 1000))
    else:
        ms = int(round(value))
    if not _MIN_MILLIS <= ms <= _MAX_MILLIS:
        return None
    return ms


def _pad_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> int | None:
    """Parse seconds, milliseconds or ISO-8601 values into epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return _from_number(value)
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    try:
        return _from_number(int(raw))
    except ValueError:
        pass
    try:
        number = float(raw)
    except ValueError:
        pass
    else:
        if not math.isfinite(number):
            return None
        return _from_number(number)

    if raw.endswith(("Z", "z")):
        raw = f"{raw[:-1]}+00:00"
    raw = _FRACTION_RE.sub(_pad_fraction, raw)
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def to_datetime(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def format_timestamp(ms: int) -> str:
    """RFC 3339 UTC string with millisecond precision."""
    dt = to_datetime(ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_millis() -> int:
    return (datetime.now(timezone.utc) - _EPOCH) // timedelta(milliseconds=1)


def normalize_role(label: Any) -> MessageRole:
    return _ROLE_ALIASES.get(str(label or "").strip().lower(), MessageRole.OTHER)


def resolve_role(label: Any) -> tuple[MessageRole, str | None]:
    """Map a native role label; OTHER keeps the original label."""
    role = normalize_role(label)
    if role is MessageRole.OTHER:
        return role, str(label or "").strip() or "unknown"
    return role, None


def role_label(message: CanonicalMessage) -> str:
    if message.role is MessageRole.OTHER:
        return message.role_label or "other"
    return message.role.value


def reindex_messages(messages: list[CanonicalMessage]) -> list[CanonicalMessage]:
    for idx, message in enumerate(messages):
        message.idx = idx
    return messages


def truncate_title(text: str, max_len: int = 100) -> str:
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if len(line) <= max_len:
            return line
        return f"{line[:max_len]}..."
    return ""


def title_from_messages(messages: Iterable[CanonicalMessage]) -> str | None:
    for message in messages:
        if message.role is MessageRole.USER and message.content.strip():
            return truncate_title(message.content) or None
    return None


def most_common(values: Iterable[str | None]) -> str | None:
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def time_bounds(messages: Iterable[CanonicalMessage]) -> tuple[int | None, int | None]:
    stamps = [m.timestamp for m in messages if m.timestamp is not None]
    if not stamps:
        return None, None
    return min(stamps), max(stamps)
