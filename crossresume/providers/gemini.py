"""Gemini CLI session provider.

Sessions live at
``<home>/tmp/<sha256(workspace)>/chats/session-YYYY-MM-DDThh-mm-<id8>.json``
as one JSON object with ``sessionId``, ``projectHash``, ``startTime``,
``lastUpdated`` and a ``messages`` array. Assistant turns are typed
``gemini`` (older builds used ``model``).
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..errors import MalformedSessionError, UnreadableSessionError
from ..models import CanonicalMessage, CanonicalSession, MessageRole, ReadStats, ToolCall, ToolResult
from ..normalize import (
    coerce_text,
    flatten_content,
    format_timestamp,
    most_common,
    now_millis,
    parse_timestamp,
    reindex_messages,
    resolve_role,
    role_label,
    time_bounds,
    title_from_messages,
    to_datetime,
)
from .base import SessionProvider, fill_timestamps

logger = logging.getLogger(__name__)
_SESSION_GLOB = "*/chats/session-*.json"
_SKIPPED_TYPES = {"info", "error", "warning"}
_WORKSPACE_SCAN_LIMIT = 50
_PATH_RE = re.compile(r"(/(?:home|Users|root|data/projects|workspace|srv)/[^\s\"'`)\]>,;]+)")


def project_hash(workspace: Path | str) -> str:
    return hashlib.sha256(str(workspace).encode("utf-8")).hexdigest()


def session_filename(session_id: str, started_at: int) -> str:
    stamp = to_datetime(started_at).strftime("%Y-%m-%dT%H-%M")
    return f"session-{stamp}-{session_id[:8]}.json"


def workspace_from_messages(messages: list[CanonicalMessage]) -> Path | None:
    """Best-effort workspace guess from absolute paths mentioned in messages.

    Gemini only stores a hash of the project directory, so the first
    absolute path under a common root wins.
    """
    for message in messages[:_WORKSPACE_SCAN_LIMIT]:
        match = _PATH_RE.search(message.content)
        if not match:
            continue
        raw = match.group(1).rstrip(".:")
        parts = raw.split("/")
        if raw.startswith("/data/projects/") and len(parts) >= 4:
            return Path("/".join(parts[:4]))
        if len(parts) >= 3:
            return Path(raw)
    return None


class GeminiProvider(SessionProvider):
    """Reader and writer for Gemini CLI chat files."""

    name = "Gemini CLI"
    slug = "gemini"
    alias = "gmi"
    env_var = "GEMINI_HOME"
    binary = "gemini"
    home_parts = (".gemini",)
    reserved_keys = frozenset({"id", "timestamp", "type", "content", "model", "toolCalls", "toolResults"})

    def session_root(self, home: Path) -> Path:
        return home / "tmp"

    def iter_session_files(self, home: Path) -> Iterator[Path]:
        yield from self.iter_sorted(self.session_root(home), _SESSION_GLOB)

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        ids = {path.stem.removeprefix("session-")}
        data = self._probe(path)
        if data and isinstance(data.get("sessionId"), str) and data["sessionId"]:
            ids.add(data["sessionId"])
        return ids

    def sniff(self, path: Path) -> bool:
        if path.suffix != ".json":
            return False
        data = self._probe(path)
        return (
            data is not None
            and isinstance(data.get("messages"), list)
            and ("sessionId" in data or "projectHash" in data)
        )

    def _probe(self, path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def read(self, path: Path) -> CanonicalSession:
        raw = self.read_text(path)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise UnreadableSessionError(path, f"invalid json: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedSessionError(path, "expected a top-level object")
        entries = data.get("messages")
        if not isinstance(entries, list):
            raise MalformedSessionError(path, "'messages' is missing or not a list")

        stats = ReadStats()
        messages: list[CanonicalMessage] = []
        for entry in entries:
            stats.record()
            if not isinstance(entry, dict):
                stats.skip()
                continue
            message = self._message(entry, stats)
            if message is not None:
                messages.append(message)

        reindex_messages(messages)
        first, last = time_bounds(messages)
        started_at = parse_timestamp(data.get("startTime"))
        ended_at = parse_timestamp(data.get("lastUpdated"))
        metadata: dict[str, Any] = {"source": self.slug}
        if isinstance(data.get("projectHash"), str):
            metadata["project_hash"] = data["projectHash"]

        session_id = data.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            session_id = path.stem.removeprefix("session-")
        logger.debug("Parsed Gemini session %s: %d messages", session_id, len(messages))
        return CanonicalSession(
            session_id=session_id,
            provider_slug=self.slug,
            workspace=workspace_from_messages(messages),
            title=title_from_messages(messages),
            started_at=started_at if started_at is not None else first,
            ended_at=max((t for t in (ended_at, last) if t is not None), default=None),
            messages=messages,
            metadata=metadata,
            source_path=path,
            model_name=most_common(m.author for m in messages),
            stats=stats,
        )

    def _message(self, entry: dict[str, Any], stats: ReadStats) -> CanonicalMessage | None:
        label = entry.get("type") or entry.get("role") or "user"
        if str(label).lower() in _SKIPPED_TYPES:
            stats.drop(str(label).lower())
            return None
        role, other_label = resolve_role(label)
        text = flatten_content(entry.get("content"))
        tool_calls, embedded_results = self._tool_calls(entry.get("toolCalls"))
        tool_results = self._tool_results(entry.get("toolResults")) or embedded_results
        if not text.strip() and not tool_calls and not tool_results:
            return None
        model = entry.get("model")
        return CanonicalMessage(
            idx=0,
            role=role,
            role_label=other_label,
            content=text,
            timestamp=parse_timestamp(entry.get("timestamp")),
            author=model if isinstance(model, str) and model else None,
            tool_calls=tool_calls,
            tool_results=tool_results,
            extra=entry,
        )

    @staticmethod
    def _tool_calls(value: Any) -> tuple[list[ToolCall], list[ToolResult]]:
        calls: list[ToolCall] = []
        results: list[ToolResult] = []
        if not isinstance(value, list):
            return calls, results
        for item in value:
            if not isinstance(item, dict):
                continue
            call_id = item.get("id") if isinstance(item.get("id"), str) else None
            calls.append(ToolCall(id=call_id, name=str(item.get("name") or "unknown"), arguments=item.get("args")))
            # Gemini CLI inlines the outcome on the call itself.
            if "result" in item or "resultDisplay" in item:
                output = item.get("resultDisplay", item.get("result"))
                results.append(ToolResult(
                    call_id=call_id,
                    content=coerce_text(output),
                    is_error=str(item.get("status") or "").lower() == "error",
                ))
        return calls, results

    @staticmethod
    def _tool_results(value: Any) -> list[ToolResult]:
        if not isinstance(value, list):
            return []
        return [
            ToolResult(
                call_id=item.get("callId") if isinstance(item.get("callId"), str) else None,
                content=coerce_text(item.get("output")),
                is_error=item.get("isError") is True,
            )
            for item in value
            if isinstance(item, dict)
        ]

    def render(
        self,
        session: CanonicalSession,
        messages: list[CanonicalMessage],
        session_id: str,
        home: Path,
    ) -> list[tuple[Path, str]]:
        stamps = fill_timestamps(session, messages)
        start = session.started_at if session.started_at is not None else (stamps[0] if stamps else now_millis())
        end = max(stamps, default=start)
        if session.ended_at is not None:
            end = max(end, session.ended_at)
        workspace = str(session.workspace) if session.workspace else "/tmp"
        digest = project_hash(workspace)
        target = self.session_root(home) / digest / "chats" / session_filename(session_id, start)

        entries: list[dict[str, Any]] = []
        for message, stamp in zip(messages, stamps):
            entry: dict[str, Any] = {
                "id": str(uuid.uuid4()),
                "timestamp": format_timestamp(stamp),
                "type": "gemini" if message.role is MessageRole.ASSISTANT else role_label(message),
                "content": message.content,
            }
            if message.author:
                entry["model"] = message.author
            if message.tool_calls:
                entry["toolCalls"] = [
                    {"id": c.id, "name": c.name, "args": c.arguments} for c in message.tool_calls
                ]
            if message.tool_results:
                entry["toolResults"] = [
                    {"callId": r.call_id, "output": r.content, "isError": r.is_error}
                    for r in message.tool_results
                ]
            entry.update(self.passthrough(session, message))
            entries.append(entry)

        document = {
            "sessionId": session_id,
            "projectHash": digest,
            "startTime": format_timestamp(start),
            "lastUpdated": format_timestamp(end),
            "messages": entries,
        }
        return [(target, json.dumps(document, ensure_ascii=False, indent=2) + "\n")]
