"""Vibe session provider.

Sessions live at ``<home>/<session-id>/messages.jsonl``, one message
per line. Field names vary between builds, so role, content and
timestamp are each looked up under several keys.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..models import CanonicalMessage, CanonicalSession, MessageRole, ReadStats, ToolCall, ToolResult
from ..normalize import (
    coerce_text,
    flatten_content,
    format_timestamp,
    parse_timestamp,
    reindex_messages,
    resolve_role,
    role_label,
    time_bounds,
    title_from_messages,
)
from .base import SessionProvider

logger = logging.getLogger(__name__)

MESSAGES_FILE = "messages.jsonl"
_TIMESTAMP_KEYS = ("timestamp", "created_at", "createdAt", "time", "ts")


def _nested(record: dict[str, Any]) -> dict[str, Any]:
    message = record.get("message")
    return message if isinstance(message, dict) else {}


def extract_role(record: dict[str, Any]) -> str:
    for value in (record.get("role"), record.get("speaker"), _nested(record).get("role")):
        if isinstance(value, str) and value:
            return value
    return "assistant"


def extract_content(record: dict[str, Any]) -> str:
    for key in ("content", "text"):
        if key in record and record[key] is not None:
            return flatten_content(record[key])
    return flatten_content(_nested(record).get("content"))


def extract_timestamp(record: dict[str, Any]) -> int | None:
    for source in (record, _nested(record)):
        for key in _TIMESTAMP_KEYS:
            if key in source:
                parsed = parse_timestamp(source[key])
                if parsed is not None:
                    return parsed
    return None


class VibeProvider(SessionProvider):
    """Reader and writer for Vibe message logs."""

    name = "Vibe"
    slug = "vibe"
    alias = "vib"
    env_var = "VIBE_HOME"
    binary = "vibe"
    home_parts = (".vibe", "logs", "session")
    reserved_keys = frozenset({
        "role", "speaker", "content", "text", "message", "timestamp", "created_at",
        "createdAt", "time", "ts", "tool_calls", "tool_call_id", "tool_results", "cwd",
    })

    def iter_session_files(self, home: Path) -> Iterator[Path]:
        yield from self.iter_sorted(self.session_root(home), f"*/{MESSAGES_FILE}")

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        return {path.parent.name}

    def sniff(self, path: Path) -> bool:
        if path.name != MESSAGES_FILE:
            return False
        records = self.head_records(path, limit=3)
        return bool(records) and any(
            "role" in r or "speaker" in r or "role" in _nested(r) for r in records
        )

    def read(self, path: Path) -> CanonicalSession:
        stats = ReadStats()
        messages: list[CanonicalMessage] = []
        workspace: Path | None = None

        for _, record in self.iter_jsonl(path, stats):
            cwd = record.get("cwd") or record.get("workspace")
            if workspace is None and isinstance(cwd, str) and cwd:
                workspace = Path(cwd)

            role, label = resolve_role(extract_role(record))
            text = extract_content(record)
            tool_calls = self._tool_calls(record.get("tool_calls"))
            tool_results = self._tool_results(record.get("tool_results"))
            call_id = record.get("tool_call_id")
            if role is MessageRole.TOOL and isinstance(call_id, str) and not tool_results:
                tool_results = [ToolResult(call_id=call_id, content=text)]
                text = ""
            if not text.strip() and not tool_calls and not tool_results:
                continue
            messages.append(CanonicalMessage(
                idx=0,
                role=role,
                role_label=label,
                content=text,
                timestamp=extract_timestamp(record),
                tool_calls=tool_calls,
                tool_results=tool_results,
                extra=record,
            ))

        reindex_messages(messages)
        started_at, ended_at = time_bounds(messages)
        session_id = path.parent.name or path.stem
        logger.debug("Parsed Vibe session %s: %d messages", session_id, len(messages))
        return CanonicalSession(
            session_id=session_id,
            provider_slug=self.slug,
            workspace=workspace,
            title=title_from_messages(messages),
            started_at=started_at,
            ended_at=ended_at,
            messages=messages,
            metadata={"source": self.slug},
            source_path=path,
            stats=stats,
        )

    @staticmethod
    def _tool_calls(value: Any) -> list[ToolCall]:
        if not isinstance(value, list):
            return []
        calls: list[ToolCall] = []
        for item in value:
            if not isinstance(item, dict):
                continue
            function = item.get("function") if isinstance(item.get("function"), dict) else item
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    pass
            calls.append(ToolCall(
                id=item.get("id") if isinstance(item.get("id"), str) else None,
                name=str(function.get("name") or "unknown"),
                arguments=arguments,
            ))
        return calls

    @staticmethod
    def _tool_results(value: Any) -> list[ToolResult]:
        if not isinstance(value, list):
            return []
        return [
            ToolResult(
                call_id=item.get("call_id") if isinstance(item.get("call_id"), str) else None,
                content=coerce_text(item.get("content")),
                is_error=item.get("is_error") is True,
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
        target = self.session_root(home) / session_id / MESSAGES_FILE
        lines: list[str] = []
        for index, message in enumerate(messages):
            record: dict[str, Any] = {"role": role_label(message), "content": message.content}
            if message.timestamp is not None:
                record["timestamp"] = format_timestamp(message.timestamp)
            if index == 0 and session.workspace:
                record["cwd"] = str(session.workspace)
            if message.tool_calls:
                record["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
                    }
                    for call in message.tool_calls
                ]
            results = message.tool_results
            if (
                message.role is MessageRole.TOOL
                and not message.content
                and len(results) == 1
                and results[0].call_id
                and not results[0].is_error
            ):
                record["tool_call_id"] = results[0].call_id
                record["content"] = results[0].content
            elif results:
                record["tool_results"] = [
                    {"call_id": r.call_id, "content": r.content, "is_error": r.is_error} for r in results
                ]
            record.update(self.passthrough(session, message))
            lines.append(json.dumps(record, ensure_ascii=False))
        return [(target, "\n".join(lines) + "\n")]
