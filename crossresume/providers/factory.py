"""Factory session provider.

Sessions live at ``<home>/<workspace-slug>/<session-id>.jsonl`` with an
optional ``<session-id>.settings.json`` beside them. The JSONL starts
with a ``session_start`` header followed by ``message`` entries; other
entry types (``todo_state`` and friends) are not conversation turns.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..models import CanonicalMessage, CanonicalSession, MessageRole, ReadStats
from ..normalize import (
    flatten_content,
    format_timestamp,
    most_common,
    parse_timestamp,
    reindex_messages,
    resolve_role,
    role_label,
    time_bounds,
    title_from_messages,
    truncate_title,
)
from .base import SessionProvider, tool_blocks, tool_calls_from_blocks, tool_results_from_blocks

logger = logging.getLogger(__name__)

SETTINGS_SUFFIX = ".settings.json"


def encode_workspace_slug(workspace: Path | str) -> str:
    """``/Users/alice/dev/app`` -> ``-Users-alice-dev-app``."""
    return str(workspace).replace("/", "-")


def decode_workspace_slug(slug: str) -> Path | None:
    # Lossy: dashes inside directory names cannot be told apart.
    if not slug.startswith("-"):
        return None
    return Path(slug.replace("-", "/"))


def settings_path_for(path: Path) -> Path:
    return path.with_name(f"{path.stem}{SETTINGS_SUFFIX}")


class FactoryProvider(SessionProvider):
    """Reader and writer for Factory JSONL sessions."""

    name = "Factory"
    slug = "factory"
    alias = "fac"
    env_var = "FACTORY_HOME"
    binary = "factory"
    home_parts = (".factory", "sessions")
    reserved_keys = frozenset({"type", "id", "timestamp", "message"})

    def iter_session_files(self, home: Path) -> Iterator[Path]:
        yield from self.iter_sorted(self.session_root(home), "*/*.jsonl")

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        ids = {path.stem}
        for row in self.head_records(path, limit=1):
            if row.get("type") == "session_start" and isinstance(row.get("id"), str) and row["id"]:
                ids.add(row["id"])
        return ids

    def sniff(self, path: Path) -> bool:
        if path.suffix != ".jsonl":
            return False
        records = self.head_records(path, limit=3)
        return any(
            r.get("type") == "session_start"
            or (r.get("type") == "message" and isinstance(r.get("message"), dict))
            for r in records
        )

    def read(self, path: Path) -> CanonicalSession:
        stats = ReadStats()
        messages: list[CanonicalMessage] = []
        header: dict[str, Any] = {}

        for line_no, row in self.iter_jsonl(path, stats):
            entry_type = str(row.get("type") or "")
            if entry_type == "session_start":
                header = row
                continue
            if entry_type != "message":
                stats.drop(entry_type)
                continue
            message = row.get("message")
            if not isinstance(message, dict):
                stats.skip()
                logger.debug("%s:%d: message entry without message object", path.name, line_no)
                continue

            raw_content = message.get("content")
            text = flatten_content(raw_content)
            tool_calls = tool_calls_from_blocks(raw_content)
            tool_results = tool_results_from_blocks(raw_content)
            if not text.strip() and not tool_calls and not tool_results:
                continue
            role, label = resolve_role(message.get("role") or "unknown")
            model = message.get("model")
            messages.append(CanonicalMessage(
                idx=0,
                role=role,
                role_label=label,
                content=text,
                timestamp=parse_timestamp(row.get("timestamp")),
                author=model if isinstance(model, str) and model else None,
                tool_calls=tool_calls,
                tool_results=tool_results,
                extra=row,
            ))

        reindex_messages(messages)
        settings = self._load_settings(path)
        model_name = settings.get("model") if isinstance(settings.get("model"), str) else None

        cwd = header.get("cwd")
        workspace = Path(cwd) if isinstance(cwd, str) and cwd else decode_workspace_slug(path.parent.name)
        header_id = header.get("id")
        session_id = header_id if isinstance(header_id, str) and header_id else path.stem
        header_title = header.get("title")
        title = truncate_title(header_title) if isinstance(header_title, str) and header_title else None

        metadata: dict[str, Any] = {"source": self.slug}
        if isinstance(header.get("owner"), str):
            metadata["owner"] = header["owner"]
        if model_name:
            metadata["model"] = model_name

        started_at, ended_at = time_bounds(messages)
        logger.debug("Parsed Factory session %s: %d messages", session_id, len(messages))
        return CanonicalSession(
            session_id=session_id,
            provider_slug=self.slug,
            workspace=workspace,
            title=title or title_from_messages(messages),
            started_at=started_at,
            ended_at=ended_at,
            messages=messages,
            metadata=metadata,
            source_path=path,
            model_name=model_name or most_common(m.author for m in messages),
            stats=stats,
        )

    @staticmethod
    def _load_settings(path: Path) -> dict[str, Any]:
        settings_path = settings_path_for(path)
        if not settings_path.is_file():
            return {}
        try:
            data = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable Factory settings %s: %s", settings_path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def render(
        self,
        session: CanonicalSession,
        messages: list[CanonicalMessage],
        session_id: str,
        home: Path,
    ) -> list[tuple[Path, str]]:
        slug = encode_workspace_slug(session.workspace) if session.workspace else "-tmp"
        target = self.session_root(home) / slug / f"{session_id}.jsonl"

        header: dict[str, Any] = {"type": "session_start", "id": session_id, "title": session.title}
        if session.workspace:
            header["cwd"] = str(session.workspace)
        lines = [json.dumps(header, ensure_ascii=False)]
        for message in messages:
            payload: dict[str, Any] = {"role": role_label(message), "content": self._content(message)}
            if message.author:
                payload["model"] = message.author
            entry: dict[str, Any] = {"type": "message", "id": str(uuid.uuid4())}
            if message.timestamp is not None:
                entry["timestamp"] = format_timestamp(message.timestamp)
            entry["message"] = payload
            entry.update(self.passthrough(session, message))
            lines.append(json.dumps(entry, ensure_ascii=False))

        files = [(target, "\n".join(lines) + "\n")]
        model = session.model_name or most_common(
            m.author for m in messages if m.role is MessageRole.ASSISTANT
        )
        if model:
            settings = json.dumps({"model": model}, ensure_ascii=False, indent=2) + "\n"
            files.append((settings_path_for(target), settings))
        return files

    @staticmethod
    def _content(message: CanonicalMessage) -> str | list[dict[str, Any]]:
        if not message.has_tool_data:
            return message.content
        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return blocks + tool_blocks(message)
