"""Claude Code session provider.

Sessions live at ``<home>/projects/<project-key>/<session-id>.jsonl``.
Each line is an object with a ``type``; only ``user`` and ``assistant``
entries are conversation turns. Those carry ``message.role``,
``message.content`` (string or content blocks) and ``message.model``
plus top-level ``cwd``, ``sessionId``, ``version``, ``gitBranch`` and
``timestamp``.
"""

from __future__ import annotations

import json
import logging
import re
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
from .base import (
    SessionProvider,
    fill_timestamps,
    tool_blocks,
    tool_calls_from_blocks,
    tool_results_from_blocks,
)

logger = logging.getLogger(__name__)

_MESSAGE_TYPES = {"user", "assistant"}
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
WRITER_VERSION = "1.0.0"


def project_dir_key(workspace: Path | str) -> str:
    """Claude's project directory name: every non-alphanumeric char becomes ``-``."""
    return _NON_ALNUM_RE.sub("-", str(workspace))


class ClaudeCodeProvider(SessionProvider):
    """Reader and writer for Claude Code JSONL sessions."""

    name = "Claude Code"
    slug = "claude-code"
    alias = "cc"
    env_var = "CLAUDE_HOME"
    binary = "claude"
    home_parts = (".claude",)
    reserved_keys = frozenset({
        "parentUuid", "isSidechain", "userType", "cwd", "sessionId",
        "version", "type", "message", "uuid", "timestamp",
    })

    def session_root(self, home: Path) -> Path:
        return home / "projects"

    def iter_session_files(self, home: Path) -> Iterator[Path]:
        for path in self.iter_sorted(self.session_root(home), "**/*.jsonl"):
            if "subagents" not in path.parts:
                yield path

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        ids = {path.stem}
        for row in self.head_records(path):
            session_id = row.get("sessionId")
            if isinstance(session_id, str) and session_id:
                ids.add(session_id)
                break
        return ids

    def sniff(self, path: Path) -> bool:
        if path.suffix != ".jsonl":
            return False
        for row in self.head_records(path):
            if row.get("type") in _MESSAGE_TYPES and isinstance(row.get("message"), dict):
                return "sessionId" in row or "parentUuid" in row
        return False

    def read(self, path: Path) -> CanonicalSession:
        stats = ReadStats()
        messages: list[CanonicalMessage] = []
        session_id: str | None = None
        workspace: Path | None = None
        summary_title: str | None = None
        metadata: dict[str, Any] = {"source": self.slug}

        for line_no, row in self.iter_jsonl(path, stats):
            if session_id is None and isinstance(row.get("sessionId"), str) and row["sessionId"]:
                session_id = row["sessionId"]
            if workspace is None and isinstance(row.get("cwd"), str) and row["cwd"]:
                workspace = Path(row["cwd"])
            branch = row.get("gitBranch")
            if isinstance(branch, str) and branch and branch != "HEAD":
                metadata.setdefault("gitBranch", branch)
            version = row.get("version")
            if isinstance(version, str) and version:
                metadata.setdefault("claudeVersion", version)

            row_type = str(row.get("type") or "").lower()
            if row_type not in _MESSAGE_TYPES:
                if row_type == "summary" and isinstance(row.get("summary"), str):
                    summary_title = summary_title or row["summary"]
                stats.drop(row_type)
                continue

            message = row.get("message")
            if not isinstance(message, dict):
                stats.skip()
                logger.debug("%s:%d: %s entry without message object", path.name, line_no, row_type)
                continue

            raw_content = message.get("content")
            text = flatten_content(raw_content)
            if text.strip() == "(no content)":
                text = ""
            tool_calls = tool_calls_from_blocks(raw_content)
            tool_results = tool_results_from_blocks(raw_content)
            if not text.strip() and not tool_calls and not tool_results:
                continue

            role, label = resolve_role(message.get("role") or row_type)
            model = message.get("model")
            messages.append(
                CanonicalMessage(
                    idx=0,
                    role=role,
                    role_label=label,
                    content=text,
                    timestamp=parse_timestamp(row.get("timestamp")),
                    author=model if isinstance(model, str) and model else None,
                    tool_calls=tool_calls,
                    tool_results=tool_results,
                    extra=row,
                )
            )

        reindex_messages(messages)
        started_at, ended_at = time_bounds(messages)
        title = truncate_title(summary_title) if summary_title else title_from_messages(messages)
        session = CanonicalSession(
            session_id=session_id or path.stem,
            provider_slug=self.slug,
            workspace=workspace,
            title=title,
            started_at=started_at,
            ended_at=ended_at,
            messages=messages,
            metadata=metadata,
            source_path=path,
            model_name=most_common(
                m.author for m in messages if m.role is MessageRole.ASSISTANT
            ),
            stats=stats,
        )
        logger.debug(
            "Parsed Claude Code session %s: %d messages, %d skipped",
            session.session_id, len(messages), stats.skipped_records,
        )
        return session

    def render(
        self,
        session: CanonicalSession,
        messages: list[CanonicalMessage],
        session_id: str,
        home: Path,
    ) -> list[tuple[Path, str]]:
        cwd = str(session.workspace) if session.workspace else "/tmp"
        target = self.session_root(home) / project_dir_key(cwd) / f"{session_id}.jsonl"

        lines: list[str] = []
        parent: str | None = None
        for message, stamp in zip(messages, fill_timestamps(session, messages)):
            node_id = str(uuid.uuid4())
            payload: dict[str, Any] = {"role": role_label(message), "content": self._content(message)}
            if message.role is MessageRole.ASSISTANT and message.author:
                payload["model"] = message.author
            record: dict[str, Any] = {
                "parentUuid": parent,
                "isSidechain": False,
                "userType": "external",
                "cwd": cwd,
                "sessionId": session_id,
                "version": WRITER_VERSION,
                "type": "assistant" if message.role is MessageRole.ASSISTANT else "user",
                "message": payload,
                "uuid": node_id,
                "timestamp": format_timestamp(stamp),
            }
            record.update(self.passthrough(session, message))
            lines.append(json.dumps(record, ensure_ascii=False))
            parent = node_id

        return [(target, "\n".join(lines) + "\n")]

    @staticmethod
    def _content(message: CanonicalMessage) -> str | list[dict[str, Any]]:
        if not message.has_tool_data:
            return message.content
        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return blocks + tool_blocks(message)
