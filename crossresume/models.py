"""Canonical session models shared by every reader and writer."""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"
    OTHER = "other"


@dataclass
class ToolCall:
    """Provider tool invocation, passed through uninterpreted."""

    id: str | None
    name: str
    arguments: Any = None


@dataclass
class ToolResult:
    """Output of a tool invocation, correlated by ``call_id``."""

    call_id: str | None
    content: str = ""
    is_error: bool = False


@dataclass
class CanonicalMessage:
    """One conversation turn."""

    idx: int
    role: MessageRole
    content: str
    timestamp: int | None = None
    author: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    # Native label for OTHER roles, e.g. "developer".
    role_label: str | None = None

    @property
    def has_tool_data(self) -> bool:
        return bool(self.tool_calls or self.tool_results)


@dataclass
class ReadStats:
    """Per-read telemetry handed to the validator."""

    total_records: int = 0
    skipped_records: int = 0
    dropped_record_types: Counter = field(default_factory=Counter)

    @property
    def skip_ratio(self) -> float:
        if self.total_records <= 0:
            return 0.0
        return self.skipped_records / self.total_records

    def record(self) -> None:
        self.total_records += 1

    def skip(self) -> None:
        self.skipped_records += 1

    def drop(self, record_type: str) -> None:
        self.dropped_record_types[record_type or "unknown"] += 1


@dataclass
class CanonicalSession:
    """Provider-neutral conversation."""

    session_id: str
    provider_slug: str
    workspace: Path | None = None
    title: str | None = None
    started_at: int | None = None
    ended_at: int | None = None
    messages: list[CanonicalMessage] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    source_path: Path | None = None
    model_name: str | None = None
    stats: ReadStats = field(default_factory=ReadStats, compare=False, repr=False)

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def summary(self) -> SessionSummary:
        return SessionSummary(
            provider=self.provider_slug,
            session_id=self.session_id,
            path=self.source_path,
            title=self.title,
            workspace=self.workspace,
            message_count=len(self.messages),
            started_at=self.started_at,
            ended_at=self.ended_at,
        )


@dataclass
class SessionSummary:
    """One row of a session listing."""

    provider: str
    session_id: str
    path: Path | None
    title: str | None = None
    workspace: Path | None = None
    message_count: int = 0
    started_at: int | None = None
    ended_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "session_id": self.session_id,
            "path": str(self.path) if self.path else None,
            "title": self.title,
            "workspace": str(self.workspace) if self.workspace else None,
            "messages": self.message_count,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


@dataclass
class DetectionResult:
    installed: bool
    evidence: list[str] = field(default_factory=list)


def new_session_id() -> str:
    return str(uuid.uuid4())


@dataclass
class WriteOptions:
    """Caller switches for a writer."""

    force: bool = False
    enrich: bool = False
    id_factory: Callable[[], str] = new_session_id


@dataclass
class WrittenSession:
    """Result of installing a target file set."""

    paths: list[Path]
    session_id: str
    resume_command: str
    backup_paths: list[Path] = field(default_factory=list)
    # Synthetic leading messages added by enrich mode.
    prepended_messages: int = 0
    # Messages whose source extras could not be carried into the target.
    dropped_extras: int = 0
