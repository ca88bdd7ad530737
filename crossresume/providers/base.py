"""Abstract base for session providers.

Each provider wraps one coding agent's on-disk session format. A
provider knows where its sessions live, how to recognise its files, how
to parse them into a ``CanonicalSession`` and how to render one back
into a native file set.
"""
from __future__ import annotations

import abc
import json
import logging
import shutil
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..durable_write import atomic_write_files
from ..errors import SessionReadError, UnreadableSessionError
from ..models import (
    CanonicalMessage,
    CanonicalSession,
    DetectionResult,
    MessageRole,
    ReadStats,
    SessionSummary,
    ToolCall,
    ToolResult,
    WriteOptions,
    WrittenSession,
)
from ..normalize import coerce_text, flatten_content, now_millis

logger = logging.getLogger(__name__)

ENRICH_MARKER = "[crossresume]"


class SessionProvider(abc.ABC):
    """Capability interface shared by every supported provider."""

    name: str
    slug: str
    alias: str
    env_var: str
    binary: str
    # Default home, relative to the user's home directory.
    home_parts: tuple[str, ...]
    # Top-level record keys the writer sets itself; never passed through.
    reserved_keys: frozenset[str] = frozenset()

    def default_home(self) -> Path:
        return Path.home().joinpath(*self.home_parts)

    def detect(self, home: Path) -> DetectionResult:
        evidence: list[str] = []
        installed = home.is_dir()
        if installed:
            evidence.append(f"home directory found: {home}")
        binary_path = shutil.which(self.binary)
        if binary_path:
            evidence.append(f"binary on PATH: {binary_path}")
        logger.debug("detect %s: installed=%s evidence=%s", self.slug, installed, evidence)
        return DetectionResult(installed=installed, evidence=evidence)

    def session_root(self, home: Path) -> Path:
        return home

    @abc.abstractmethod
    def iter_session_files(self, home: Path) -> Iterator[Path]:
        """Yield candidate session files under the provider's root."""

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        """Ids this file answers to during discovery."""
        return {path.stem}

    def owns_path(self, path: Path, home: Path) -> bool:
        try:
            path.resolve().relative_to(self.session_root(home).resolve())
        except ValueError:
            return False
        return True

    @abc.abstractmethod
    def sniff(self, path: Path) -> bool:
        """Cheap check whether ``path`` looks like this provider's format."""

    @abc.abstractmethod
    def read(self, path: Path) -> CanonicalSession:
        """Parse a native session file into a canonical session."""

    @abc.abstractmethod
    def render(
        self,
        session: CanonicalSession,
        messages: list[CanonicalMessage],
        session_id: str,
        home: Path,
    ) -> list[tuple[Path, str]]:
        """Render the native file set as ``(path, content)`` pairs."""

    def resume_command(self, session_id: str) -> str:
        return f"{self.binary} --resume {session_id}"

    def list_sessions(self, home: Path) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        for path in self.iter_session_files(home):
            try:
                session = self.read(path)
            except SessionReadError as exc:
                logger.debug("Skipping unreadable %s session %s: %s", self.slug, path, exc)
                continue
            summaries.append(session.summary())
        return summaries

    def write(
        self,
        session: CanonicalSession,
        home: Path,
        options: WriteOptions | None = None,
    ) -> WrittenSession:
        """Mint a fresh id, render the native files and install them atomically."""
        options = options or WriteOptions()
        session_id = options.id_factory()
        prepended = enrichment_messages(session, self) if options.enrich else []
        messages = prepended + list(session.messages)

        files = self.render(session, messages, session_id, home)
        batch = atomic_write_files(files, force=options.force)

        dropped = 0
        if session.provider_slug != self.slug:
            dropped = sum(1 for m in session.messages if m.extra)
        logger.info(
            "Wrote %s session %s (%d messages, %d file(s))",
            self.slug, session_id, len(messages), len(files),
        )
        return WrittenSession(
            paths=batch.paths,
            session_id=session_id,
            resume_command=self.resume_command(session_id),
            backup_paths=batch.backup_paths,
            prepended_messages=len(prepended),
            dropped_extras=dropped,
        )

    # -- helpers for subclasses ---------------------------------------------

    def passthrough(self, session: CanonicalSession, message: CanonicalMessage) -> dict[str, Any]:
        """Native fields from the source record that the target can keep."""
        if session.provider_slug != self.slug or not message.extra:
            return {}
        return {k: v for k, v in message.extra.items() if k not in self.reserved_keys}

    @staticmethod
    def read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise UnreadableSessionError(path, str(exc)) from exc

    def iter_jsonl(self, path: Path, stats: ReadStats) -> Iterator[tuple[int, dict[str, Any]]]:
        """Yield ``(line_no, record)`` for each decodable object line.

        Blank lines are ignored; malformed or non-object lines are
        counted as skipped.
        """
        for line_no, raw in enumerate(self.read_text(path).splitlines(), start=1):
            if not raw.strip():
                continue
            stats.record()
            try:
                row = json.loads(raw)
            except json.JSONDecodeError:
                stats.skip()
                logger.debug("%s:%d: invalid json, skipped", path.name, line_no)
                continue
            if not isinstance(row, dict):
                stats.skip()
                logger.debug("%s:%d: not an object, skipped", path.name, line_no)
                continue
            yield line_no, row

    @staticmethod
    def head_records(path: Path, limit: int = 10) -> list[dict[str, Any]]:
        """First decodable JSONL records, for sniffing and id probes."""
        records: list[dict[str, Any]] = []
        try:
            with path.open(encoding="utf-8", errors="replace") as f:
                for raw in f:
                    if len(records) >= limit:
                        break
                    raw = raw.strip()
                    if not raw:
                        continue
                    try:
                        row = json.loads(raw)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(row, dict):
                        records.append(row)
        except OSError:
            return []
        return records

    @staticmethod
    def iter_sorted(root: Path, pattern: str) -> Iterator[Path]:
        if not root.is_dir():
            return
        for path in sorted(root.glob(pattern)):
            if path.is_file():
                yield path


def enrichment_messages(
    session: CanonicalSession,
    target: SessionProvider,
) -> list[CanonicalMessage]:
    """Synthetic orientation turns written ahead of a converted session."""
    first_ts = next((m.timestamp for m in session.messages if m.timestamp is not None), None)
    if first_ts is None:
        first_ts = session.started_at
    where = f" in {session.workspace}" if session.workspace else ""
    context = (
        f"{ENRICH_MARKER} This conversation was converted from a "
        f"{session.provider_slug} session ({session.session_id}){where} "
        f"for {target.name}. It contains {len(session.messages)} earlier messages. "
        "Continue from where it left off."
    )
    if session.title:
        context += f"\nTopic: {session.title}"
    return [
        CanonicalMessage(idx=0, role=MessageRole.USER, content=context, timestamp=first_ts),
        CanonicalMessage(
            idx=1,
            role=MessageRole.ASSISTANT,
            content="Understood. I have the prior conversation and will pick up from there.",
            timestamp=first_ts,
        ),
    ]


def fill_timestamps(session: CanonicalSession, messages: list[CanonicalMessage]) -> list[int]:
    """Timestamps for formats that require one on every record.

    A missing value inherits the previous message's, then the session
    start, then the current time.
    """
    fallback = session.started_at if session.started_at is not None else now_millis()
    stamps: list[int] = []
    for message in messages:
        if message.timestamp is not None:
            fallback = message.timestamp
        stamps.append(fallback)
    return stamps


def tool_calls_from_blocks(blocks: Any) -> list[ToolCall]:
    if not isinstance(blocks, list):
        return []
    calls: list[ToolCall] = []
    for block in blocks:
        if not isinstance(block, dict) or str(block.get("type") or "").lower() != "tool_use":
            continue
        calls.append(
            ToolCall(
                id=block.get("id") if isinstance(block.get("id"), str) else None,
                name=str(block.get("name") or "unknown"),
                arguments=block.get("input"),
            )
        )
    return calls


def tool_results_from_blocks(blocks: Any) -> list[ToolResult]:
    if not isinstance(blocks, list):
        return []
    results: list[ToolResult] = []
    for block in blocks:
        if not isinstance(block, dict) or str(block.get("type") or "").lower() != "tool_result":
            continue
        content = block.get("content", block.get("output"))
        results.append(
            ToolResult(
                call_id=block.get("tool_use_id") if isinstance(block.get("tool_use_id"), str) else None,
                content=flatten_content(content) if isinstance(content, list) else coerce_text(content),
                is_error=block.get("is_error") is True,
            )
        )
    return results


def tool_blocks(message: CanonicalMessage) -> list[dict[str, Any]]:
    """Anthropic-style ``tool_use``/``tool_result`` blocks for a message."""
    blocks: list[dict[str, Any]] = []
    for call in message.tool_calls:
        blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
    for result in message.tool_results:
        blocks.append({
            "type": "tool_result",
            "tool_use_id": result.call_id,
            "content": result.content,
            "is_error": result.is_error,
        })
    return blocks
