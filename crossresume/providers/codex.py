"""Codex rollout session provider.

Rollouts live at
``<home>/sessions/YYYY/MM/DD/rollout-YYYY-MM-DDThh-mm-ss-<id>.jsonl``.
Each line is ``{"timestamp", "type", "payload"}``. ``session_meta``
carries the id and cwd, ``response_item`` carries messages and tool
calls, ``event_msg`` carries UI events such as ``user_message`` and
``agent_reasoning``. Older builds wrote a single JSON object with
``session`` and ``items`` keys.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import MalformedSessionError
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
    to_datetime,
)
from .base import (
    SessionProvider,
    fill_timestamps,
    tool_blocks,
    tool_calls_from_blocks,
    tool_results_from_blocks,
)

logger = logging.getLogger(__name__)
_ROLLOUT_GLOB = "**/rollout-*.jsonl"
_ID_TAIL_RE = re.compile(r"([0-9a-f]{8,}(?:-[0-9a-f]{4,}){2,})$", flags=re.IGNORECASE)
_ROLLOUT_TYPES = {"session_meta", "response_item", "event_msg", "turn_context", "compacted"}
_CALL_TYPES = {"function_call", "custom_tool_call", "local_shell_call"}
_OUTPUT_TYPES = {"function_call_output", "custom_tool_call_output"}
# Context the CLI injects as user turns; not part of the conversation.
_INJECTED_PREFIXES = ("<environment_context>", "<user_instructions>", "# AGENTS.md instructions")
REASONING_AUTHOR = "reasoning"
ORIGINATOR = "crossresume"


def _decode_arguments(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


@dataclass
class _Rollout:
    """Accumulator for one parse."""

    stats: ReadStats = field(default_factory=ReadStats)
    messages: list[CanonicalMessage] = field(default_factory=list)
    session_id: str | None = None
    workspace: Path | None = None
    started_at: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    has_response_user: bool = False
    # Messages taken from event_msg user_message, kept only as a fallback.
    event_users: list[CanonicalMessage] = field(default_factory=list)


class CodexProvider(SessionProvider):
    """Reader and writer for Codex rollout files."""

    name = "Codex"
    slug = "codex"
    alias = "cod"
    env_var = "CODEX_HOME"
    binary = "codex"
    home_parts = (".codex",)
    reserved_keys = frozenset({"timestamp", "type", "payload"})

    def session_root(self, home: Path) -> Path:
        return home / "sessions"

    def iter_session_files(self, home: Path) -> Iterator[Path]:
        yield from self.iter_sorted(self.session_root(home), _ROLLOUT_GLOB)

    def resume_command(self, session_id: str) -> str:
        return f"codex resume {session_id}"

    def candidate_ids(self, path: Path, home: Path) -> set[str]:
        ids = {path.stem}
        match = _ID_TAIL_RE.search(path.stem)
        if match:
            ids.add(match.group(1))
        for row in self.head_records(path, limit=3):
            payload = row.get("payload")
            if row.get("type") == "session_meta" and isinstance(payload, dict):
                if isinstance(payload.get("id"), str) and payload["id"]:
                    ids.add(payload["id"])
                break
        return ids

    def sniff(self, path: Path) -> bool:
        if path.suffix == ".json":
            return self._load_legacy(path) is not None
        records = self.head_records(path, limit=5)
        return bool(records) and all(r.get("type") in _ROLLOUT_TYPES for r in records)

    def read(self, path: Path) -> CanonicalSession:
        state = _Rollout()
        if path.suffix == ".json":
            legacy = self._load_legacy(path)
            if legacy is None:
                raise MalformedSessionError(path, "expected a legacy rollout object with session and items")
            self._read_legacy(legacy, state, path)
        else:
            for line_no, row in self.iter_jsonl(path, state.stats):
                self._handle_row(row, state, path, line_no)

        if state.has_response_user:
            dropped = {id(m) for m in state.event_users}
            state.messages = [m for m in state.messages if id(m) not in dropped]
            if dropped:
                state.stats.drop("user_message")

        messages = reindex_messages(state.messages)
        first, last = time_bounds(messages)
        started_at = state.started_at if state.started_at is not None else first
        session_id = state.session_id or self._session_id_from_path(path)
        logger.debug(
            "Parsed Codex rollout %s: %d messages, %d skipped",
            session_id, len(messages), state.stats.skipped_records,
        )
        return CanonicalSession(
            session_id=session_id,
            provider_slug=self.slug,
            workspace=state.workspace,
            title=title_from_messages(messages),
            started_at=started_at,
            ended_at=last,
            messages=messages,
            metadata={"source": self.slug, **state.metadata},
            source_path=path,
            stats=state.stats,
        )

    # -- parsing --------------------------------------------------------------

    def _handle_row(self, row: dict[str, Any], state: _Rollout, path: Path, line_no: int) -> None:
        row_type = str(row.get("type") or "")
        payload = row.get("payload")
        if not isinstance(payload, dict):
            state.stats.skip()
            logger.debug("%s:%d: %s record without payload", path.name, line_no, row_type)
            return
        timestamp = parse_timestamp(row.get("timestamp"))

        if row_type == "session_meta":
            self._handle_meta(payload, state)
        elif row_type == "response_item":
            self._handle_item(payload, timestamp, row, state)
        elif row_type == "event_msg":
            self._handle_event(payload, timestamp, row, state)
        else:
            state.stats.drop(row_type)

    def _handle_meta(self, payload: dict[str, Any], state: _Rollout) -> None:
        if isinstance(payload.get("id"), str) and payload["id"]:
            state.session_id = payload["id"]
        if isinstance(payload.get("cwd"), str) and payload["cwd"]:
            state.workspace = Path(payload["cwd"])
        state.started_at = parse_timestamp(payload.get("timestamp"))
        for key in ("originator", "cli_version", "model_provider"):
            if isinstance(payload.get(key), str):
                state.metadata[key] = payload[key]

    def _handle_item(
        self,
        payload: dict[str, Any],
        timestamp: int | None,
        row: dict[str, Any],
        state: _Rollout,
    ) -> None:
        item_type = str(payload.get("type") or "message")
        if item_type == "message":
            role, label = resolve_role(payload.get("role"))
            content = payload.get("content")
            text = flatten_content(content)
            if role is MessageRole.USER and text.lstrip().startswith(_INJECTED_PREFIXES):
                state.stats.drop("injected_context")
                return
            calls = tool_calls_from_blocks(content)
            results = tool_results_from_blocks(content)
            if role is MessageRole.USER:
                state.has_response_user = True
            if not text.strip() and not calls and not results:
                return
            self._append(state, CanonicalMessage(
                idx=0, role=role, role_label=label, content=text, timestamp=timestamp,
                tool_calls=calls, tool_results=results, extra=row,
            ))
        elif item_type in _CALL_TYPES:
            arguments = payload.get("arguments", payload.get("input", payload.get("action")))
            call = ToolCall(
                id=payload.get("call_id") or payload.get("id"),
                name=str(payload.get("name") or item_type),
                arguments=_decode_arguments(arguments),
            )
            last = state.messages[-1] if state.messages else None
            if (
                last is not None
                and last.role is MessageRole.ASSISTANT
                and last.author != REASONING_AUTHOR
                and not last.tool_results
            ):
                last.tool_calls.append(call)
            else:
                self._append(state, CanonicalMessage(
                    idx=0, role=MessageRole.ASSISTANT, content="", timestamp=timestamp,
                    tool_calls=[call], extra=row,
                ))
        elif item_type in _OUTPUT_TYPES:
            output = payload.get("output")
            if isinstance(output, dict) and "content" in output:
                output = output["content"]
            result = ToolResult(call_id=payload.get("call_id"), content=coerce_text(output))
            self._append(state, CanonicalMessage(
                idx=0, role=MessageRole.TOOL, content="", timestamp=timestamp,
                tool_results=[result], extra=row,
            ))
        else:
            state.stats.drop(item_type)

    def _handle_event(
        self,
        payload: dict[str, Any],
        timestamp: int | None,
        row: dict[str, Any],
        state: _Rollout,
    ) -> None:
        event_type = str(payload.get("type") or "")
        if event_type == "user_message":
            text = coerce_text(payload.get("message"))
            if not text.strip() or text.lstrip().startswith(_INJECTED_PREFIXES):
                return
            message = CanonicalMessage(
                idx=0, role=MessageRole.USER, content=text, timestamp=timestamp, extra=row,
            )
            state.event_users.append(message)
            self._append(state, message)
        elif event_type == "agent_reasoning":
            text = coerce_text(payload.get("text"))
            if not text.strip():
                return
            self._append(state, CanonicalMessage(
                idx=0, role=MessageRole.ASSISTANT, content=text, timestamp=timestamp,
                author=REASONING_AUTHOR, extra=row,
            ))
        else:
            state.stats.drop(event_type or "event_msg")

    @staticmethod
    def _append(state: _Rollout, message: CanonicalMessage) -> None:
        message.idx = len(state.messages)
        state.messages.append(message)

    def _load_legacy(self, path: Path) -> dict[str, Any] | None:
        text = self.read_text(path)
        if not text.lstrip().startswith("{"):
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict) and "items" in data and "session" in data:
            return data
        return None

    def _read_legacy(self, data: dict[str, Any], state: _Rollout, path: Path) -> None:
        session = data.get("session")
        items = data.get("items")
        if not isinstance(items, list):
            raise MalformedSessionError(path, "legacy rollout 'items' is not a list")
        if isinstance(session, dict):
            self._handle_meta(session, state)
        for item in items:
            state.stats.record()
            if not isinstance(item, dict):
                state.stats.skip()
                continue
            self._handle_item(item, parse_timestamp(item.get("timestamp")), item, state)

    def _session_id_from_path(self, path: Path) -> str:
        match = _ID_TAIL_RE.search(path.stem)
        if match:
            return match.group(1)
        logger.debug("Could not infer Codex session id from filename: %s", path)
        return path.stem

    # -- writing --------------------------------------------------------------

    def render(
        self,
        session: CanonicalSession,
        messages: list[CanonicalMessage],
        session_id: str,
        home: Path,
    ) -> list[tuple[Path, str]]:
        stamps = fill_timestamps(session, messages)
        start = session.started_at if session.started_at is not None else (stamps[0] if stamps else None)
        start_dt = to_datetime(start) if start is not None else datetime.now(timezone.utc)
        target = (
            self.session_root(home)
            / start_dt.strftime("%Y")
            / start_dt.strftime("%m")
            / start_dt.strftime("%d")
            / f"rollout-{start_dt.strftime('%Y-%m-%dT%H-%M-%S')}-{session_id}.jsonl"
        )
        start_iso = format_timestamp(start) if start is not None else start_dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")

        records: list[dict[str, Any]] = [{
            "timestamp": start_iso,
            "type": "session_meta",
            "payload": {
                "id": session_id,
                "timestamp": start_iso,
                "cwd": str(session.workspace) if session.workspace else "/tmp",
                "originator": ORIGINATOR,
            },
        }]
        for message, stamp in zip(messages, stamps):
            record = self._record(message, format_timestamp(stamp))
            record.update(self.passthrough(session, message))
            records.append(record)

        content = "\n".join(json.dumps(r, ensure_ascii=False) for r in records) + "\n"
        return [(target, content)]

    @staticmethod
    def _record(message: CanonicalMessage, timestamp: str) -> dict[str, Any]:
        if (
            message.role is MessageRole.ASSISTANT
            and message.author == REASONING_AUTHOR
            and not message.has_tool_data
        ):
            return {
                "timestamp": timestamp,
                "type": "event_msg",
                "payload": {"type": "agent_reasoning", "text": message.content},
            }
        text_type = "output_text" if message.role is MessageRole.ASSISTANT else "input_text"
        blocks: list[dict[str, Any]] = []
        if message.content:
            blocks.append({"type": text_type, "text": message.content})
        blocks.extend(tool_blocks(message))
        return {
            "timestamp": timestamp,
            "type": "response_item",
            "payload": {"type": "message", "role": role_label(message), "content": blocks},
        }
