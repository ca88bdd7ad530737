"""Structural checks on a canonical session before it is written.

The validator only classifies; it never changes the session. Errors
stop the conversion, warnings travel with the report, info findings are
shown in verbose mode only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .models import CanonicalSession, MessageRole, ReadStats

logger = logging.getLogger(__name__)

MIN_MESSAGES = 3
MAX_SKIP_RATIO = 0.10


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Finding:
    severity: Severity
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass
class ValidationReport:
    findings: list[Finding] = field(default_factory=list)

    def add(self, severity: Severity, code: str, message: str) -> None:
        self.findings.append(Finding(severity, code, message))

    def _of(self, severity: Severity) -> list[Finding]:
        return [f for f in self.findings if f.severity is severity]

    @property
    def errors(self) -> list[Finding]:
        return self._of(Severity.ERROR)

    @property
    def warnings(self) -> list[Finding]:
        return self._of(Severity.WARNING)

    @property
    def info(self) -> list[Finding]:
        return self._of(Severity.INFO)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def visible(self, verbose: bool = False) -> list[Finding]:
        """Warnings (and info when verbose), in discovery order."""
        return [
            f for f in self.findings
            if f.severity is Severity.WARNING or (verbose and f.severity is Severity.INFO)
        ]


def validate_session(session: CanonicalSession, stats: ReadStats | None = None) -> ValidationReport:
    """Classify structural problems in ``session``."""
    stats = stats if stats is not None else session.stats
    report = ValidationReport()
    messages = session.messages

    if not messages:
        report.add(Severity.ERROR, "Empty", "Session has no messages")
        logger.debug("validate %s: %s", session.session_id, report.findings)
        return report

    roles = {m.role for m in messages}
    has_user = MessageRole.USER in roles
    has_assistant = MessageRole.ASSISTANT in roles
    if not (has_user and has_assistant):
        side = "user" if has_user else "assistant" if has_assistant else "neither user nor assistant"
        report.add(
            Severity.ERROR,
            "OneSided",
            f"Session only has {side} messages; a resumable session needs both",
        )

    if session.workspace is None:
        report.add(Severity.WARNING, "MissingWorkspace", "Session has no workspace path")
    if all(m.timestamp is None for m in messages):
        report.add(Severity.WARNING, "MissingTimestamps", "No message carries a timestamp")

    _check_role_order(session, report)

    if len(messages) < MIN_MESSAGES:
        report.add(
            Severity.WARNING,
            "ShortSession",
            f"Session has only {len(messages)} message(s)",
        )
    if stats.skip_ratio > MAX_SKIP_RATIO:
        report.add(
            Severity.WARNING,
            "HighSkipRatio",
            f"{stats.skipped_records} of {stats.total_records} records were malformed "
            f"({stats.skip_ratio:.0%})",
        )

    _check_tools(session, report)

    if stats.dropped_record_types:
        dropped = ", ".join(
            f"{name} x{count}" for name, count in sorted(stats.dropped_record_types.items())
        )
        report.add(Severity.INFO, "RecordsDropped", f"Non-message records dropped: {dropped}")

    logger.debug(
        "validate %s: %d error(s), %d warning(s), %d info",
        session.session_id, len(report.errors), len(report.warnings), len(report.info),
    )
    return report


def _check_role_order(session: CanonicalSession, report: ValidationReport) -> None:
    conversational = [
        m for m in session.messages if m.role in (MessageRole.USER, MessageRole.ASSISTANT)
    ]
    if conversational and conversational[0].role is MessageRole.ASSISTANT:
        report.add(
            Severity.WARNING,
            "UnusualRoleOrder",
            "Assistant speaks before any user message",
        )
    previous: MessageRole | None = None
    for message in session.messages:
        # Tool results ride on user turns in some formats.
        if message.role is MessageRole.USER and previous is MessageRole.USER and not message.tool_results:
            report.add(
                Severity.WARNING,
                "UnusualRoleOrder",
                f"Consecutive user messages at index {message.idx}",
            )
            break
        previous = message.role


def _check_tools(session: CanonicalSession, report: ValidationReport) -> None:
    call_ids: set[str] = set()
    calls = 0
    results = 0
    unknown: list[str] = []
    for message in session.messages:
        for call in message.tool_calls:
            calls += 1
            if call.id:
                call_ids.add(call.id)
    for message in session.messages:
        for result in message.tool_results:
            results += 1
            if result.call_id and result.call_id not in call_ids:
                unknown.append(result.call_id)

    if calls:
        report.add(Severity.INFO, "ToolCallsPresent", f"{calls} tool call(s) carried through")
    if calls != results:
        report.add(
            Severity.INFO,
            "ToolCallMismatch",
            f"{calls} tool call(s) but {results} tool result(s)",
        )
    if unknown:
        report.add(
            Severity.INFO,
            "ToolCallMismatch",
            f"{len(unknown)} tool result(s) refer to unknown call ids",
        )
