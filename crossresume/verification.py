"""Read-back fidelity check for a freshly written session.

The written file is parsed again with the target provider's own reader
and compared message by message with the source. A mismatch points at
a writer defect, so nothing is retried or repaired here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .errors import SessionReadError, VerificationError
from .models import CanonicalMessage, CanonicalSession, WrittenSession
from .normalize import role_label
from .providers.base import SessionProvider
from .validation import Finding, Severity

logger = logging.getLogger(__name__)

TIMESTAMP_TOLERANCE_MS = 1000


@dataclass
class VerificationReport:
    findings: list[Finding] = field(default_factory=list)
    checked_messages: int = 0

    @property
    def ok(self) -> bool:
        return not self.findings

    def add(self, code: str, message: str) -> None:
        self.findings.append(Finding(Severity.WARNING, code, message))

    def as_error(self) -> VerificationError:
        return VerificationError(self.findings)


def _normalize_text(text: str) -> str:
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).rstrip()


def compare_messages(
    expected: list[CanonicalMessage],
    actual: list[CanonicalMessage],
    report: VerificationReport,
) -> None:
    if len(expected) != len(actual):
        report.add(
            "MessageCountMismatch",
            f"expected {len(expected)} message(s), read back {len(actual)}",
        )
    for want, got in zip(expected, actual):
        report.checked_messages += 1
        if want.role is not got.role or role_label(want) != role_label(got):
            report.add(
                "RoleMismatch",
                f"message {want.idx}: expected {role_label(want)}, got {role_label(got)}",
            )
        if _normalize_text(want.content) != _normalize_text(got.content):
            report.add("ContentMismatch", f"message {want.idx}: text differs after round trip")
        if want.timestamp is not None and got.timestamp is not None:
            drift = abs(want.timestamp - got.timestamp)
            if drift > TIMESTAMP_TOLERANCE_MS:
                report.add(
                    "TimestampDrift",
                    f"message {want.idx}: timestamp off by {drift} ms",
                )


def verify_roundtrip(
    source: CanonicalSession,
    written: WrittenSession,
    target: SessionProvider,
) -> VerificationReport:
    """Re-read ``written`` through ``target`` and compare it with ``source``."""
    report = VerificationReport()
    path = written.paths[0]
    try:
        reread = target.read(path)
    except SessionReadError as exc:
        report.add("Unreadable", f"{target.slug} reader rejected {path}: {exc.reason}")
        logger.warning("Verification could not read back %s: %s", path, exc)
        return report

    actual = reread.messages[written.prepended_messages:]
    compare_messages(source.messages, actual, report)
    if report.ok:
        logger.info("Verified %s: %d message(s) match", path, report.checked_messages)
    else:
        logger.warning(
            "Verification of %s found %d mismatch(es)", path, len(report.findings),
        )
    return report
