from __future__ import annotations

from crossresume.errors import VerificationError
from crossresume.models import CanonicalMessage, MessageRole, WriteOptions
from crossresume.providers import ClaudeCodeProvider, GeminiProvider
from crossresume.verification import VerificationReport, compare_messages, verify_roundtrip


def _msg(idx: int, role: MessageRole, content: str, ts: int | None = None, label: str | None = None) -> CanonicalMessage:
    return CanonicalMessage(idx=idx, role=role, content=content, timestamp=ts, role_label=label)


def _codes(report: VerificationReport) -> list[str]:
    return [f.code for f in report.findings]


def test_identical_messages_pass() -> None:
    messages = [_msg(0, MessageRole.USER, "hi", 1000), _msg(1, MessageRole.ASSISTANT, "yo", 2000)]
    report = VerificationReport()
    compare_messages(messages, list(messages), report)
    assert report.ok
    assert report.checked_messages == 2


def test_whitespace_and_small_drift_are_tolerated() -> None:
    report = VerificationReport()
    compare_messages(
        [_msg(0, MessageRole.USER, "a\r\nb  \n", 10_000)],
        [_msg(0, MessageRole.USER, "a\nb", 11_000)],
        report,
    )
    assert report.ok


def test_mismatches_are_reported() -> None:
    report = VerificationReport()
    compare_messages(
        [
            _msg(0, MessageRole.USER, "hi", 0),
            _msg(1, MessageRole.ASSISTANT, "answer", 5_000),
            _msg(2, MessageRole.OTHER, "note", label="developer"),
        ],
        [
            _msg(0, MessageRole.ASSISTANT, "hi", 0),
            _msg(1, MessageRole.ASSISTANT, "other answer", 9_000),
        ],
        report,
    )
    assert _codes(report) == ["MessageCountMismatch", "RoleMismatch", "ContentMismatch", "TimestampDrift"]

    error = report.as_error()
    assert isinstance(error, VerificationError)
    assert error.code == "FidelityMismatch"
    assert len(error.to_dict()["findings"]) == 4


def test_other_role_labels_must_match() -> None:
    report = VerificationReport()
    compare_messages(
        [_msg(0, MessageRole.OTHER, "x", label="developer")],
        [_msg(0, MessageRole.OTHER, "x", label="critic")],
        report,
    )
    assert _codes(report) == ["RoleMismatch"]


def test_verify_roundtrip_after_write(install, homes) -> None:
    _, path = install("claude-code")
    source = ClaudeCodeProvider().read(path)
    target = GeminiProvider()
    written = target.write(source, homes["gemini"], WriteOptions(enrich=True))

    report = verify_roundtrip(source, written, target)
    assert written.prepended_messages == 2
    assert report.ok
    assert report.checked_messages == len(source.messages)


def test_verify_roundtrip_flags_damaged_output(install, homes) -> None:
    _, path = install("claude-code")
    source = ClaudeCodeProvider().read(path)
    target = GeminiProvider()
    written = target.write(source, homes["gemini"])

    written.paths[0].write_text("{ truncated", encoding="utf-8")
    report = verify_roundtrip(source, written, target)
    assert _codes(report) == ["Unreadable"]
