"""Exception hierarchy for session conversion.

One category per pipeline stage. Every error carries an ``error_type``
(the category name surfaced in JSON payloads) and a stable ``code``.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .validation import Finding, ValidationReport


class ResumerError(Exception):
    """Base exception for all conversion errors."""

    error_type = "ResumerError"
    code = "Error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "code": self.code,
            "message": str(self),
        }


class ConfigError(ResumerError):
    """Configuration file could not be loaded."""

    error_type = "ConfigError"
    code = "InvalidConfig"

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config file {path}: {reason}")


# -- Discovery ---------------------------------------------------------------


class DiscoveryError(ResumerError):
    """The source session could not be located."""

    error_type = "DiscoveryError"


class SessionNotFoundError(DiscoveryError):
    """No provider holds a session with the requested id."""

    code = "NotFound"

    def __init__(
        self,
        session_id: str,
        *,
        checked: list[str] | None = None,
        scanned_files: int = 0,
    ):
        self.session_id = session_id
        self.checked = list(checked or [])
        self.scanned_files = scanned_files
        where = ", ".join(self.checked) or "none"
        super().__init__(
            f"Session '{session_id}' not found "
            f"(providers checked: {where}; files scanned: {scanned_files})"
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["providers_checked"] = self.checked
        return payload


class AmbiguousSessionError(DiscoveryError):
    """The session id matched files in more than one provider."""

    code = "Ambiguous"

    def __init__(self, session_id: str, candidates: list[tuple[str, Path]]):
        self.session_id = session_id
        self.candidates = list(candidates)
        slugs = sorted({slug for slug, _ in self.candidates})
        super().__init__(
            f"Session '{session_id}' exists in multiple providers "
            f"({', '.join(slugs)}); pass --source to choose one"
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["candidates"] = [
            {"provider": slug, "path": str(path)} for slug, path in self.candidates
        ]
        return payload


class UnknownProviderError(DiscoveryError):
    """Alias does not name a registered provider."""

    code = "UnknownProvider"

    def __init__(self, alias: str, known: list[str]):
        self.alias = alias
        self.known = list(known)
        super().__init__(
            f"Unknown provider '{alias}'. Known: {', '.join(self.known) or 'none'}"
        )


# -- Reading -----------------------------------------------------------------


class SessionReadError(ResumerError):
    """A source file could not be turned into a canonical session."""

    error_type = "ReadError"

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read session {path}: {reason}")


class UnreadableSessionError(SessionReadError):
    """File could not be opened or decoded."""

    code = "Unreadable"


class MalformedSessionError(SessionReadError):
    """File decoded but its top-level structure is unusable."""

    code = "MalformedSession"


# -- Validation --------------------------------------------------------------


class ValidationError(ResumerError):
    """Session failed a hard-stop validation check."""

    error_type = "ValidationError"

    def __init__(self, report: ValidationReport):
        self.report = report
        errors = report.errors
        self.code = errors[0].code if errors else "Invalid"
        super().__init__("; ".join(f.message for f in errors) or "Session is invalid")


# -- Writing -----------------------------------------------------------------


class SessionWriteError(ResumerError):
    """Target file set could not be installed."""

    error_type = "WriteError"


class WriteIOError(SessionWriteError):
    """Filesystem operation failed while writing."""

    code = "IoFailure"

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write {path}: {reason}")


class SessionConflictError(SessionWriteError):
    """Target path already exists and overwrite was not requested."""

    code = "ConflictExists"

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Target already exists: {path} (use --force to overwrite)")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["path"] = str(self.path)
        return payload


# -- Verification ------------------------------------------------------------


class VerificationError(ResumerError):
    """Read-back of the written session does not match the source."""

    error_type = "VerificationError"
    code = "FidelityMismatch"

    def __init__(self, findings: list[Finding]):
        self.findings = list(findings)
        super().__init__(
            f"Written session differs from source ({len(self.findings)} finding(s))"
        )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["findings"] = [f"{f.code}: {f.message}" for f in self.findings]
        return payload
