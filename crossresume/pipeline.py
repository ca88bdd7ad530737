"""Conversion pipeline: discover, read, validate, write, verify, report.

``ConversionPipeline.convert`` always returns a ``ConversionReport``.
Fatal errors are captured on the report instead of escaping, so callers
render success and failure the same way.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .config import ResolvedConfig
from .discovery import DiscoveryService, SourceHint
from .errors import ResumerError, ValidationError
from .models import WriteOptions, new_session_id
from .providers.registry import ProviderRegistry
from .validation import validate_session
from .verification import verify_roundtrip

logger = logging.getLogger(__name__)

SAME_PROVIDER_WARNING = "SameProvider: Source and target provider are the same"


class PipelineState(Enum):
    DISCOVERING = "discovering"
    READING = "reading"
    VALIDATING = "validating"
    ABORTED = "aborted"
    WRITING = "writing"
    VERIFYING = "verifying"
    REPORTED = "reported"


@dataclass
class ConvertOptions:
    dry_run: bool = False
    force: bool = False
    enrich: bool = False
    verbose: bool = False
    source: SourceHint | None = None
    id_factory: Callable[[], str] = new_session_id


@dataclass
class ConversionReport:
    """Outcome of one conversion, successful or not."""

    ok: bool = False
    dry_run: bool = False
    source_provider: str | None = None
    target_provider: str | None = None
    source_session_id: str | None = None
    target_session_id: str | None = None
    source_path: Path | None = None
    written_paths: list[Path] | None = None
    backup_paths: list[Path] = field(default_factory=list)
    resume_command: str | None = None
    warnings: list[str] = field(default_factory=list)
    info: list[str] = field(default_factory=list)
    verified: bool | None = None
    error: ResumerError | None = None
    state: PipelineState = PipelineState.DISCOVERING
    failed_state: PipelineState | None = None
    history: list[PipelineState] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] | None = None
        if self.error is not None:
            error = self.error.to_dict()
            if self.failed_state is not None:
                error["stage"] = self.failed_state.value
        return {
            "ok": self.ok,
            "dry_run": self.dry_run,
            "source_provider": self.source_provider,
            "target_provider": self.target_provider,
            "source_session_id": self.source_session_id,
            "target_session_id": self.target_session_id,
            "written_paths": (
                None if self.written_paths is None else [str(p) for p in self.written_paths]
            ),
            "backup_paths": [str(p) for p in self.backup_paths],
            "resume_command": self.resume_command,
            "verified": self.verified,
            "warnings": list(self.warnings),
            "error": error,
        }


class ConversionPipeline:
    """Sequence one source -> target conversion."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config: ResolvedConfig,
        *,
        discovery: DiscoveryService | None = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.discovery = discovery or DiscoveryService(registry, config)

    def convert(
        self,
        target_alias: str,
        session_id: str,
        options: ConvertOptions | None = None,
    ) -> ConversionReport:
        options = options or ConvertOptions()
        report = ConversionReport(dry_run=options.dry_run)
        try:
            self._run(report, target_alias, session_id, options)
        except ResumerError as exc:
            report.ok = False
            report.error = exc
            report.failed_state = report.state
            logger.warning(
                "Conversion of %s failed while %s: %s", session_id, report.state.value, exc,
            )
        self._enter(report, PipelineState.REPORTED)
        return report

    @staticmethod
    def _enter(report: ConversionReport, state: PipelineState) -> None:
        logger.debug("pipeline: %s -> %s", report.state.value, state.value)
        report.state = state
        report.history.append(state)

    def _run(
        self,
        report: ConversionReport,
        target_alias: str,
        session_id: str,
        options: ConvertOptions,
    ) -> None:
        self._enter(report, PipelineState.DISCOVERING)
        target = self.registry.get(target_alias)
        report.target_provider = target.slug
        resolved = self.discovery.resolve(session_id, options.source)
        report.source_provider = resolved.provider.slug
        report.source_path = resolved.path

        self._enter(report, PipelineState.READING)
        session = resolved.provider.read(resolved.path)
        report.source_session_id = session.session_id

        self._enter(report, PipelineState.VALIDATING)
        validation = validate_session(session)
        report.warnings.extend(str(f) for f in validation.warnings)
        report.info.extend(str(f) for f in validation.info)
        if options.verbose:
            report.warnings.extend(report.info)
        if validation.has_errors:
            self._enter(report, PipelineState.ABORTED)
            raise ValidationError(validation)

        if resolved.provider is target:
            report.warnings.append(SAME_PROVIDER_WARNING)
            report.target_session_id = session.session_id
            report.resume_command = target.resume_command(session.session_id)
            report.written_paths = None if options.dry_run else []
            report.ok = True
            logger.info("Source and target are both %s; nothing to write", target.slug)
            return

        target_home = self.config.home_for(target)
        if not target.detect(target_home).installed:
            report.warnings.append(
                f"TargetNotDetected: {target.name} was not detected as installed "
                f"(no {target_home}); writing anyway"
            )

        if options.dry_run:
            would_be = options.id_factory()
            report.target_session_id = would_be
            report.resume_command = target.resume_command(would_be)
            report.written_paths = None
            report.ok = True
            logger.info("Dry run: would write %s session %s", target.slug, would_be)
            return

        self._enter(report, PipelineState.WRITING)
        written = target.write(
            session,
            target_home,
            WriteOptions(force=options.force, enrich=options.enrich, id_factory=options.id_factory),
        )
        report.target_session_id = written.session_id
        report.written_paths = list(written.paths)
        report.backup_paths = list(written.backup_paths)
        report.resume_command = written.resume_command
        if written.dropped_extras:
            note = (
                f"ExtrasDropped: {written.dropped_extras} message(s) carried "
                f"{session.provider_slug} fields that {target.name} cannot hold"
            )
            report.info.append(note)
            if options.verbose:
                report.warnings.append(note)

        self._enter(report, PipelineState.VERIFYING)
        verification = verify_roundtrip(session, written, target)
        report.verified = verification.ok
        if not verification.ok:
            report.warnings.extend(str(f) for f in verification.findings)
            raise verification.as_error()

        report.ok = True
        logger.info(
            "Converted %s session %s -> %s session %s",
            session.provider_slug, session.session_id, target.slug, written.session_id,
        )
