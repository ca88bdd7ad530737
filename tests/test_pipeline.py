from __future__ import annotations

import json
import shutil
from pathlib import Path

import crossresume.pipeline as pipeline_module
from crossresume.discovery import SourceHint
from crossresume.pipeline import (
    SAME_PROVIDER_WARNING,
    ConversionPipeline,
    ConvertOptions,
    PipelineState,
)
from crossresume.providers import default_registry
from crossresume.validation import Finding, Severity
from crossresume.verification import VerificationReport

from conftest import CLAUDE_ID, FIXTURES_DIR


def _pipeline(config) -> ConversionPipeline:
    return ConversionPipeline(default_registry(), config)


def _files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


def test_scenario_a_cross_provider_conversion(install, homes, config) -> None:
    session_id, _ = install("claude-code")
    homes["codex"].mkdir(parents=True)

    report = _pipeline(config).convert("cod", session_id)

    assert report.ok, report.error
    assert report.exit_code == 0
    assert report.source_provider == "claude-code"
    assert report.target_provider == "codex"
    assert report.source_session_id == session_id
    assert report.target_session_id != session_id
    assert report.target_session_id in report.resume_command
    assert report.resume_command.startswith("codex resume ")
    assert report.verified is True
    assert report.warnings == []
    assert len(report.written_paths) == 1
    assert report.written_paths[0].is_file()
    assert report.history == [
        PipelineState.DISCOVERING,
        PipelineState.READING,
        PipelineState.VALIDATING,
        PipelineState.WRITING,
        PipelineState.VERIFYING,
        PipelineState.REPORTED,
    ]

    payload = report.to_dict()
    assert set(payload) == {
        "ok", "dry_run", "source_provider", "target_provider", "source_session_id",
        "target_session_id", "written_paths", "backup_paths", "resume_command",
        "verified", "warnings", "error",
    }
    assert payload["error"] is None
    json.dumps(payload)


def test_scenario_b_dry_run_touches_nothing(install, homes, config) -> None:
    session_id, _ = install("claude-code")

    report = _pipeline(config).convert("gmi", session_id, ConvertOptions(dry_run=True))

    assert report.ok
    assert report.dry_run
    assert report.written_paths is None
    assert report.to_dict()["written_paths"] is None
    assert report.target_session_id
    assert report.target_session_id in report.resume_command
    assert _files(homes["gemini"]) == []
    assert PipelineState.WRITING not in report.history
    assert any(w.startswith("TargetNotDetected:") for w in report.warnings)


def test_scenario_c_force_overwrite_keeps_one_backup(install, homes, config) -> None:
    session_id, _ = install("claude-code")
    pipeline = _pipeline(config)
    options = ConvertOptions(id_factory=lambda: "fixed-target-id")

    first = pipeline.convert("vib", session_id, options)
    assert first.ok

    conflict = pipeline.convert("vib", session_id, options)
    assert not conflict.ok
    assert conflict.error.code == "ConflictExists"
    assert conflict.to_dict()["error"]["stage"] == "writing"

    forced = pipeline.convert(
        "vib", session_id, ConvertOptions(force=True, id_factory=lambda: "fixed-target-id"),
    )
    assert forced.ok, forced.error
    target_dir = homes["vibe"] / "fixed-target-id"
    assert sorted(p.name for p in target_dir.iterdir()) == ["messages.jsonl", "messages.jsonl.bak"]
    assert forced.backup_paths == [target_dir / "messages.jsonl.bak"]
    for path in target_dir.iterdir():
        assert path.read_text(encoding="utf-8").strip()


def test_scenario_d_one_sided_session_is_rejected(homes, config) -> None:
    path = homes["claude-code"] / "projects" / "-w" / "only-user.jsonl"
    path.parent.mkdir(parents=True)
    rows = [
        {"type": "user", "sessionId": "only-user", "cwd": "/w",
         "message": {"role": "user", "content": f"ping {i}"}, "timestamp": f"2026-01-01T00:00:0{i}Z"}
        for i in range(3)
    ]
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\n", encoding="utf-8")

    report = _pipeline(config).convert("cod", "only-user")

    assert not report.ok
    assert report.exit_code == 1
    error = report.to_dict()["error"]
    assert error["error_type"] == "ValidationError"
    assert error["code"] == "OneSided"
    assert error["stage"] == "aborted"
    assert PipelineState.ABORTED in report.history
    assert _files(homes["codex"]) == []


def test_scenario_e_ambiguous_id_needs_a_source(install, homes, config) -> None:
    install("claude-code")
    vibe_path = homes["vibe"] / CLAUDE_ID / "messages.jsonl"
    vibe_path.parent.mkdir(parents=True)
    shutil.copyfile(FIXTURES_DIR / "vibe_messages.jsonl", vibe_path)

    report = _pipeline(config).convert("gmi", CLAUDE_ID)

    assert report.exit_code == 1
    error = report.to_dict()["error"]
    assert error["error_type"] == "DiscoveryError"
    assert error["code"] == "Ambiguous"
    assert {c["provider"] for c in error["candidates"]} == {"claude-code", "vibe"}

    settled = _pipeline(config).convert("gmi", CLAUDE_ID, ConvertOptions(source=SourceHint(alias="cc")))
    assert settled.ok
    assert settled.source_provider == "claude-code"


def test_same_provider_writes_nothing(install, homes, config) -> None:
    session_id, _ = install("factory")
    before = _files(homes["factory"])

    report = _pipeline(config).convert("factory", session_id)

    assert report.ok
    assert SAME_PROVIDER_WARNING in report.warnings
    assert report.target_session_id == session_id
    assert report.resume_command == f"factory --resume {session_id}"
    assert report.written_paths == []
    assert _files(homes["factory"]) == before


def test_unknown_target_fails_in_discovery(install, config) -> None:
    session_id, _ = install("claude-code")
    report = _pipeline(config).convert("cursor", session_id)
    assert report.error.code == "UnknownProvider"
    assert report.failed_state is PipelineState.DISCOVERING
    assert report.history[-1] is PipelineState.REPORTED


def test_not_found(config) -> None:
    report = _pipeline(config).convert("cc", "missing-id")
    assert report.to_dict()["error"]["code"] == "NotFound"


def test_verbose_surfaces_info_findings(install, homes, config) -> None:
    session_id, _ = install("codex")
    homes["claude-code"].mkdir(parents=True)

    report = _pipeline(config).convert("cc", session_id, ConvertOptions(verbose=True))

    assert report.ok, report.error
    assert any(w.startswith("ToolCallsPresent:") for w in report.warnings)
    assert any(w.startswith("RecordsDropped:") for w in report.warnings)
    assert any(w.startswith("ExtrasDropped:") for w in report.warnings)


def test_verification_mismatch_keeps_files(install, homes, config, monkeypatch) -> None:
    session_id, _ = install("claude-code")
    finding = Finding(Severity.WARNING, "ContentMismatch", "message 0: text differs after round trip")
    monkeypatch.setattr(
        pipeline_module, "verify_roundtrip", lambda *args: VerificationReport(findings=[finding]),
    )

    report = _pipeline(config).convert("gmi", session_id)

    assert not report.ok
    assert report.verified is False
    assert report.error.code == "FidelityMismatch"
    assert str(finding) in report.warnings
    assert report.written_paths and report.written_paths[0].is_file()


def test_enrich_prepends_context(install, homes, config) -> None:
    session_id, _ = install("claude-code")
    report = _pipeline(config).convert("vib", session_id, ConvertOptions(enrich=True))
    assert report.ok, report.error
    first = json.loads(report.written_paths[0].read_text(encoding="utf-8").splitlines()[0])
    assert first["role"] == "user"
    assert first["content"].startswith("[crossresume]")


def test_out_of_range_timestamps_are_treated_as_missing(homes, config) -> None:
    path = homes["claude-code"] / "projects" / "-w" / "micro-ts.jsonl"
    path.parent.mkdir(parents=True)
    rows = [
        {"type": role, "sessionId": "micro-ts", "cwd": "/w",
         "message": {"role": role, "content": f"{role} turn"}, "timestamp": 1_771_408_800_000_000}
        for role in ("user", "assistant")
    ]
    path.write_text("\n".join(json.dumps(r) for r in rows) + "\n", encoding="utf-8")

    report = _pipeline(config).convert("gmi", "micro-ts")

    assert report.ok, report.error
    assert any(w.startswith("MissingTimestamps:") for w in report.warnings)
    assert report.written_paths[0].is_file()


def test_factory_settings_with_invalid_utf8_still_convert(install, config) -> None:
    session_id, path = install("factory")
    path.with_name(f"{session_id}.settings.json").write_bytes(b'{"model": "\xff\xfe"}')

    report = _pipeline(config).convert("cc", session_id)

    assert report.ok, report.error
    assert report.source_provider == "factory"
