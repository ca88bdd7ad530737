from __future__ import annotations

from pathlib import Path

import pytest

from crossresume.durable_write import atomic_write_files, atomic_write_text, backup_path_for
from crossresume.errors import SessionConflictError, WriteIOError


def _leftover_temps(directory: Path) -> list[Path]:
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


def test_writes_new_file_without_temp_leftovers(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "dir" / "session.jsonl"
    outcome = atomic_write_text(target, "line 1\nline 2\n")
    assert outcome.path == target
    assert outcome.backup_path is None
    assert target.read_text(encoding="utf-8") == "line 1\nline 2\n"
    assert _leftover_temps(target.parent) == []


def test_existing_target_is_a_conflict(tmp_path: Path) -> None:
    target = tmp_path / "session.jsonl"
    target.write_text("original", encoding="utf-8")

    with pytest.raises(SessionConflictError) as excinfo:
        atomic_write_text(target, "replacement")
    assert excinfo.value.path == target
    assert excinfo.value.code == "ConflictExists"
    assert target.read_text(encoding="utf-8") == "original"
    assert _leftover_temps(tmp_path) == []


def test_force_keeps_numbered_backups(tmp_path: Path) -> None:
    target = tmp_path / "session.jsonl"
    target.write_text("v1", encoding="utf-8")

    first = atomic_write_text(target, "v2", force=True)
    assert first.backup_path == tmp_path / "session.jsonl.bak"
    assert first.backup_path.read_text(encoding="utf-8") == "v1"

    second = atomic_write_text(target, "v3", force=True)
    assert second.backup_path == tmp_path / "session.jsonl.bak.1"
    assert second.backup_path.read_text(encoding="utf-8") == "v2"
    assert target.read_text(encoding="utf-8") == "v3"
    assert backup_path_for(target) == tmp_path / "session.jsonl.bak.2"


def test_unwritable_parent_is_an_io_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(WriteIOError) as excinfo:
        atomic_write_text(blocker / "session.jsonl", "data")
    assert excinfo.value.code == "IoFailure"


def test_batch_checks_every_conflict_before_writing(tmp_path: Path) -> None:
    first = tmp_path / "a.jsonl"
    second = tmp_path / "a.settings.json"
    second.write_text("{}", encoding="utf-8")

    with pytest.raises(SessionConflictError):
        atomic_write_files([(first, "a"), (second, "b")])
    assert not first.exists()


def test_batch_rolls_back_installed_files(tmp_path: Path) -> None:
    first = tmp_path / "a.jsonl"
    first.write_text("old", encoding="utf-8")
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(WriteIOError):
        atomic_write_files([(first, "new"), (blocker / "b.json", "b")], force=True)
    assert first.read_text(encoding="utf-8") == "old"
    assert not (tmp_path / "a.jsonl.bak").exists()


def test_batch_reports_paths_and_backups(tmp_path: Path) -> None:
    first = tmp_path / "a.jsonl"
    first.write_text("old", encoding="utf-8")
    batch = atomic_write_files([(first, "new"), (tmp_path / "b.json", "b")], force=True)
    assert batch.paths == [first, tmp_path / "b.json"]
    assert batch.backup_paths == [tmp_path / "a.jsonl.bak"]
