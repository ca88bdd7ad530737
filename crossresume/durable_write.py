from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .errors import SessionConflictError, SessionWriteError, WriteIOError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"


@dataclass
class AtomicWriteOutcome:
    path: Path
    backup_path: Path | None = None


@dataclass
class AtomicBatchOutcome:
    outcomes: list[AtomicWriteOutcome] = field(default_factory=list)

    @property
    def paths(self) -> list[Path]:
        return [o.path for o in self.outcomes]

    @property
    def backup_paths(self) -> list[Path]:
        return [o.backup_path for o in self.outcomes if o.backup_path is not None]


def _fsync_dir(dir_path: Path) -> None:
    """Best-effort directory fsync to persist rename/unlink metadata."""
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        fd = os.open(str(dir_path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        # Some platforms/filesystems do not support directory fsync.
        pass


def backup_path_for(path: Path) -> Path:
    """First free of ``<path>.bak``, ``<path>.bak.1``, ``<path>.bak.2`` ..."""
    candidate = path.with_name(path.name + BACKUP_SUFFIX)
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}{BACKUP_SUFFIX}.{counter}")
        counter += 1
    return candidate


def _write_temp(path: Path, content: str, encoding: str) -> Path:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
    except OSError:
        _discard(tmp_path)
        raise
    return tmp_path


def _discard(path: Path) -> None:
    if path.exists():
        try:
            path.unlink()
        except OSError:
            logger.warning("Could not remove temp file %s", path)


def atomic_write_text(
    path: Path,
    content: str,
    *,
    force: bool = False,
    encoding: str = "utf-8",
) -> AtomicWriteOutcome:
    """Atomically install ``content`` at ``path``.

    The content is written to a temp file in the target directory and
    fsynced. Right before the rename the target is checked: an existing
    file raises ``SessionConflictError`` unless ``force`` is set, in which
    case it is moved aside to a backup path first. The target is never
    observed half-written and the temp file never survives.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = _write_temp(path, content, encoding)
    except OSError as exc:
        raise WriteIOError(path, str(exc)) from exc

    backup: Path | None = None
    try:
        if path.exists():
            if not force:
                raise SessionConflictError(path)
            backup = backup_path_for(path)
            os.replace(path, backup)
            logger.info("Moved existing %s aside to %s", path, backup)
        try:
            os.replace(tmp_path, path)
        except OSError:
            if backup is not None:
                os.replace(backup, path)
                logger.warning("Restored %s from %s after failed install", path, backup)
                backup = None
            raise
        _fsync_dir(path.parent)
    except OSError as exc:
        raise WriteIOError(path, str(exc)) from exc
    finally:
        _discard(tmp_path)

    logger.debug("Atomically wrote %s (%d chars)", path, len(content))
    return AtomicWriteOutcome(path=path, backup_path=backup)


def _rollback(outcome: AtomicWriteOutcome) -> None:
    try:
        outcome.path.unlink(missing_ok=True)
        if outcome.backup_path is not None:
            os.replace(outcome.backup_path, outcome.path)
    except OSError as exc:
        logger.error("Rollback of %s failed: %s", outcome.path, exc)


def atomic_write_files(
    files: list[tuple[Path, str]],
    *,
    force: bool = False,
) -> AtomicBatchOutcome:
    """Install several files as one unit.

    Conflicts are checked for every target before anything is written.
    When a later file fails, files already installed are removed and
    their backups restored.
    """
    if not force:
        for path, _ in files:
            if path.exists():
                raise SessionConflictError(path)

    batch = AtomicBatchOutcome()
    try:
        for path, content in files:
            batch.outcomes.append(atomic_write_text(path, content, force=force))
    except SessionWriteError:
        for outcome in reversed(batch.outcomes):
            _rollback(outcome)
        raise
    return batch
