from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from crossresume.config import ResolvedConfig
from crossresume.providers.gemini import project_hash

FIXTURES_DIR = Path(__file__).parent / "fixtures"

CLAUDE_ID = "217df94b-a1f0-43b4-b457-764295a557ec"
CODEX_ID = "019c0000-0000-7000-8000-000000000001"
GEMINI_ID = "a1b2c3d4-0000-4000-8000-000000000003"
VIBE_ID = "vibe-5f3c2a10"
FACTORY_ID = "f4c1e2d3-0000-4000-8000-000000000005"

SLUGS = ("claude-code", "codex", "gemini", "vibe", "factory")


def _copy(name: str, dst: Path) -> Path:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(FIXTURES_DIR / name, dst)
    return dst


def _write_claude_fixture(home: Path) -> tuple[str, Path]:
    dst = home / "projects" / "-home-dev-demo" / f"{CLAUDE_ID}.jsonl"
    return CLAUDE_ID, _copy("claude_session.jsonl", dst)


def _write_codex_fixture(home: Path) -> tuple[str, Path]:
    dst = (
        home / "sessions" / "2026" / "02" / "18"
        / f"rollout-2026-02-18T10-00-00-{CODEX_ID}.jsonl"
    )
    return CODEX_ID, _copy("codex_rollout.jsonl", dst)


def _write_gemini_fixture(home: Path) -> tuple[str, Path]:
    dst = (
        home / "tmp" / project_hash("/home/dev/demo") / "chats"
        / "session-2026-02-18T10-00-a1b2c3d4.json"
    )
    return GEMINI_ID, _copy("gemini_session.json", dst)


def _write_vibe_fixture(home: Path) -> tuple[str, Path]:
    return VIBE_ID, _copy("vibe_messages.jsonl", home / VIBE_ID / "messages.jsonl")


def _write_factory_fixture(home: Path) -> tuple[str, Path]:
    dst = home / "-home-dev-demo" / f"{FACTORY_ID}.jsonl"
    _copy("factory_session.settings.json", dst.with_name(f"{FACTORY_ID}.settings.json"))
    return FACTORY_ID, _copy("factory_session.jsonl", dst)


_WRITERS = {
    "claude-code": _write_claude_fixture,
    "codex": _write_codex_fixture,
    "gemini": _write_gemini_fixture,
    "vibe": _write_vibe_fixture,
    "factory": _write_factory_fixture,
}


@pytest.fixture
def homes(tmp_path: Path) -> dict[str, Path]:
    """Per-provider home directories under tmp_path (not created)."""
    return {slug: tmp_path / "homes" / slug for slug in SLUGS}


@pytest.fixture
def config(homes: dict[str, Path]) -> ResolvedConfig:
    return ResolvedConfig(homes=dict(homes))


@pytest.fixture
def install(homes: dict[str, Path]):
    """Copy a provider's fixture session into its home; returns ``(id, path)``."""

    def _install(slug: str) -> tuple[str, Path]:
        return _WRITERS[slug](homes[slug])

    return _install
