from __future__ import annotations

import json
from pathlib import Path

from crossresume.models import MessageRole, WriteOptions
from crossresume.providers.factory import (
    FactoryProvider,
    decode_workspace_slug,
    encode_workspace_slug,
    settings_path_for,
)


def test_reads_header_messages_and_settings(install) -> None:
    session_id, path = install("factory")
    session = FactoryProvider().read(path)

    assert session.session_id == session_id
    assert session.title == "Fix flaky login test"
    assert session.workspace == Path("/home/dev/demo")
    assert session.model_name == "claude-sonnet-4"
    assert session.metadata["owner"] == "dev"
    assert [m.role for m in session.messages] == [
        MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT,
    ]
    assert session.messages[1].tool_calls[0].name == "Execute"
    assert session.messages[2].tool_results[0].content == "1 failed"
    assert session.stats.dropped_record_types == {"todo_state": 1}


def test_workspace_falls_back_to_directory_slug(tmp_path: Path) -> None:
    path = tmp_path / "-srv-app" / "abc.jsonl"
    path.parent.mkdir()
    path.write_text(
        json.dumps({"type": "message", "message": {"role": "user", "content": "hi"}}) + "\n",
        encoding="utf-8",
    )
    session = FactoryProvider().read(path)
    assert session.workspace == Path("/srv/app")
    assert session.session_id == "abc"
    assert session.model_name is None


def test_unreadable_settings_are_ignored(install) -> None:
    _, path = install("factory")
    settings_path_for(path).write_text("{ broken", encoding="utf-8")
    session = FactoryProvider().read(path)
    assert session.model_name is None


def test_settings_with_invalid_utf8_are_ignored(install) -> None:
    _, path = install("factory")
    settings_path_for(path).write_bytes(b'{"model": "\xff\xfe"}')
    session = FactoryProvider().read(path)
    assert session.model_name is None
    assert len(session.messages) == 4


def test_workspace_slug_helpers() -> None:
    assert encode_workspace_slug("/home/dev/demo") == "-home-dev-demo"
    assert decode_workspace_slug("-home-dev-demo") == Path("/home/dev/demo")
    assert decode_workspace_slug("relative") is None


def test_write_emits_session_and_settings(install, homes) -> None:
    provider = FactoryProvider()
    _, path = install("factory")
    source = provider.read(path)
    home = homes["factory"]

    written = provider.write(source, home, WriteOptions(id_factory=lambda: "fac-new"))

    target = home / "-home-dev-demo" / "fac-new.jsonl"
    settings = home / "-home-dev-demo" / "fac-new.settings.json"
    assert written.paths == [target, settings]
    assert json.loads(settings.read_text(encoding="utf-8")) == {"model": "claude-sonnet-4"}

    header = json.loads(target.read_text(encoding="utf-8").splitlines()[0])
    assert header == {
        "type": "session_start",
        "id": "fac-new",
        "title": "Fix flaky login test",
        "cwd": "/home/dev/demo",
    }
    # Settings files are not sessions.
    assert sorted(provider.iter_session_files(home)) == sorted([target, path])

    reread = provider.read(target)
    assert [(m.role, m.content, m.timestamp) for m in reread.messages] == [
        (m.role, m.content, m.timestamp) for m in source.messages
    ]
    assert reread.model_name == "claude-sonnet-4"
