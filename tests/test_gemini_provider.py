"""Tests for GeminiProvider."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from crossresume.errors import MalformedSessionError, UnreadableSessionError
from crossresume.models import MessageRole, WriteOptions
from crossresume.providers.gemini import GeminiProvider, project_hash, session_filename

FEB_18 = 1_771_408_800_000


def test_gemini_provider_names() -> None:
    provider = GeminiProvider()
    assert provider.slug == "gemini"
    assert provider.alias == "gmi"
    assert provider.resume_command("abc") == "gemini --resume abc"


def test_reads_chat_file(install) -> None:
    session_id, path = install("gemini")
    session = GeminiProvider().read(path)

    assert session.session_id == session_id
    assert [m.role for m in session.messages] == [
        MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT,
    ]
    assert session.stats.dropped_record_types == {"info": 1}
    assert session.model_name == "gemini-2.5-pro"
    assert session.workspace == Path("/home/dev/demo")
    assert session.started_at == FEB_18
    assert session.ended_at == FEB_18 + 300_000

    tool_turn = session.messages[1]
    assert tool_turn.tool_calls[0].name == "read_file"
    assert tool_turn.tool_calls[0].arguments == {"absolute_path": "/home/dev/demo/app.py"}
    assert tool_turn.tool_results[0].call_id == "read_file-1"
    assert tool_turn.tool_results[0].content == "from flask import Flask"


def test_candidate_ids_use_document_session_id(install, homes) -> None:
    provider = GeminiProvider()
    session_id, path = install("gemini")
    assert session_id in provider.candidate_ids(path, homes["gemini"])
    assert provider.sniff(path)
    assert list(provider.iter_session_files(homes["gemini"])) == [path]


@pytest.mark.parametrize(
    ("body", "error"),
    [
        ("{ not json", UnreadableSessionError),
        ("[1, 2, 3]", MalformedSessionError),
        ('{"sessionId": "x", "messages": 3}', MalformedSessionError),
        ('{"sessionId": "x"}', MalformedSessionError),
    ],
)
def test_structural_errors(tmp_path: Path, body: str, error: type) -> None:
    path = tmp_path / "session-x.json"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(error):
        GeminiProvider().read(path)


def test_non_object_entries_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "session-x.json"
    path.write_text(json.dumps({
        "sessionId": "x",
        "messages": [
            "junk",
            {"type": "user", "content": "hi"},
            {"type": "model", "content": [{"text": "hello"}]},
        ],
    }), encoding="utf-8")
    session = GeminiProvider().read(path)
    assert [(m.role, m.content) for m in session.messages] == [
        (MessageRole.USER, "hi"), (MessageRole.ASSISTANT, "hello"),
    ]
    assert session.stats.skipped_records == 1
    assert session.workspace is None


def test_session_filename_and_hash() -> None:
    assert session_filename("12345678-aaaa-bbbb", FEB_18) == "session-2026-02-18T10-00-12345678.json"
    assert project_hash("/home/dev/demo") == project_hash(Path("/home/dev/demo"))
    assert len(project_hash("/tmp")) == 64


def test_write_and_read_back(install, homes) -> None:
    provider = GeminiProvider()
    _, path = install("gemini")
    source = provider.read(path)
    home = homes["gemini"]

    written = provider.write(source, home, WriteOptions(id_factory=lambda: "12345678-aaaa-bbbb-cccc-dddddddddddd"))

    digest = project_hash("/home/dev/demo")
    target = home / "tmp" / digest / "chats" / "session-2026-02-18T10-00-12345678.json"
    assert written.paths == [target]
    document = json.loads(target.read_text(encoding="utf-8"))
    assert document["sessionId"] == "12345678-aaaa-bbbb-cccc-dddddddddddd"
    assert document["projectHash"] == digest
    assert document["startTime"] == "2026-02-18T10:00:00.000Z"
    assert document["lastUpdated"] == "2026-02-18T10:05:00.000Z"
    assert [e["type"] for e in document["messages"]] == ["user", "gemini", "user", "gemini"]
    assert document["messages"][1]["toolResults"] == [
        {"callId": "read_file-1", "output": "from flask import Flask", "isError": False},
    ]

    reread = provider.read(target)
    assert [(m.role, m.content, m.timestamp) for m in reread.messages] == [
        (m.role, m.content, m.timestamp) for m in source.messages
    ]
    assert reread.messages[1].tool_calls == source.messages[1].tool_calls
    assert reread.messages[1].tool_results == source.messages[1].tool_results
