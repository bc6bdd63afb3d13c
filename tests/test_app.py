"""Tests covering the application bootstrap helpers and the replay CLI."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest

from notelink import app
from notelink.editor.buffer import InMemoryEditBuffer
from notelink.services.page_catalog import PageCatalog
from notelink.services.settings import Settings
from notelink.session.coordinator import EditSessionCoordinator

from tests.helpers import (
    ManualScheduler,
    StubPersistenceGateway,
    StubSuggestionGateway,
    StubTagGateway,
    make_buffer,
    make_pages,
    make_suggestion,
)


@pytest.fixture(autouse=True)
def _restore_root_logging(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """``main`` reconfigures the root logger; undo that after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setenv("NOTELINK_LOG_DIR", str(tmp_path / "logs"))
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_read_script_stream_skips_comments_and_blank_lines() -> None:
    stream = io.StringIO('# warm up\n\n{"op": "focus"}\n  {"op": "type", "text": "hi"}\n')

    steps = app.read_script_stream(stream)

    assert steps == [{"op": "focus"}, {"op": "type", "text": "hi"}]


def test_read_script_stream_reports_line_numbers() -> None:
    with pytest.raises(ValueError, match="line 2"):
        app.read_script_stream(io.StringIO('{"op": "focus"}\n{oops\n'))

    with pytest.raises(ValueError, match="expected a JSON object"):
        app.read_script_stream(io.StringIO("[1, 2]\n"))


def test_read_document_from_json(tmp_path: Path) -> None:
    path = tmp_path / "page.json"
    path.write_text(
        json.dumps(
            {
                "id": "page-7",
                "title": "Roadmap",
                "content": [{"id": "b1", "type": "paragraph", "content": [{"type": "text", "text": "Q3 goals"}]}],
            }
        ),
        encoding="utf-8",
    )

    document = app.read_document(path)

    assert (document.document_id, document.title) == ("page-7", "Roadmap")
    assert document.plain_text() == "Q3 goals"


def test_read_document_from_plain_text(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("first\nsecond\n", encoding="utf-8")

    document = app.read_document(path)

    assert document.document_id == "notes"
    assert [block.text for block in document.blocks] == ["first", "second"]


def test_read_document_rejects_non_list_content(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"content": "oops"}), encoding="utf-8")

    with pytest.raises(ValueError):
        app.read_document(path)


def test_read_pages_accepts_wrapped_payload(tmp_path: Path) -> None:
    path = tmp_path / "pages.json"
    path.write_text(json.dumps({"pages": [{"id": "p2", "title": "Roadmap"}, "skip"]}), encoding="utf-8")

    assert app.read_pages(path) == [{"id": "p2", "title": "Roadmap"}]


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "max_retries=5",
            "auto_tag_enabled=off",
            "request_timeout=2.5",
            'timings={"save_debounce_ms": 250}',
        ]
    )

    assert overrides == {
        "max_retries": 5,
        "auto_tag_enabled": False,
        "request_timeout": 2.5,
        "timings": {"save_debounce_ms": 250},
    }


@pytest.mark.parametrize("entry", ["missing_equals", "=value", "nope=1", "auto_tag_enabled=maybe"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_build_session_wires_one_client_to_every_gateway() -> None:
    buffer = make_buffer("hello")
    settings = Settings(workspace_id="ws-1")

    runtime = app.build_session(settings, buffer, catalog=PageCatalog(make_pages("Alpha")))

    assert runtime.client.settings.base_url == settings.base_url
    assert runtime.coordinator.store.document_id == "page-1"
    assert len(runtime.coordinator.catalog) == 1


@pytest.mark.asyncio
async def test_replay_script_prints_published_signals() -> None:
    buffer = make_buffer("")
    coordinator = EditSessionCoordinator(
        buffer,
        persistence=StubPersistenceGateway(),
        suggestions=StubSuggestionGateway([make_suggestion("p-roadmap", "Roadmap", 0.9)]),
        tags=StubTagGateway(),
        catalog=PageCatalog(make_pages("Alpha")),
        settings=Settings(workspace_id="ws-1"),
        scheduler=ManualScheduler(),
    )
    output = io.StringIO()
    script = [
        {"op": "focus"},
        {"op": "type", "text": "need a @link here"},
        {"op": "key", "key": "ArrowDown"},
        {"op": "key", "key": "ArrowUp"},
        {"op": "key", "key": "Enter"},
    ]

    count = await app.replay_script(coordinator, buffer, script, stream=output)

    signals = [json.loads(line) for line in output.getvalue().splitlines()]
    assert count == 5
    assert [signal["signal"] for signal in signals] == [
        "LinkTriggerDetected",
        "SuggestionsLoaded",
        "SuggestionAccepted",
    ]
    assert signals[-1] == {"signal": "SuggestionAccepted", "page_id": "p-roadmap", "page_title": "Roadmap"}
    assert buffer.document().plain_text() == "need a Roadmap here"
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_replay_link_and_close_ops_leave_text_alone() -> None:
    buffer = make_buffer("meeting notes")
    coordinator = EditSessionCoordinator(
        buffer,
        persistence=StubPersistenceGateway(),
        suggestions=StubSuggestionGateway([make_suggestion("p-roadmap", "Roadmap", 0.9)]),
        catalog=PageCatalog(make_pages("Alpha")),
        settings=Settings(workspace_id="ws-1"),
        scheduler=ManualScheduler(),
    )
    output = io.StringIO()
    script = [
        {"op": "cursor", "offset": 7},
        {"op": "link"},
        {"op": "wait", "ms": 0},
        {"op": "close"},
    ]

    await app.replay_script(coordinator, buffer, script, stream=output)

    signals = [json.loads(line) for line in output.getvalue().splitlines()]
    assert [signal["signal"] for signal in signals] == ["SuggestionsLoaded", "LinkCleanupRequested"]
    assert signals[0]["ai_count"] == 1
    assert signals[-1]["remove_trigger_marker"] is False
    assert buffer.document().plain_text() == "meeting notes"
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_replay_script_rejects_unknown_ops() -> None:
    buffer: InMemoryEditBuffer = make_buffer("")
    coordinator = EditSessionCoordinator(
        buffer,
        persistence=StubPersistenceGateway(),
        suggestions=StubSuggestionGateway(),
        scheduler=ManualScheduler(),
    )

    with pytest.raises(ValueError, match="Unknown replay op"):
        await app.replay_script(coordinator, buffer, [{"op": "teleport"}], stream=io.StringIO())
    await coordinator.aclose()


def test_main_dump_settings_redacts_token(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    settings_path = tmp_path / "settings.json"

    exit_code = app.main(
        [
            "--settings",
            str(settings_path),
            "--workspace",
            "ws-7",
            "--set",
            "api_token=sk-abcdef123",
            "--dump-settings",
        ]
    )

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["settings"]["workspace_id"] == "ws-7"
    assert payload["settings"]["api_token"] == "sk********23"
    assert payload["meta"]["secret_backend"] == "fernet"
    assert payload["meta"]["cli_overrides"] == ["api_token", "workspace_id"]


def test_main_rejects_invalid_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings", str(tmp_path / "settings.json"), "--set", "bogus", "--dump-settings"])

    assert exit_code == 2
    assert "Invalid --set override" in capsys.readouterr().err


def test_main_replays_script_file(tmp_path: Path) -> None:
    document_path = tmp_path / "notes.txt"
    document_path.write_text("Existing text\n", encoding="utf-8")
    script_path = tmp_path / "script.jsonl"
    script_path.write_text('{"op": "focus"}\n{"op": "cursor", "offset": 0}\n{"op": "blur"}\n', encoding="utf-8")

    exit_code = app.main(
        ["--settings", str(tmp_path / "settings.json"), "--document", str(document_path), str(script_path)]
    )

    assert exit_code == 0
