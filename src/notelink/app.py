"""Application bootstrap helpers and the ``notelink`` replay CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass, is_dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .editor.buffer import InMemoryEditBuffer, ScreenPoint
from .editor.document_model import Block, DocumentState
from .services.gateways import ApiSettings, WorkspaceApiClient
from .services.page_catalog import PageCatalog
from .services.settings import Settings, SettingsStore, redact_secret
from .session.coordinator import EditSessionCoordinator
from .session.events import (
    AutoTagArmed,
    AutoTagCancelled,
    AutoTagFired,
    ContentSaved,
    ContentSaveFailed,
    Event,
    LinkCleanupRequested,
    LinkTriggerDetected,
    SuggestionAccepted,
    SuggestionsLoaded,
    TagGenerationFailed,
    TagsSuggested,
)
from .session.timers import TimerScheduler
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

REPLAYED_SIGNALS: tuple[type[Event], ...] = (
    ContentSaved,
    ContentSaveFailed,
    LinkTriggerDetected,
    SuggestionsLoaded,
    SuggestionAccepted,
    LinkCleanupRequested,
    AutoTagArmed,
    AutoTagCancelled,
    AutoTagFired,
    TagsSuggested,
    TagGenerationFailed,
)


@dataclass(slots=True)
class SessionRuntime:
    """Container returned by :func:`build_session`."""

    coordinator: EditSessionCoordinator
    client: WorkspaceApiClient

    async def aclose(self) -> None:
        await self.coordinator.aclose()
        await self.client.aclose()


def configure_logging(debug: bool = False, *, log_dir: str | Path | None = None) -> Path:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, log_dir=log_dir)
    _LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path)
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_client(settings: Settings, **kwargs: Any) -> WorkspaceApiClient:
    api_settings = ApiSettings(
        base_url=settings.base_url,
        api_token=settings.api_token,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=settings.default_headers,
    )
    return WorkspaceApiClient(api_settings, **kwargs)


def build_session(
    settings: Settings,
    buffer: InMemoryEditBuffer,
    *,
    catalog: PageCatalog | None = None,
    client: WorkspaceApiClient | None = None,
    scheduler: TimerScheduler | None = None,
) -> SessionRuntime:
    """Wire an :class:`EditSessionCoordinator` to the workspace API client."""

    api = client or build_client(settings)
    coordinator = EditSessionCoordinator(
        buffer,
        persistence=api,
        suggestions=api,
        tags=api,
        catalog=catalog,
        settings=settings,
        workspace_id=settings.workspace_id,
        scheduler=scheduler,
    )
    return SessionRuntime(coordinator=coordinator, client=api)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``notelink`` console script."""

    args = _parse_cli_args(argv)

    settings_path = args.settings or os.environ.get("NOTELINK_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    if args.base_url:
        cli_overrides["base_url"] = args.base_url
    if args.workspace:
        cli_overrides["workspace_id"] = args.workspace

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    debug = args.debug or settings.debug_logging or _env_flag("NOTELINK_DEBUG", default=False)
    configure_logging(debug, log_dir=settings.log_dir)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    try:
        document = read_document(Path(args.document)) if args.document else DocumentState(blocks=[Block.paragraph()])
        pages = read_pages(Path(args.pages)) if args.pages else None
        script = read_script(Path(args.script)) if args.script and args.script != "-" else read_script_stream(sys.stdin)
    except (OSError, ValueError) as exc:
        print(f"notelink: {exc}", file=sys.stderr)
        return 2

    return asyncio.run(_run_replay(settings, document, pages, script))


async def _run_replay(
    settings: Settings,
    document: DocumentState,
    pages: list[Mapping[str, Any]] | None,
    script: list[Mapping[str, Any]],
) -> int:
    buffer = InMemoryEditBuffer(document)
    catalog = PageCatalog()
    runtime = build_session(settings, buffer, catalog=catalog)
    try:
        if pages is not None:
            catalog.replace_from_payload(pages)
        elif settings.workspace_id:
            catalog.replace(await _fetch_pages(runtime.client, settings.workspace_id))
        await replay_script(runtime.coordinator, buffer, script)
    finally:
        await runtime.aclose()
    return 0


async def _fetch_pages(client: WorkspaceApiClient, workspace_id: str) -> list:
    try:
        return await client.list_pages(workspace_id)
    except Exception as exc:
        _LOGGER.warning("Unable to load workspace pages: %s", exc)
        return []


async def replay_script(
    coordinator: EditSessionCoordinator,
    buffer: InMemoryEditBuffer,
    script: Iterable[Mapping[str, Any]],
    *,
    stream: TextIO | None = None,
) -> int:
    """Feed ``script`` events to ``coordinator`` and print published signals as JSON lines.

    Returns the number of events replayed.
    """

    destination = stream or sys.stdout

    def _emit(event: Event) -> None:
        payload = {"signal": type(event).__name__, **asdict(event)}
        destination.write(json.dumps(payload, default=str) + "\n")

    for signal_type in REPLAYED_SIGNALS:
        coordinator.bus.subscribe(signal_type, _emit)

    count = 0
    try:
        for step in script:
            await _apply_step(coordinator, buffer, step)
            count += 1
        await coordinator.drain()
    finally:
        for signal_type in REPLAYED_SIGNALS:
            coordinator.bus.unsubscribe(signal_type, _emit)
    return count


async def _apply_step(coordinator: EditSessionCoordinator, buffer: InMemoryEditBuffer, step: Mapping[str, Any]) -> None:
    op = str(step.get("op") or "")
    if op == "type":
        buffer.type_text(str(step.get("text") or ""))
    elif op == "change":
        text = str(step.get("text") or "")
        buffer.replace_blocks([Block.paragraph(line) for line in text.split("\n")])
    elif op == "backspace":
        buffer.delete_backward(int(step.get("count", 1)))
    elif op == "cursor":
        screen = None
        if "x" in step and "y" in step:
            screen = ScreenPoint(float(step["x"]), float(step["y"]))
        buffer.set_cursor(int(step.get("offset", buffer.cursor_offset())), screen)
    elif op == "focus":
        buffer.focus()
    elif op == "blur":
        buffer.blur()
    elif op == "key":
        coordinator.handle_keydown(str(step.get("key") or ""))
    elif op == "click_outside":
        coordinator.handle_click_outside()
    elif op == "close":
        coordinator.close_suggestions()
    elif op == "link":
        coordinator.trigger_suggestions()
    elif op == "resize":
        coordinator.handle_viewport_resized(float(step["width"]), float(step["height"]))
    elif op == "wait":
        await asyncio.sleep(max(0.0, float(step.get("ms", 0))) / 1000.0)
    elif op == "save":
        await coordinator.force_save()
    else:
        raise ValueError(f"Unknown replay op {op!r}")
    # Let spawned fetches and saves make progress between steps.
    await asyncio.sleep(0)


def read_document(path: Path) -> DocumentState:
    """Load a page from JSON (``{"id", "title", "content"}``) or plain text."""

    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() != ".json":
        return DocumentState.from_text(raw.rstrip("\n"), document_id=path.stem, title=path.stem)
    payload = json.loads(raw)
    if not isinstance(payload, Mapping):
        raise ValueError(f"{path} must contain a JSON object")
    content = payload.get("content") or []
    if not isinstance(content, list):
        raise ValueError(f"{path}: 'content' must be a list of blocks")
    document = DocumentState.from_content(
        content,
        document_id=str(payload.get("id") or path.stem),
        title=str(payload.get("title") or "Untitled"),
    )
    if not document.blocks:
        document.blocks.append(Block.paragraph())
    return document


def read_pages(path: Path) -> list[Mapping[str, Any]]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, Mapping):
        payload = payload.get("pages") or payload.get("data") or []
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a list of pages")
    return [item for item in payload if isinstance(item, Mapping)]


def read_script(path: Path) -> list[Mapping[str, Any]]:
    with path.open(encoding="utf-8") as handle:
        return read_script_stream(handle)


def read_script_stream(stream: Iterable[str]) -> list[Mapping[str, Any]]:
    """Parse JSON-lines replay events, skipping blank lines and ``#`` comments."""

    steps: list[Mapping[str, Any]] = []
    for number, line in enumerate(stream, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            step = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise ValueError(f"line {number}: {exc.msg}") from exc
        if not isinstance(step, Mapping):
            raise ValueError(f"line {number}: expected a JSON object")
        steps.append(step)
    return steps


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="notelink",
        description="Replay editor events against a page through the NoteLink edit-session coordinator.",
    )
    parser.add_argument(
        "script",
        nargs="?",
        default="-",
        help="JSON-lines event script to replay ('-' reads standard input).",
    )
    parser.add_argument("--settings", metavar="PATH", help="Override the default ~/.notelink/settings.json path.")
    parser.add_argument("--document", metavar="PATH", help="Page to edit (.json block tree or plain text).")
    parser.add_argument("--pages", metavar="PATH", help="JSON list of candidate pages for link suggestions.")
    parser.add_argument("--base-url", dest="base_url", metavar="URL", help="Workspace API base URL.")
    parser.add_argument("--workspace", metavar="ID", help="Workspace identifier sent with AI requests.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and target is not str:
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target) or target is dict:
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Section overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Section overrides must be valid JSON objects")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_token"] = redact_secret(settings.api_token)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("NOTELINK_"))


__all__ = [
    "SessionRuntime",
    "build_client",
    "build_session",
    "configure_logging",
    "load_settings",
    "main",
    "read_document",
    "read_pages",
    "read_script",
    "read_script_stream",
    "replay_script",
]
