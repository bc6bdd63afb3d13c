"""Structured logging helpers for the NoteLink client."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Any, MutableMapping

__all__ = ["setup_logging", "session_logger", "SessionLoggerAdapter"]

DEFAULT_LOG_DIR = Path.home() / ".notelink" / "logs"
LOG_FILE_NAME = "notelink.log"
_MAX_BYTES = 1_000_000
_BACKUP_COUNT = 3
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
# Third-party loggers stay at WARNING unless the root is quieter still.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore")


def setup_logging(level: int = logging.INFO, *, log_dir: Path | str | None = None) -> Path:
    """Route root logging to a rotating session log plus stderr.

    Replaces whatever handlers the root logger had, so the CLI calls it once
    settings (and with them ``log_dir``) are known. Returns the log file path.
    """

    log_path = Path(log_dir or DEFAULT_LOG_DIR).expanduser() / LOG_FILE_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)
    logging.captureWarnings(True)
    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
    return log_path


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefixes records with the document an edit session is bound to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        document_id = (self.extra or {}).get("document_id") or "-"
        return f"[doc={document_id}] {msg}", kwargs

    def rebind(self, document_id: str | None) -> None:
        self.extra = {"document_id": document_id}


def session_logger(name: str, document_id: str | None = None) -> SessionLoggerAdapter:
    """Return a logger whose records carry the edit session's document id."""

    return SessionLoggerAdapter(logging.getLogger(name), {"document_id": document_id})
