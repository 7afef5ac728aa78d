"""Logging for the journal: Rich console plus JSON files stamped with the portfolio owner."""

import logging
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler

from pythonjsonlogger.json import JsonFormatter  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler

from paper_journal.config import Settings

console = Console()

LOG_FILE = "paper_journal.log"
ERROR_LOG_FILE = "error.log"

# Third-party loggers that are chatty at INFO: one line per HTTP request,
# per scheduled job run, per SQLite call.
_NOISY_LOGGERS = ("httpx", "apscheduler.executors", "apscheduler.scheduler", "aiosqlite")

_current_user: ContextVar[str | None] = ContextVar("paper_journal_user", default=None)


def bind_user(user_id: str | None) -> None:
    """Tag log records emitted from the current task with ``user_id``."""
    _current_user.set(user_id)


class UserContextFilter(logging.Filter):
    """Adds ``user_id`` to every record ("-" outside a portfolio operation)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = _current_user.get() or "-"
        return True


def _rotating_file(settings: Settings, name: str, level: str | int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        settings.log_dir / name,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging(settings: Settings, *, cli_log_level: str | None = None) -> None:
    """Route logs to the terminal and to ``settings.log_dir``.

    The console shows ``cli_log_level`` (or ``settings.log_level``); the JSON
    log keeps everything at ``settings.log_file_level`` and ``error.log`` only
    errors. Calling it again replaces the previous handlers.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    console_level = (cli_log_level or settings.log_level).upper()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    user_filter = UserContextFilter()

    # ── Console ────────────────────────────────────────────────
    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=True,
        show_path=False,
    )
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    # ── JSON files ─────────────────────────────────────────────
    json_formatter = JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(user_id)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    file_handler = _rotating_file(settings, LOG_FILE, settings.log_file_level.upper())
    error_handler = _rotating_file(settings, ERROR_LOG_FILE, logging.ERROR)

    for handler in (console_handler, file_handler, error_handler):
        handler.addFilter(user_filter)
        if handler is not console_handler:
            handler.setFormatter(json_formatter)
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
