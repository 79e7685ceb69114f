"""Console and file logging for the API server, the render worker and the CLI.

Console output goes through rich; two rotating files live under the log dir:

    app.log     everything the helpers below print, at every verbosity
    render.log  one line per render event (claim, strategy, encoder args, exit)

File lines carry the correlation ids active in the current context, so a
request and the job it queued can be followed across both files.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.theme import Theme

THEME = Theme({
    "info": "cyan",
    "warning": "yellow bold",
    "error": "red bold",
    "success": "green bold",
    "dim": "dim white",
})

console = Console(theme=THEME)
err_console = Console(stderr=True, theme=THEME)

LOG_DIR = Path(os.environ.get("BEATSYNC_LOG_DIR", "data/logs"))
APP_LOGGER = "beatsync.app"
RENDER_LOGGER = "beatsync.render"
ROTATE_BYTES = 20 * 1024 * 1024
ROTATE_KEEP = 5


class Verbosity(str, Enum):
    SILENT = "silent"
    NORMAL = "normal"
    VERBOSE = "verbose"


_CONSOLE_LEVEL = {
    Verbosity.SILENT: logging.ERROR,
    Verbosity.NORMAL: logging.INFO,
    Verbosity.VERBOSE: logging.DEBUG,
}

_verbosity = Verbosity.NORMAL


# ── Correlation ids ───────────────────────────────────────────────────────────

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_job_id: ContextVar[str] = ContextVar("job_id", default="")


def set_request_id(rid: str = "") -> str:
    """Bind the HTTP request id (a fresh one if empty) and return it."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get()


def get_job_id() -> str:
    return _job_id.get()


@contextmanager
def job_context(jid: str) -> Iterator[None]:
    """Tag every log line written inside the block with ``job=<jid>``."""
    token = _job_id.set(jid)
    try:
        yield
    finally:
        _job_id.reset(token)


class _CorrelationFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = [f"req={v}" for v in (_request_id.get(),) if v]
        tags += [f"job={v}" for v in (_job_id.get(),) if v]
        line = super().format(record)
        if not tags:
            return line
        head, _, message = line.partition(" | ")
        return f"{head} | [{' '.join(tags)}] {message}"


# ── Setup ─────────────────────────────────────────────────────────────────────

def _file_logger(name: str, path: Path) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    path.parent.mkdir(parents=True, exist_ok=True)
    target = str(path.resolve())
    if not any(getattr(h, "baseFilename", None) == target for h in logger.handlers):
        handler = RotatingFileHandler(path, maxBytes=ROTATE_BYTES, backupCount=ROTATE_KEEP, encoding="utf-8")
        handler.setFormatter(_CorrelationFormatter(
            "%(asctime)s %(levelname)-7s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(handler)
    return logger


def setup_logging(verbosity: Verbosity = Verbosity.NORMAL, log_dir: Path | None = None) -> None:
    """Configure console verbosity (``LOG_LEVEL`` wins) and attach the file logs."""
    global _verbosity
    _verbosity = verbosity

    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "").upper())
    if not isinstance(level, int):
        level = _CONSOLE_LEVEL[verbosity]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
        force=True,
    )

    root = log_dir or LOG_DIR
    _file_logger(APP_LOGGER, root / "app.log")
    _file_logger(RENDER_LOGGER, root / "render.log")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _emit(level: int, msg: str, markup: str, show: bool, **kwargs: Any) -> None:
    if show:
        target = err_console if level >= logging.ERROR else console
        target.print(markup.format(escape(msg)), **kwargs)
    logger = logging.getLogger(APP_LOGGER)
    if logger.handlers:
        logger.log(level, msg)


def info(msg: str, **kwargs: Any) -> None:
    _emit(logging.INFO, msg, "[info]ℹ {}[/info]", _verbosity != Verbosity.SILENT, **kwargs)


def success(msg: str, **kwargs: Any) -> None:
    _emit(logging.INFO, msg, "[success]✓ {}[/success]", _verbosity != Verbosity.SILENT, **kwargs)


def warn(msg: str, **kwargs: Any) -> None:
    _emit(logging.WARNING, msg, "[warning]⚠ {}[/warning]", _verbosity != Verbosity.SILENT, **kwargs)


def error(msg: str, **kwargs: Any) -> None:
    _emit(logging.ERROR, msg, "[error]✗ {}[/error]", True, **kwargs)


def debug(msg: str, **kwargs: Any) -> None:
    _emit(logging.DEBUG, msg, "[dim]  {}[/dim]", _verbosity == Verbosity.VERBOSE, **kwargs)


def render_log(msg: str, level: str = "info") -> None:
    """Append to render.log regardless of console verbosity."""
    logger = logging.getLogger(RENDER_LOGGER)
    if logger.handlers:
        logger.log(logging.getLevelName(level.upper()), msg)
