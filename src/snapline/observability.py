"""Logging for snapline.

Everything logs through the single ``snapline`` logger. Each process gets one
session log file under ``~/.snapline/logs`` (rotating), and warnings also go
to stderr. Structured events are one JSON object per line via
:func:`log_action`; :func:`timeit` wraps a block and emits one such line with
its duration and outcome.

Settings come from, in order: :func:`configure_logging` arguments, then the
environment:

- ``SNAPLINE_LOG_LEVEL``: DEBUG, INFO, WARNING or ERROR (default INFO)
- ``SNAPLINE_LOG_DIR``: directory for session files
- ``SNAPLINE_LOG_MAX_BYTES`` / ``SNAPLINE_LOG_BACKUP_COUNT``: rotation
- ``SNAPLINE_LOG_DISABLE_FILE``: ``1`` for stderr only
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


LOGGER_NAME = "snapline"

ENV_LOG_DIR = "SNAPLINE_LOG_DIR"
ENV_LOG_LEVEL = "SNAPLINE_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "SNAPLINE_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "SNAPLINE_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "SNAPLINE_LOG_DISABLE_FILE"

DEFAULT_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_logger_initialized = False
_session_start: Optional[str] = None
_overrides: Dict[str, str] = {}


def _setting(env_var: str, default: str = "") -> str:
    if env_var in _overrides:
        return _overrides[env_var]
    return os.getenv(env_var, default)


def _default_log_dir() -> Path:
    return Path.home() / ".snapline" / "logs"


def _get_log_level() -> int:
    """Configured level; unknown names fall back to INFO."""
    level = logging.getLevelName(_setting(ENV_LOG_LEVEL, DEFAULT_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def _get_log_file_path() -> Optional[Path]:
    """Session log file, or None when file logging is disabled."""
    global _session_start
    if _setting(ENV_LOG_DISABLE_FILE).lower() in ("1", "true", "yes"):
        return None

    configured = _setting(ENV_LOG_DIR)
    log_dir = Path(configured).expanduser() if configured else _default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    if _session_start is None:
        _session_start = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    return log_dir / f"snapline_{_session_start}.log"


def _build_handlers(level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    log_file = _get_log_file_path()
    if log_file is not None:
        handlers.append(
            RotatingFileHandler(
                str(log_file),
                maxBytes=int(_setting(ENV_LOG_MAX_BYTES, str(DEFAULT_MAX_BYTES))),
                backupCount=int(_setting(ENV_LOG_BACKUP_COUNT, str(DEFAULT_BACKUP_COUNT))),
            )
        )
    stderr = logging.StreamHandler()
    stderr.setLevel(max(level, logging.WARNING))
    handlers.append(stderr)

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def get_logger() -> logging.Logger:
    """The ``snapline`` logger, with handlers attached on first use."""
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)
    if _logger_initialized:
        return logger

    _logger_initialized = True
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    level = _get_log_level()
    logger.setLevel(level)
    for handler in _build_handlers(level):
        logger.addHandler(handler)
    return logger


def configure_logging(
    *,
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
    disable_file: Optional[bool] = None,
) -> logging.Logger:
    """Rebuild the logger from resolved config values.

    Arguments left as None fall back to the environment.
    """
    global _logger_initialized
    given = {
        ENV_LOG_LEVEL: level or None,
        ENV_LOG_DIR: log_dir or None,
        ENV_LOG_MAX_BYTES: None if max_bytes is None else str(max_bytes),
        ENV_LOG_BACKUP_COUNT: None if backup_count is None else str(backup_count),
        ENV_LOG_DISABLE_FILE: None if disable_file is None else ("1" if disable_file else "0"),
    }
    _overrides.update({key: value for key, value in given.items() if value is not None})
    _logger_initialized = False
    return get_logger()


def reset_logging() -> None:
    """Drop handlers, overrides and the session file name."""
    global _logger_initialized, _session_start
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    _overrides.clear()
    _logger_initialized = False
    _session_start = None


def _with_fields(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} {json.dumps(fields, separators=(',', ':'), sort_keys=True, default=str)}"


def _log(level: int, message: str, fields: Dict[str, Any]) -> None:
    logger = get_logger()
    if logger.isEnabledFor(level):
        logger.log(level, _with_fields(message, fields))


def log_action(
    action: str,
    *,
    outcome: str = "ok",
    duration_ms: Optional[float] = None,
    **fields: Any,
) -> None:
    """Emit one JSON line for ``action``.

    ``fields`` must not reuse the names ``action``, ``outcome`` or ``duration_ms``.
    """
    payload: Dict[str, Any] = dict(fields)
    payload["ts"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    payload["action"] = action
    payload["outcome"] = outcome
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    _log(logging.DEBUG, message, fields)


def log_info(message: str, **fields: Any) -> None:
    _log(logging.INFO, message, fields)


def log_warning(message: str, **fields: Any) -> None:
    _log(logging.WARNING, message, fields)


def log_error(message: str, **fields: Any) -> None:
    _log(logging.ERROR, message, fields)


@contextmanager
def timeit(action: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Time the block and log it as ``action``.

    The yielded dict is merged into the line on success. On an exception the
    line has ``outcome="error"`` and the exception type, and the exception
    propagates.
    """
    start = time.perf_counter()
    extra: Dict[str, Any] = {}
    try:
        yield extra
    except Exception as exc:
        log_action(
            action,
            outcome="error",
            duration_ms=(time.perf_counter() - start) * 1000.0,
            error=type(exc).__name__,
            **fields,
        )
        raise
    log_action(action, duration_ms=(time.perf_counter() - start) * 1000.0, **{**fields, **extra})
