from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

_CONFIGURED = False
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
LOG_LEVEL_ENV = "APP_LOG_LEVEL"
LOG_DIR_ENV = "STATUS_LOG_DIR"
LOG_TO_FILE_ENV = "STATUS_LOG_TO_FILE"
LOG_FILE_NAME = "status-{time:YYYY-MM-DD}.log"

_FALSE_VALUES = {"0", "false", "no", "off"}
_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> {extra}"
)


def _status_log_dir() -> Path:
    env_value = os.getenv(LOG_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return DEFAULT_LOG_DIR


def file_sink_enabled() -> bool:
    return os.getenv(LOG_TO_FILE_ENV, "true").strip().lower() not in _FALSE_VALUES


def configure_logger() -> None:
    """Configure the Loguru logger exactly once per process.

    Console output follows ``APP_LOG_LEVEL``; the daily status log keeps DEBUG
    detail (every upstream call and its timing) unless ``STATUS_LOG_TO_FILE``
    turns it off.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    _logger.remove()
    _logger.add(
        sys.stdout,
        level=os.getenv(LOG_LEVEL_ENV, "INFO").upper(),
        format=_LOG_FORMAT,
        colorize=sys.stdout.isatty(),
    )
    if file_sink_enabled():
        target_dir = _status_log_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            target_dir / LOG_FILE_NAME,
            rotation="50 MB",
            retention="10 days",
            level="DEBUG",
            format=_LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    _CONFIGURED = True


def get_logger():
    """Return the configured logger, configuring it on first access."""

    configure_logger()
    return _logger


def log_with_context(logger_instance, **context: str | int | None) -> Any:
    """Bind request context (pr_number, head_sha, branch, ...) to log messages.

    ``None`` values are dropped so optional fields do not clutter ``{extra}``.
    """
    return logger_instance.bind(**{k: v for k, v in context.items() if v is not None})


@contextmanager
def log_timing(logger_instance, operation: str, **context: str | int | None) -> Iterator[Any]:
    """Time one upstream GitHub call, logging its duration or its failure.

    Usage:
        with log_timing(ctx_logger, "list_check_runs", head_sha="abc1234"):
            runs = await client.list_check_runs(sha)
    """
    ctx_logger = log_with_context(logger_instance, operation=operation, **context)
    start_time = time.perf_counter()
    ctx_logger.debug(f"Starting {operation}")
    try:
        yield ctx_logger
    except Exception as exc:
        ctx_logger.error(f"Failed {operation} after {time.perf_counter() - start_time:.3f}s: {exc}")
        raise
    ctx_logger.debug(f"Completed {operation} in {time.perf_counter() - start_time:.3f}s")


def log_success(logger_instance, message: str, **context: str | int | None) -> None:
    log_with_context(logger_instance, **context).info(f"=== SUCCESS: {message} ===")


def log_failure(logger_instance, message: str, error: Exception | None = None, **context: str | int | None) -> None:
    """Log a failed status request; the error type is kept so 404s and outages read apart."""
    ctx_logger = log_with_context(logger_instance, **context)
    if error is None:
        ctx_logger.error(f"=== FAILURE: {message} ===")
        return
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        ctx_logger = ctx_logger.bind(status_code=status_code)
    ctx_logger.error(f"=== FAILURE: {message} | {type(error).__name__}: {error} ===")
