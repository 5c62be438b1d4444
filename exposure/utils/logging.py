"""Structured logging setup for the open exposure pipeline."""

import contextvars
import functools
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context)s"

# Per-task context so concurrent requests do not see each other's fields
_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("exposure_log_context", default={})


class ContextFilter(logging.Filter):
    """
    Attach the active logging context to each record.

    Every field is set as a record attribute, and ``record.context`` holds
    the rendered form (`` [snapshot_id=... component=...]``, or an empty
    string) for use in format strings.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _context.get()
        for key, value in fields.items():
            setattr(record, key, value)
        record.context = (
            " [" + " ".join(f"{key}={value}" for key, value in fields.items()) + "]"
            if fields else ""
        )
        return True


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    log_format: str = DEFAULT_FORMAT,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up console (and optional file) logging on the root logger.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_format: Format string; may reference %(context)s
        log_file: Optional path to a log file (parent directories are created)

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_handler(logging.StreamHandler(), numeric_level, formatter))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_handler(logging.FileHandler(log_path), numeric_level, formatter))

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Add fields to every log message emitted inside the block.

    Example:
        with log_context(snapshot_id="SNAP-20260108"):
            logger.info("Saving snapshot")  # ... [snapshot_id=SNAP-20260108]

    Args:
        **fields: Context key-value pairs, merged over any outer context

    Yields:
        The merged context
    """
    merged = {**_context.get(), **fields}
    token = _context.set(merged)
    try:
        yield merged
    finally:
        _context.reset(token)


def current_context() -> Dict[str, Any]:
    """Copy of the active logging context."""
    return dict(_context.get())


def with_context(**context_kwargs):
    """Decorator form of :func:`log_context` for synchronous functions."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with log_context(**context_kwargs):
                return func(*args, **kwargs)

        return wrapper
    return decorator
