"""
Structured logging for blobferry.

Thin layer over the standard library ``logging`` module. All loggers live
under the ``blobferry`` namespace, so applications can route or silence the
SDK's output with the usual logging configuration.

Structured fields are passed through ``extra`` and rendered after the
message (text format) or as top-level keys (JSON format).

Example:
    ```python
    from blobferry.utils.logging import configure_logging, get_logger, LogContext

    configure_logging(level="DEBUG", json_format=True)
    logger = get_logger(__name__)

    with LogContext(digest="ab12..."):
        logger.info("Fee collected", extra={"fee": "0.1"})
    ```
"""

from __future__ import annotations

import contextvars
import json
import logging
from typing import Any, Dict, Optional, Union

ROOT_LOGGER_NAME = "blobferry"

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "blobferry_log_context", default={}
)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = dict(_context.get())
    for key, value in vars(record).items():
        if key not in _RESERVED_ATTRS and not key.startswith("_"):
            fields[key] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Text formatter that appends ``key=value`` pairs from ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = _extra_fields(record)
        if not fields:
            return base
        rendered = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{base} | {rendered}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the ``blobferry`` namespace.

    Args:
        name: Usually ``__name__`` of the calling module

    Returns:
        Configured ``logging.Logger``
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    json_format: bool = False,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """
    Attach a handler to the ``blobferry`` root logger.

    Calling this again replaces the previously installed handler.

    Args:
        level: Log level (name or number)
        json_format: Emit JSON lines instead of text
        handler: Custom handler (defaults to a StreamHandler on stderr)

    Returns:
        The ``blobferry`` root logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in list(root.handlers):
        if getattr(existing, "_blobferry_handler", False):
            root.removeHandler(existing)

    handler = handler or logging.StreamHandler()
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    handler._blobferry_handler = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(level)
    root.disabled = False
    return root


def set_level(level: Union[int, str]) -> None:
    """Set the level of the ``blobferry`` root logger."""
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


def enable_debug() -> None:
    """Shortcut for ``set_level(logging.DEBUG)``."""
    set_level(logging.DEBUG)


def disable_logging() -> None:
    """Silence all blobferry loggers."""
    logging.getLogger(ROOT_LOGGER_NAME).disabled = True


class LogContext:
    """
    Context manager that adds fields to every record logged inside it.

    Nested contexts merge; inner values win. Works across ``await`` points
    because it is backed by a ``contextvars.ContextVar``.
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "LogContext":
        merged = {**_context.get(), **self._fields}
        self._token = _context.set(merged)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None
