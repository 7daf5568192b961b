"""
Structured logging for the document authority engine.

Every log record is emitted as one JSON object carrying the layer, the
operation and free-form context, plus a correlation id when the host has set
one for the current request.

    logger = get_logger(__name__, Layer.LIFECYCLE)
    logger.info("Transition rejected", operation="advance_stage", reason=...)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class Layer(Enum):
    """Engine layers for categorization."""
    TOKEN = "token"
    AUTHORITY = "authority"
    VERIFY = "verify"
    LIFECYCLE = "lifecycle"
    MAIL = "mail"
    STORE = "store"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def to_text(self) -> str:
        ctx = " ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        head = f"{self.timestamp} {self.level.upper()} {self.logger}: {self.message}"
        return f"{head} {ctx}".rstrip()


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON (or flat text)."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self.stream = stream
        self.fmt = fmt

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            # Resolved per record so redirected stderr (e.g. under pytest) is honoured.
            stream = self.stream or sys.stderr
            stream.write((event.to_text() if self.fmt == "text" else event.to_json()) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


def _qualified_name(name: str, layer: Layer) -> str:
    short = name[len("docauth."):] if name.startswith("docauth.") else name
    if short in ("", "docauth", layer.value):
        return f"docauth.{layer.value}"
    return f"docauth.{layer.value}.{short}"


class DocAuthLogger:
    """
    Structured logger bound to one engine layer.

    Wraps a stdlib logger named ``docauth.<layer>.<name>``. A leading
    ``docauth.`` is dropped from ``name``, and a module named after its layer
    logs as ``docauth.<layer>``.
    """

    def __init__(self, name: str, layer: Layer, level: Optional[str] = None, fmt: Optional[str] = None):
        from docauth.config import get_config

        obs = get_config().observability
        level = level or obs.log_level.get()
        fmt = fmt or obs.log_format.get()

        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(_qualified_name(name, layer))
        self._logger.setLevel(getattr(logging, level.upper()))

        if not any(isinstance(h, StructuredHandler) for h in self._logger.handlers):
            self._logger.addHandler(StructuredHandler(fmt=fmt))

    @property
    def stdlib(self) -> logging.Logger:
        return self._logger

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, minting one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: Layer) -> DocAuthLogger:
    """Get a logger for an engine component."""
    return DocAuthLogger(name, layer)
