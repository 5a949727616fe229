"""
Structured JSON logging for the credit engine.

Every line is one JSON object.  Besides the ``extra`` a call site passes,
a line carries the credit context of the transition that emitted it:

    operation    service transition in progress ("create_order", ...)
    actor_id     principal driving the transition
    retailer_id  retailer whose credit row the transition holds
    reference    payment reference under reconciliation

Services bind ``operation`` and ``actor_id`` on entry; the credit ledger
adds ``retailer_id`` when it locks a retailer row; reconciliation binds
``reference``.  Context beats a same-named ``extra``.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

from amana_kernel.exceptions import AmanaError

CONTEXT_FIELDS = ("operation", "actor_id", "retailer_id", "reference")

_context: ContextVar[dict[str, str] | None] = ContextVar("amana_log_context", default=None)


def _merged(fields: dict[str, Any]) -> dict[str, str]:
    merged = dict(_context.get() or {})
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            merged[name] = str(value)
    return merged


class LogContext:
    """Credit context stamped onto every line logged inside a transition."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Add fields to the innermost bound scope.

        Outside any ``bind`` the fields stay until ``clear()``.
        """
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get() or {})

    @staticmethod
    def clear() -> None:
        _context.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Open a scope; anything set inside it, bound or ``set``, is dropped on exit."""
        token = _context.set(_merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


class _JSONEncoder(json.JSONEncoder):

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (UUID, Decimal)):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: envelope, credit context, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_KEYS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)

    @staticmethod
    def _error_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
        if isinstance(exc, AmanaError):
            fields["exc_code"] = exc.code
            fields.update({f"exc_{k}": v for k, v in exc.log_fields().items()})
        return fields


_LOGGER_PREFIX = "amana_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger under the amana_kernel namespace (``services.order`` -> ``amana_kernel.services.order``)."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the amana_kernel logger.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Undo configure_logging. Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
