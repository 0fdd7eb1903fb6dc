"""
Structured JSON logging for the lifecycle kernel.

Every record is one JSON object per line:

    {"ts": ..., "level": ..., "logger": ..., "message": "transition_recorded",
     "correlation_id": ..., "external_ref": "BC-0042", "stage_to": "packing", ...}

``message`` is a snake_case event name; details travel in ``extra=``.  Fields
bound through ``LogContext`` (the scanned barcode, the operator, the command's
correlation id) are stamped onto every record emitted while they are bound,
so a single floor command can be followed across services.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
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
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

ROOT_LOGGER = "lifecycle_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "unit_id",
    "external_ref",
    "operator_id",
    "stage_name",
)


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Command-scoped log fields held in context variables.

    Values are per thread and per asyncio task, so concurrent commands on
    different units never see each other's barcode or operator.
    """

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"lifecycle_log_{name}", default=None)
        for name in CONTEXT_FIELDS
    }

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the given fields; None values leave the current value alone."""
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        for name, value in fields.items():
            if value is not None:
                cls._vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        bound = {}
        for name, var in cls._vars.items():
            value = var.get()
            if value is not None:
                bound[name] = value
        return bound

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """
        Bind fields for the duration of a ``with`` block.

        None values and names outside CONTEXT_FIELDS are skipped.  On exit
        each field goes back to whatever it held before, including unset.
        """
        tokens = []
        for name, value in fields.items():
            var = cls._vars.get(name)
            if var is None or value is None:
                continue
            tokens.append((var, var.set(str(value))))
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Renders a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in payload:
                payload[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # Kernel errors carry their context as attributes (stage names, versions...)
        for name, value in vars(exc).items():
            if name.startswith("_") or name in ("args", "code"):
                continue
            fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``lifecycle_kernel`` namespace, e.g. ``services.material_ledger``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_configured = False
_setup_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``lifecycle_kernel`` logger.

    Only the first call has any effect; later calls return immediately so
    that engine initialisation can call this unconditionally.
    """
    global _configured
    with _setup_lock:
        if _configured:
            return
        _configured = True

    out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(out)


def reset_logging() -> None:
    """Drop handlers and forget prior configuration.  Tests only."""
    global _configured
    with _setup_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
