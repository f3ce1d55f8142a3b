"""
MNEMOS Observability

Structured logging for the memoization policy engine. Every component logs
through a MnemosLogger bound to its layer, producing one JSON object per
record so policy decisions (evictions, expirations, normalizations) can be
traced without a debugger.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Policy Components                     │
    │  logger.debug("evicted", hash=h)  logger.error(...)     │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                     MnemosLogger                         │
    │        layer tagging, operation names, context          │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                  StructuredHandler                       │
    │               JSON lines on stderr                       │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(layer)s] %(message)s"


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class MnemosLayer(Enum):
    """MNEMOS components for log categorization."""
    KEYS = "keys"
    EQUALITY = "equality"
    EXPIRATION = "expiration"
    EVICTION = "eviction"
    STATS = "stats"
    MEMOIZE = "memoize"
    STORE = "store"
    CONFIG = "config"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
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
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=repr)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class MnemosLogger:
    """
    Structured logger for MNEMOS components.

    Tags every record with the component layer and an optional
    operation name; keyword arguments become the record context.
    """

    def __init__(
        self,
        name: str,
        layer: MnemosLayer,
        level: Optional[LogLevel] = None,
    ):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"mnemos.{layer.value}.{name}")
        configured_level, log_format = _configured_output()
        self._logger.setLevel(getattr(logging, (level or configured_level).value.upper()))

        if not self._logger.handlers:
            if log_format == "json":
                handler: logging.Handler = StructuredHandler()
            else:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(logging.Formatter(TEXT_FORMAT))
            self._logger.addHandler(handler)
            self._logger.propagate = False

    @property
    def logger(self) -> logging.Logger:
        """The underlying stdlib logger."""
        return self._logger

    def is_enabled_for(self, level: LogLevel) -> bool:
        return self._logger.isEnabledFor(getattr(logging, level.value.upper()))

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
        """Log debug message."""
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        """Log error message."""
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)


def _configured_output() -> Tuple[LogLevel, str]:
    # Imported lazily: config itself logs through this module.
    from mnemos.config import get_config

    observability = get_config().observability
    return LogLevel(observability.log_level.get()), observability.log_format.get()


def get_logger(name: str, layer: MnemosLayer) -> MnemosLogger:
    """Get a logger for a MNEMOS component."""
    return MnemosLogger(name, layer)
