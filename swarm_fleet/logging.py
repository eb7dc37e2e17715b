"""Structured logging for the fleet manager.

Provides consistent, structured logging across all components.
SSH keys and join tokens are never included in log output.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger


class FleetJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds timestamp, level, logger and source fields."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }


def setup_logging(level: str = "INFO", json_format: bool = True, use_stderr: bool = False) -> None:
    """Configure root logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit JSON records instead of plain text
        use_stderr: If True, log to stderr instead of stdout
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    stream = sys.stderr if use_stderr else sys.stdout
    handler = logging.StreamHandler(stream)
    if json_format:
        handler.setFormatter(FleetJsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s"
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = [handler]

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class OperationLogger:
    """Helper for logging fleet operations with consistent structure.

    Every operation is logged with its name, duration and outcome.
    Context keys that may carry secrets are dropped.
    """

    SENSITIVE_PATTERNS = (
        "secret", "password", "token", "key", "credential",
        "stdout", "stderr", "output",
    )

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._start_time: Optional[datetime] = None
        self._operation: Optional[str] = None
        self._context: Dict[str, Any] = {}

    def start(self, operation: str, **context) -> "OperationLogger":
        """Start timing an operation.

        Args:
            operation: Operation name (e.g. "provision_node")
            **context: Additional context (node_id, etc.)

        Returns:
            Self for chaining
        """
        self._start_time = datetime.now(timezone.utc)
        self._operation = operation
        self._context = context

        self.logger.info(
            "Operation started",
            extra={
                "operation": operation,
                "event": "operation_start",
                **self._safe(context),
            }
        )
        return self

    def success(self, **result_info) -> None:
        """Log successful completion."""
        self.logger.info(
            "Operation succeeded",
            extra={
                "operation": self._operation,
                "event": "operation_success",
                "duration_ms": self._calculate_duration(),
                **self._safe(self._context),
                **self._safe(result_info),
            }
        )

    def failure(self, error: str, **result_info) -> None:
        """Log failed completion.

        Args:
            error: Error message (sanitized, no secrets)
            **result_info: Non-sensitive result information
        """
        self.logger.error(
            "Operation failed",
            extra={
                "operation": self._operation,
                "event": "operation_failure",
                "duration_ms": self._calculate_duration(),
                "error": error,
                **self._safe(self._context),
                **self._safe(result_info),
            }
        )

    def _calculate_duration(self) -> int:
        if self._start_time is None:
            return 0
        delta = datetime.now(timezone.utc) - self._start_time
        return int(delta.total_seconds() * 1000)

    @classmethod
    def _is_sensitive(cls, key: str) -> bool:
        key_lower = key.lower()
        return any(pattern in key_lower for pattern in cls.SENSITIVE_PATTERNS)

    @classmethod
    def _safe(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in values.items() if not cls._is_sensitive(k)}
