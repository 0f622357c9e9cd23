"""Logging setup and per-attempt structured logs.

Provides:
- setup_logging: one-time configuration of the standard logging module
- StructuredLogger: timestamped entries with target context, forwarded to
  the Python logger and rendered into an artifact (e.g. heap-dump.log) so a
  failed collection is diagnosable without the console output
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class LogEntry:
    """Structured log entry."""

    timestamp: str
    level: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_text(self) -> str:
        line = f"[{self.timestamp}] [{self.level.upper()}] {self.message}"
        if self.context:
            extras = " ".join(f"{k}={v}" for k, v in self.context.items())
            line = f"{line} | {extras}"
        return line


class StructuredLogger:
    """Structured logger bound to one collection target.

    Usage:
        log = StructuredLogger(target=str(target))
        log.info("Sending signal", pid=42)
        path.write_text(log.render_text())
    """

    def __init__(
        self,
        target: Optional[str] = None,
        logger_name: str = "container_diag",
    ):
        """Initialize structured logger.

        Args:
            target: Target description prefixed to forwarded messages
            logger_name: Python logger receiving forwarded messages
        """
        self.target = target
        self._entries: List[LogEntry] = []
        self._python_logger = logging.getLogger(logger_name)

    def _log(self, level: LogLevel, message: str, **kwargs) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            level=level.value,
            message=message,
            context=dict(kwargs),
        )
        self._entries.append(entry)

        log_func = getattr(self._python_logger, level.value)
        prefix = f"[{self.target}] " if self.target else ""
        if kwargs:
            log_func(f"{prefix}{message} | {kwargs}")
        else:
            log_func(f"{prefix}{message}")

        return entry

    def debug(self, message: str, **kwargs) -> LogEntry:
        return self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> LogEntry:
        return self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> LogEntry:
        return self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> LogEntry:
        return self._log(LogLevel.ERROR, message, **kwargs)

    def render_text(self) -> str:
        """All entries as text lines, oldest first."""
        return "".join(f"{e.to_text()}\n" for e in self._entries)


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); TRACE maps to DEBUG
            and also enables asyncio debug logging
    """
    level = level.upper()
    trace = level == "TRACE"
    if trace:
        level = "DEBUG"

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("asyncio").setLevel(logging.DEBUG if trace else logging.WARNING)
