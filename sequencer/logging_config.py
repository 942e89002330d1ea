"""Centralized logging configuration for the sequencer."""

import json
import logging
import logging.config
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .config_models import SystemConfig


class ContextFilter(logging.Filter):
    """Custom filter to inject the session id into log records."""

    def __init__(self, session_id: str):
        """
        Initialize the context filter.

        Args:
            session_id: Unique identifier for the orchestrator session
        """
        super().__init__()
        self.session_id = session_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id
        return True


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs."""

    _RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "session_id": getattr(record, "session_id", "unknown"),
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in self._RESERVED and key not in log_data and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(config: "SystemConfig", session_id: Optional[str] = None) -> str:
    """
    Configure the logging system.

    Args:
        config: System configuration
        session_id: Session identifier. If None, a new UUID will be generated.

    Returns:
        The session_id used for logging
    """
    if session_id is None:
        session_id = str(uuid.uuid4())

    log_dir = config.paths.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"session_{session_id}.log"

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": config.logging.format_console,
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "json": {
                "()": JSONFormatter,
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "filters": {
            "context": {
                "()": ContextFilter,
                "session_id": session_id
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": config.logging.level,
                "formatter": "console",
                "filters": ["context"],
                "stream": "ext://sys.stderr"
            },
            "file": {
                "class": "logging.FileHandler",
                "level": "DEBUG",
                "formatter": "json",
                "filters": ["context"],
                "filename": str(log_file),
                "mode": "w"
            }
        },
        "root": {
            "level": "DEBUG",
            "handlers": ["console", "file"]
        },
        "loggers": {
            "sequencer": {
                "level": "DEBUG",
                "propagate": True
            }
        }
    }

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized for session {session_id}")
    logger.debug(f"Log file: {log_file}")

    return session_id


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LogCapture(logging.Handler):
    """
    Handler that collects records from one logger tree while active.

    Besides level and message, each captured entry keeps the structured
    ``ipc_*`` fields attached by log_ipc_message, so tests can assert on the
    messages that crossed the helper channel.

    Example:
        with LogCapture("sequencer.ipc") as capture:
            ...
        requests = capture.ipc_messages(kind="request")
    """

    def __init__(self, logger_name: str = "sequencer"):
        super().__init__(level=logging.DEBUG)
        self.logger_name = logger_name
        self.entries: List[Dict[str, Any]] = []
        self._previous_level: Optional[int] = None

    def __enter__(self) -> "LogCapture":
        logger = logging.getLogger(self.logger_name)
        self._previous_level = logger.level
        if logger.getEffectiveLevel() > logging.DEBUG:
            logger.setLevel(logging.DEBUG)
        logger.addHandler(self)
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        logger = logging.getLogger(self.logger_name)
        logger.removeHandler(self)
        if self._previous_level is not None:
            logger.setLevel(self._previous_level)

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key.startswith("ipc_") or key == "direction":
                entry[key] = value
        self.entries.append(entry)

    def messages(self, level: Optional[str] = None) -> List[str]:
        """Captured message texts, optionally only those at ``level``."""
        return [e["message"] for e in self.entries if level is None or e["level"] == level]

    def ipc_messages(self, direction: Optional[str] = None,
                     kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Captured channel traffic.

        Args:
            direction: "send" or "recv" to filter on
            kind: "request", "response" or "event" to filter on

        Returns:
            Entries logged by log_ipc_message, in order
        """
        return [
            e for e in self.entries
            if "ipc_kind" in e
            and (direction is None or e["direction"] == direction)
            and (kind is None or e["ipc_kind"] == kind)
        ]


def log_ipc_message(logger: logging.Logger, direction: str, message: Dict[str, Any]) -> None:
    """
    Log a channel message with structured data.

    Args:
        logger: Logger instance
        direction: "send" or "recv"
        message: Decoded JSON message
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return

    extra_data: Dict[str, Any] = {"direction": direction}
    if "method" in message:
        extra_data["ipc_kind"] = "request"
        extra_data["ipc_method"] = message["method"]
    elif "event" in message:
        extra_data["ipc_kind"] = "event"
        extra_data["ipc_event"] = message["event"]
    else:
        extra_data["ipc_kind"] = "response"
        extra_data["ipc_success"] = message.get("success")

    if "id" in message:
        extra_data["ipc_id"] = message["id"]

    arrow = "->" if direction == "send" else "<-"
    logger.debug(f"IPC {arrow} {json.dumps(message, default=str)}", extra=extra_data)
