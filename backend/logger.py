"""
Logging setup for the fulfillment service.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

ROOT_LOGGER_NAME = "fulfillment"

_lock = threading.Lock()
_configured = False


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, fmt_dict: Optional[dict] = None):
        super().__init__()
        self.fmt_dict = fmt_dict or {
            "level": "levelname",
            "logger": "name",
            "module": "module",
            "function": "funcName",
            "line": "lineno",
            "message": "message",
        }

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload = {key: getattr(record, attr, None) for key, attr in self.fmt_dict.items()}
        payload["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """Attach a single console handler to the service root logger."""
    global _configured
    with _lock:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.setLevel(level.upper())
        logger.handlers.clear()

        handler = logging.StreamHandler()
        if json_output:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            ))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True
        return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a child of the service root logger.

    Args:
        name: Dotted suffix, usually the calling module's short name.
    """
    if not _configured:
        from config import get_settings
        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
