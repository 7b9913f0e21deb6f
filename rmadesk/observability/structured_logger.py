"""
Structured logging module for observability.
Provides consistent log formatting with request IDs, timestamps, and severity levels.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict

from flask import g, has_app_context, has_request_context, request


class StructuredLogger:
    """
    Provides structured logging with consistent formatting.
    Logs are output in JSON format, one object per line.
    """

    def __init__(self, name: str, log_level: str = "INFO", log_file: str = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        self.logger.propagate = False

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JsonFormatter())
            self.logger.addHandler(handler)

            if log_file:
                log_dir = os.path.dirname(log_file)
                if log_dir:
                    os.makedirs(log_dir, exist_ok=True)
                file_handler = logging.FileHandler(log_file)
                file_handler.setFormatter(JsonFormatter())
                self.logger.addHandler(file_handler)

    def _get_request_id(self) -> str:
        """Get or create request ID for current request context."""
        if has_app_context() and hasattr(g, "request_id"):
            return g.request_id
        return str(uuid.uuid4())

    def _build_log_entry(self, level: str, message: str, **kwargs) -> Dict[str, Any]:
        """Build structured log entry."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "message": message,
            "request_id": self._get_request_id(),
        }

        if kwargs:
            log_entry["context"] = kwargs

        if has_request_context():
            log_entry["request"] = {
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
            }

        return log_entry

    def _emit(self, level: int, name: str, message: str, **kwargs):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, json.dumps(self._build_log_entry(name, message, **kwargs), default=str))

    def info(self, message: str, **kwargs):
        self._emit(logging.INFO, "INFO", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._emit(logging.WARNING, "WARNING", message, **kwargs)

    def error(self, message: str, **kwargs):
        self._emit(logging.ERROR, "ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._emit(logging.DEBUG, "DEBUG", message, **kwargs)


class JsonFormatter(logging.Formatter):
    """Formatter that passes the pre-built JSON line through."""

    def format(self, record):
        return record.getMessage()


def log_request(logger: StructuredLogger):
    """
    Decorator to log a view's outcome with its endpoint and status code.
    """
    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            try:
                response = f(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "Request failed with exception",
                    endpoint=request.endpoint,
                    exception=str(e),
                    exception_type=type(e).__name__,
                )
                raise
            status_code = response[1] if isinstance(response, tuple) else getattr(response, "status_code", 200)
            logger.info("Request completed", endpoint=request.endpoint, status_code=status_code)
            return response

        return wrapped
    return decorator


app_logger = StructuredLogger(
    "rmadesk",
    log_level=os.environ.get("LOG_LEVEL", "INFO"),
    log_file=os.environ.get("LOG_FILE"),
)
