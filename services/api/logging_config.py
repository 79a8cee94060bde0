"""
Logging configuration for the IVD instrument service
"""

import logging
import logging.config
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict
from services.api.config import settings

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", "request_id", "driver", "message",
}


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "request_id"):
            log_obj["request_id"] = record.request_id
        if hasattr(record, "driver"):
            log_obj["driver"] = record.driver

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_obj[key] = value

        return json.dumps(log_obj, default=str)


class RequestIdFilter(logging.Filter):
    """Add request ID to log records that lack one"""

    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = "no-request"
        return True


def build_logging_config() -> Dict[str, Any]:
    """dictConfig for the current settings"""
    use_json = settings.environment == "production"
    formatter = "json" if use_json else "detailed"

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.log_level,
            "formatter": formatter,
            "filters": ["request_id"],
            "stream": "ext://sys.stdout"
        }
    }
    app_handlers = ["console"]

    if settings.log_to_file:
        handlers["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": formatter,
            "filename": os.path.join(settings.log_dir, "error.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        handlers["app_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "INFO",
            "formatter": "json" if use_json else "standard",
            "filename": os.path.join(settings.log_dir, "app.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10
        }
        app_handlers += ["app_file", "error_file"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter
            },
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"
            }
        },
        "filters": {
            "request_id": {
                "()": RequestIdFilter
            }
        },
        "handlers": handlers,
        "loggers": {
            "services": {
                "level": settings.log_level,
                "handlers": app_handlers,
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False
            },
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["console"]
        }
    }


def setup_logging():
    """Configure logging for the application"""
    if settings.log_to_file:
        os.makedirs(settings.log_dir, exist_ok=True)

    logging.config.dictConfig(build_logging_config())

    logger = logging.getLogger(__name__)
    logger.info(
        "Logging configured",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "format": "json" if settings.environment == "production" else "text"
        }
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter to add context to logs"""

    def process(self, msg, kwargs):
        if "extra" not in kwargs:
            kwargs["extra"] = {}

        kwargs["extra"].update(self.extra)

        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """Get a logger with context"""
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
