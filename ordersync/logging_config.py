import logging
import logging.config
import os
import sys
import time
import uuid
from typing import Optional

import structlog

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("apscheduler", "urllib3", "werkzeug")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Route structlog through stdlib logging.

    Console output is key=value for reading in a terminal; the optional
    rotating file gets one JSON object per line.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_file: path of the rotating JSON log, or None for console only
    """
    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + _SHARED_PROCESSORS + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "console",
            "stream": sys.stdout,
        }
    }
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.dev.ConsoleRenderer(colors=False),
                ],
                "foreign_pre_chain": _SHARED_PROCESSORS,
            },
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(),
                ],
                "foreign_pre_chain": _SHARED_PROCESSORS,
            },
        },
        "handlers": handlers,
        "root": {"level": log_level, "handlers": list(handlers)},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    logger = structlog.get_logger("ordersync")
    logger.info("Logging configured", level=log_level, file=log_file)
    return logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class SyncContext:
    """
    Wraps one sweep (queue reaper, outbox retry) in a correlation id.

    Every log line emitted inside the block carries ``operation_id`` and
    ``operation_type``; start, finish and duration are logged on the way
    in and out. Exceptions propagate.
    """

    def __init__(self, operation_type: str, operation_id: Optional[str] = None):
        self.operation_type = operation_type
        self.operation_id = operation_id or uuid.uuid4().hex[:8]
        self.logger = get_logger("ordersync.sweeps")
        self._started = None
        self._tokens = None

    def __enter__(self):
        self._tokens = structlog.contextvars.bind_contextvars(
            operation_type=self.operation_type,
            operation_id=self.operation_id,
        )
        self._started = time.monotonic()
        self.logger.info("Sweep started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = round(time.monotonic() - self._started, 3)
        try:
            if exc_type is None:
                self.logger.info("Sweep finished", duration_seconds=duration)
            else:
                self.logger.error("Sweep aborted", duration_seconds=duration,
                                  error_type=exc_type.__name__, error=str(exc_val))
        finally:
            structlog.contextvars.reset_contextvars(**self._tokens)
        return False
