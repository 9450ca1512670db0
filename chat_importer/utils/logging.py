"""
Logging module for the chat import executor
"""

import json
import logging
import os
from typing import Any, Optional

from chat_importer.constants import RUN_LOG_FILE

LOGGER_NAME = "chat_importer"

_STANDARD_RECORD_ATTRS = frozenset(
    (
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "id",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    )
)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        # Context passed through log_with_context ends up as record attributes
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                data[key] = value
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class EnhancedFormatter(logging.Formatter):
    """
    Formatter that switches to a more detailed layout in verbose mode and
    can append the job context carried by a record.
    """

    def __init__(
        self,
        fmt=None,
        datefmt=None,
        style="%",
        verbose=False,
        include_context=False,
    ):
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - %(message)s"

        super().__init__(fmt, datefmt, style)
        self.include_context = include_context

    def format(self, record):
        result = super().format(record)

        if self.include_context:
            job_id = getattr(record, "job_id", None)
            if job_id:
                result += f" [job={job_id}]"
            reason_code = getattr(record, "reason_code", None)
            if reason_code:
                result += f" [reason={reason_code}]"

        return result


def setup_run_log_file(output_dir: str, json_logs: bool = False) -> logging.FileHandler:
    """
    Set up a file handler that records every log line of a run at DEBUG level.

    Args:
        output_dir: Directory the log file is written to (normally the plan directory)
        json_logs: If True, write one JSON object per line instead of text

    Returns:
        The file handler for the run log
    """
    os.makedirs(output_dir, exist_ok=True)
    log_file = os.path.join(output_dir, RUN_LOG_FILE)

    # Appending keeps the history of earlier, interrupted runs
    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    if json_logs:
        file_handler.setFormatter(JsonFormatter())
    else:
        file_handler.setFormatter(
            EnhancedFormatter(
                "%(asctime)s - %(levelname)s - %(message)s", include_context=True
            )
        )

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    logger.info(f"Run log file: {log_file}")
    return file_handler


def setup_logger(
    verbose: bool = False,
    output_dir: Optional[str] = None,
    json_logs: bool = False,
) -> logging.Logger:
    """
    Set up and return the package logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        output_dir: Optional directory for the run log file
        json_logs: If True, the run log file is written as JSON lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(EnhancedFormatter(verbose=verbose))
    logger.addHandler(console_handler)

    if output_dir:
        setup_run_log_file(output_dir, json_logs)

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record
    """
    exc_info = kwargs.pop("exc_info", None)
    extras = {k: v for k, v in kwargs.items() if v is not None}

    logger = logging.getLogger(LOGGER_NAME)
    logger.log(level, message, extra=extras, exc_info=exc_info)


def get_logger() -> logging.Logger:
    """Get the package logger, creating it with defaults if needed."""
    importer_logger = logging.getLogger(LOGGER_NAME)
    if not importer_logger.handlers:
        importer_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        importer_logger.addHandler(handler)
    return importer_logger


logger = get_logger()
