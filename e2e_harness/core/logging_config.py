"""
Logging configuration for the E2E harness.

Provides structured JSON logging with file rotation and different output formats
for development and CI environments.
"""

import functools
import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone

from .config import RunConfiguration


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name,
            "run_id": self.run_id,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "metadata"):
            log_entry["metadata"] = record.metadata

        # Context fields set through get_logger(**context)
        for attr in ["test_id", "project", "attempt", "duration", "status"]:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        message = f"[{timestamp}] {record.levelname:8} {record.name:28} | {record.getMessage()}"
        message += f" (run: {self.run_id[:8]})"

        if hasattr(record, "metadata") and record.metadata:
            metadata_str = " | ".join(f"{k}={v}" for k, v in record.metadata.items())
            message += f" | {metadata_str}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(config: RunConfiguration, run_id: str) -> logging.Logger:
    """
    Set up logging configuration based on environment and config.

    Args:
        config: Run configuration with logging settings
        run_id: Unique run identifier for log correlation

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, config.log_level)
    root_logger.setLevel(log_level)

    if config.log_format == "json":
        formatter = StructuredFormatter(run_id)
    else:
        formatter = TextFormatter(run_id)

    # Console output goes to stderr so the list reporter owns stdout
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    # File handler for non-CI environments
    if not config.is_ci_mode:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.get_log_file_path(),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    logger = logging.getLogger("e2e_harness.logging")
    logger.debug(
        "Logging configured",
        extra={
            "metadata": {
                "run_id": run_id,
                "log_level": config.log_level,
                "log_format": config.log_format,
                "ci_mode": config.is_ci_mode,
            }
        },
    )

    return root_logger


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges its context into every record's extras."""

    def process(self, msg, kwargs):
        if "extra" not in kwargs:
            kwargs["extra"] = {}
        kwargs["extra"].update(self.extra)
        return msg, kwargs


def get_logger(name: str, **context):
    """
    Get a logger with optional context.

    Args:
        name: Logger name (typically module name)
        **context: Additional context to include in log records

    Returns:
        Logger, wrapped in a ContextAdapter when context is given
    """
    logger = logging.getLogger(name)
    if context:
        return ContextAdapter(logger, context)
    return logger


def log_performance(logger, operation: str, duration: float, **metadata):
    """
    Log performance metrics for operations.

    Args:
        logger: Logger instance
        operation: Name of the operation
        duration: Duration in seconds
        **metadata: Additional metadata to include
    """
    logger.info(
        f"Performance: {operation} completed in {duration:.2f}s",
        extra={"metadata": {"operation": operation, "duration": duration, **metadata}},
    )


def timed(operation_name: str):
    """
    Decorator that logs the duration of an async operation.

    Args:
        operation_name: Name of the operation being measured
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(f"{func.__module__}.{func.__name__}")
            start_time = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name} failed",
                    extra={
                        "metadata": {
                            "operation": operation_name,
                            "duration": time.monotonic() - start_time,
                            "success": False,
                            "error": str(e),
                        }
                    },
                )
                raise
            log_performance(logger, operation_name, time.monotonic() - start_time)
            return result

        return wrapper

    return decorator
