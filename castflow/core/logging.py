"""Logging configuration module."""

from logging import (
    CRITICAL,
    DEBUG,
    ERROR,
    INFO,
    WARNING,
    Handler,
    Logger,
    StreamHandler,
    getLogger,
)
from typing import cast

import structlog
from structlog import dev, processors, stdlib
from structlog.processors import JSONRenderer, TimeStamper, dict_tracebacks
from structlog.stdlib import BoundLogger

# Define log levels
LOG_LEVELS: dict[str, int] = {
    "debug": DEBUG,
    "info": INFO,
    "warning": WARNING,
    "error": ERROR,
    "critical": CRITICAL,
}


def configure_logging(
    testing: bool = False, level: str = "info", json_logs: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        testing: Whether the application is running in test mode
        level: Log level name
        json_logs: Render JSON instead of key/value output
    """
    log_level = LOG_LEVELS.get(level.lower(), INFO)

    root_logger: Logger = getLogger()
    root_logger.setLevel(log_level)

    app_logger: Logger = getLogger("castflow")
    app_logger.setLevel(log_level)

    handler: Handler = StreamHandler()
    handler.setLevel(log_level)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f"),
        dict_tracebacks,
    ]

    use_json = json_logs and not testing

    structlog.configure(
        processors=[
            stdlib.filter_by_level,
            *shared_processors,
            processors.format_exc_info,
            JSONRenderer() if use_json else processors.KeyValueRenderer(),
        ],
        context_class=dict,
        logger_factory=stdlib.LoggerFactory(),
        wrapper_class=stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = stdlib.ProcessorFormatter(
        processor=processors.JSONRenderer() if use_json else dev.ConsoleRenderer(),
        foreign_pre_chain=shared_processors,
    )
    handler.setFormatter(formatter)

    # Clear existing handlers to prevent duplicates
    root_logger.handlers = []
    app_logger.handlers = []

    root_logger.addHandler(handler)
    app_logger.addHandler(handler)


def get_logger() -> BoundLogger:
    """Get a configured logger instance.

    Returns:
        A structured logger instance.
    """
    return cast(BoundLogger, structlog.get_logger())


def get_job_logger(job_id: str | None, stage: str) -> BoundLogger:
    """Get a logger bound to a queue job.

    Args:
        job_id: Identifier of the running job, if any
        stage: Stage name handling the job

    Returns:
        Configured logger with job context
    """
    logger: BoundLogger = get_logger().bind(stage=stage)
    if job_id:
        logger = logger.bind(job_id=job_id)
    return logger
