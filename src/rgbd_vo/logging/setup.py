"""
Structured logging setup for rgbd-vo.

Console output while developing on the bench, JSON lines when the odometry
runs on the vehicle and its logs are shipped off-board. Log events go to
stderr so that command output on stdout stays machine readable.
"""

import logging
import sys
from typing import Any, Optional, TextIO, Union

import numpy as np
import structlog
from structlog.types import EventDict, Processor

from rgbd_vo.config.schema import LogLevel


def configure_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    run_id: Optional[str] = None,
    json_format: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level, as ``LogLevel`` or its name.
        run_id: Optional run identifier bound to every event.
        json_format: If True, output JSON logs (vehicle mode).
        stream: Output stream, stderr when omitted.
    """
    name = level.value if isinstance(level, LogLevel) else str(level).upper()
    numeric_level = getattr(logging, name, logging.INFO)

    stream = stream or sys.stderr
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=numeric_level,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _numpy_to_builtin,
    ]
    if run_id:
        processors.insert(0, _bind_run_id(run_id))

    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _bind_run_id(run_id: str) -> Processor:
    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("run_id", run_id)
        return event_dict

    return processor


def _numpy_to_builtin(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace numpy scalars and arrays so JSON rendering accepts them."""
    for key, value in event_dict.items():
        if isinstance(value, np.generic):
            event_dict[key] = value.item()
        elif isinstance(value, np.ndarray):
            event_dict[key] = value.tolist()
    return event_dict


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, usually the calling module's ``__name__``.

    Returns:
        Bound logger instance.
    """
    return structlog.get_logger(name)
