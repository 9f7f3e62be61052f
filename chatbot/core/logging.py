import sys
from typing import TextIO

import structlog

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}


def configure_logging(level: str = "info", stream: TextIO | None = None) -> None:
    """Configure structlog for JSON output filtered at ``level``.

    The server logs to stdout; the CLI passes ``sys.stderr`` so log lines
    never mix with command output.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _NAME_TO_LEVEL.get(level.lower(), 20)
        ),
        logger_factory=structlog.PrintLoggerFactory(stream or sys.stdout),
    )
