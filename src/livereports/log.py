"""structlog setup shared by the server and the CLI."""

import logging

import structlog


def configure_logging(level: str = "info", json: bool = False) -> None:
    """Configure structlog with a level filter.

    Console output in development, one JSON object per line when `json`
    is set (for log shipping in production).
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
