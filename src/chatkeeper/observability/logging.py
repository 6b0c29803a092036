"""structlog configuration for the service process."""

import logging

import structlog

_json_output = False


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure structlog with a level filter and console or JSON output."""
    global _json_output
    _json_output = json
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )


def on_config_updated(key: str, value) -> None:
    """Config subscriber: re-apply a hot-updated log level."""
    if key == "logging.level":
        configure_logging(level=value, json=_json_output)
