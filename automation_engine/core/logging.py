"""Logging configuration.

JSON via python-json-logger for production (stdout is collected by the
platform), human-readable text for local development.
"""

import logging

from automation_engine.core.config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """Set up root logging from ``LOG_FORMAT`` / ``LOG_LEVEL``.

    Args:
        settings: Settings to read; defaults to :func:`get_settings`.
    """
    settings = settings or get_settings()
    log_level = settings.LOG_LEVEL.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "logger",
            },
            static_fields={"app": "automation-engine"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)

    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(root_logger.level, logging.WARNING))
