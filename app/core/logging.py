import logging
import logging.config

from app.core.config import settings

# Reconciliation sweeps grep this logger for orphaned or dangling records.
CONSISTENCY_LOGGER = "app.consistency"


def setup_logging(level: str | None = None) -> None:
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "level": (level or settings.LOG_LEVEL).upper(),
            "handlers": ["console"],
        },
    })


def consistency_logger() -> logging.Logger:
    return logging.getLogger(CONSISTENCY_LOGGER)
