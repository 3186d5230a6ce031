import logging
import os
from logging.config import dictConfig
from typing import Optional

# Loggers that follow LOG_LEVEL, sqlalchemy.engine is handled separately
APP_LOGGERS = ("upgrade_state", "alembic")


def configure_logging(level: Optional[str] = None, sql_level: Optional[str] = None) -> None:
    """Route upgrade_state, alembic and SQLAlchemy engine logs to one console handler.

    Explicit arguments win over LOG_LEVEL / SQL_LOG_LEVEL. SQL statements stay
    hidden at the default WARNING unless DATABASE_ECHO is set on the engine.
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    sql_log_level = (sql_level or os.environ.get("SQL_LOG_LEVEL", "WARNING")).upper()

    loggers = {name: {"handlers": ["console"], "level": log_level, "propagate": False} for name in APP_LOGGERS}
    loggers["sqlalchemy.engine"] = {"handlers": ["console"], "level": sql_log_level, "propagate": False}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                }
            },
            "loggers": loggers,
            "root": {"handlers": ["console"], "level": log_level},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (app=%s, sql=%s)", log_level, sql_log_level)


__all__ = ["APP_LOGGERS", "configure_logging"]
