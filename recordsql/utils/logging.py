"""
Logging setup for recordsql.

The engine reports through plain `logging` loggers named after its modules.
Schema and linkage definition problems, rejected filter conditions and parse
failures go out at ERROR with `record`, `link` or `value_list` extras, so
they can be correlated with the messages handed back to the caller.
Degraded behaviour (dropped sort or output fields, a disabled timestamp
check) goes out at WARNING. Every statement a `PsycopgHandle` executes is
logged at DEBUG by `recordsql.infrastructure.handles` together with its
parameters; `sql_level` sets that logger apart from the rest, so statements
can be traced without turning on DEBUG everywhere.

When the engine runs inside a service, `json_logs=True` emits one JSON object
per line with the `extra=` fields promoted to top-level keys.

Usage:
    from recordsql.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False, sql_level="DEBUG")
    log = get_logger(__name__)
    log.error("customerId requires a value", extra={"record": "invoice"})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

STATEMENT_LOGGER = "recordsql.infrastructure.handles"

# attributes every LogRecord carries; anything else arrived through `extra=`
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _json_formatter(record: logging.LogRecord) -> str:
    """One JSON line: level, logger, message, then every `extra=` field."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS or key == "extra":
            continue
        payload[key] = value
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        payload.update(nested)
    # statement parameters may hold Decimal, date or datetime values
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    sql_level: Optional[str] = None,
) -> None:
    """
    Configure root logging for the CLI or an embedding application.

    Parameters
    ----------
    level : str
        Level name for the root logger and its handler.
    json_logs : bool
        Emit one JSON object per line instead of the console format.
    sql_level : str, optional
        Level for the statement logger. Defaults to `level`.
    """
    level = level.upper()
    sql_level = sql_level.upper() if sql_level else None
    formatter_name = "json" if json_logs else "console"
    # the handler must let statement lines through when sql_level is lower
    handler_level = level
    if sql_level is not None and logging.getLevelName(sql_level) < logging.getLevelName(level):
        handler_level = sql_level

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": JsonFormatter,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": formatter_name,
                    "level": handler_level,
                }
            },
            "loggers": {
                STATEMENT_LOGGER: {"level": sql_level or level},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["STATEMENT_LOGGER", "configure_logging", "get_logger", "JsonFormatter"]
