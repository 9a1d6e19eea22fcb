"""Logging setup for the relay.

Modules log through ``get_logger(__name__)`` and attach request and rate
limit context with ``extra=get_log_context(...)``. ``setup_logging``
installs one of three output formats:

- ``text``: one plain line per record
- ``structured``: the plain line followed by the request/rate limit context
- ``json``: one JSON object per line, context grouped by concern
"""

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from relay.app.core.config import Settings, settings as default_settings

LOGGER_NAME = "relay"

REQUEST_FIELDS = ("request_id", "method", "path", "status_code")
RATE_LIMIT_FIELDS = ("client_id", "category", "tool_name")
CONTEXT_FIELDS = REQUEST_FIELDS + RATE_LIMIT_FIELDS

# Placeholder the filter puts in unset context fields
UNSET = "-"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT
    + " [request_id=%(request_id)s client_id=%(client_id)s"
    + " category=%(category)s tool=%(tool_name)s]"
)

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _collect(record: logging.LogRecord, fields: Tuple[str, ...]) -> Dict[str, Any]:
    values = {}
    for name in fields:
        value = getattr(record, name, None)
        if value is not None and value != UNSET:
            values[name] = value
    return values


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON.

    Request fields go under ``request``, rate limit fields under
    ``rate_limit``; any other ``extra=`` attribute lands in ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        request = _collect(record, REQUEST_FIELDS)
        if request:
            entry["request"] = request
        rate_limit = _collect(record, RATE_LIMIT_FIELDS)
        if rate_limit:
            entry["rate_limit"] = rate_limit

        extra = {
            key: value for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record all context attributes so format strings never fail."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if getattr(record, name, None) is None:
                setattr(record, name, UNSET)
        return True


class MaxLevelFilter(logging.Filter):
    """Pass only records below ``level``."""

    def __init__(self, level: str):
        super().__init__()
        self.level = logging.getLevelName(level)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def get_logging_config(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Build a ``logging.config.dictConfig`` mapping from settings.

    Records below ERROR go to stdout, ERROR and above to stderr, both in
    the configured format.
    """
    settings = settings or default_settings
    level = settings.log_level.upper()
    formatter = settings.log_format.lower()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": ContextFilter},
            "below_error": {"()": MaxLevelFilter, "level": "ERROR"},
        },
        "formatters": {
            "text": {"format": TEXT_FORMAT},
            "structured": {"format": STRUCTURED_FORMAT},
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "level": level,
                "formatter": formatter,
                "filters": ["context", "below_error"],
            },
            "stderr": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "level": "ERROR",
                "formatter": formatter,
                "filters": ["context"],
            },
        },
        "loggers": {
            LOGGER_NAME: {"level": level, "handlers": ["stdout", "stderr"], "propagate": False},
            "uvicorn": {"level": level, "handlers": ["stdout", "stderr"], "propagate": False},
        },
        "root": {"level": "WARNING", "handlers": ["stdout", "stderr"]},
    }


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(get_logging_config(settings))
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    client_id: Optional[str] = None,
    category: Optional[str] = None,
    tool_name: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, leaving out unset values.

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(client_id="1.2.3.4", category="webhook")
        ... )
    """
    fields = dict(
        request_id=request_id,
        client_id=client_id,
        category=category,
        tool_name=tool_name,
        **extra,
    )
    return {key: value for key, value in fields.items() if value is not None}
