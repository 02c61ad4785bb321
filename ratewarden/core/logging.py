"""Logging helpers for ratewarden.

The library only obtains loggers under the ``ratewarden`` namespace.
Applications that want ready-made output call ``setup_logging()``, which
configures that namespace alone and leaves the root logger to the host
application.
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ratewarden.core.config import settings

PACKAGE_LOGGER = "ratewarden"

# Throttle context carried on records via ``extra=get_log_context(...)``
CONTEXT_FIELDS = (
    "request_id",
    "throttle_name",
    "identity",
    "n_tokens",
    "retry_in_seconds",
)

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Throttle context fields are promoted to the top level when set; other
    ``extra`` values are grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.pathname}:{record.lineno}",
        }

        extra = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if key in CONTEXT_FIELDS:
                if value is not None:
                    payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the throttle context attributes, None when unset.

    Lets format strings such as ``%(throttle_name)s`` work for records
    logged without context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a dictConfig for the ``ratewarden`` logger namespace.

    Args:
        level: Log level, defaults to ``settings.log_level``
        log_format: ``text``, ``structured`` or ``json``, defaults to
            ``settings.log_format``
    """
    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    formatters: Dict[str, Dict[str, Any]] = {
        "text": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
        "structured": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s "
                      "[throttle=%(throttle_name)s identity=%(identity)s]"
        },
        "json": {"()": JSONFormatter},
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {log_format: formatters[log_format]},
        "filters": {"context": {"()": ContextFilter}},
        "handlers": {
            "ratewarden": {
                "class": "logging.StreamHandler",
                "formatter": log_format,
                "filters": ["context"],
            },
        },
        "loggers": {
            PACKAGE_LOGGER: {
                "level": level,
                "handlers": ["ratewarden"],
                "propagate": False,
            },
        },
    }


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Send ratewarden's own log records to stderr in the configured format."""
    logging.config.dictConfig(get_logging_config(level, log_format))


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    throttle_name: Optional[str] = None,
    identity: Optional[str] = None,
    request_id: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Build the ``extra=`` mapping for a log call, dropping unset fields.

    Example:
        >>> logger.warning(
        ...     "Throttle fired",
        ...     extra=get_log_context(throttle_name="logins-per-ip", retry_in_seconds=30)
        ... )
    """
    context = {
        "throttle_name": throttle_name,
        "identity": identity,
        "request_id": request_id,
        **extra,
    }
    return {k: v for k, v in context.items() if v is not None}
