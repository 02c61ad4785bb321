"""Core utilities: settings, logging and the shared Redis client."""

from ratewarden.core.config import Settings, settings
from ratewarden.core.logging import get_log_context, get_logger, setup_logging
from ratewarden.core.redis import close_redis, get_redis, reset_redis

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "get_redis",
    "close_redis",
    "reset_redis",
]
