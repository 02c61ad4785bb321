"""Custom exceptions for ratewarden."""

import math


class RateWardenError(Exception):
    """Base class for ratewarden exceptions with an HTTP status code.

    Store and transport failures are not wrapped: errors raised by the Redis
    client reach the caller unchanged.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(RateWardenError):
    """Raised when a limiter or one of its routines is misconfigured."""


class MisconfiguredThrottle(ConfigurationError):
    """Raised when a throttle or bucket is built with invalid parameters.

    Raised at construction time, before the store is ever contacted.
    """

    def __init__(self, detail: str = "Throttle limit and period must be positive"):
        super().__init__(detail)


class ScriptHashMismatch(ConfigurationError):
    """Raised when the store reports a different hash for an installed routine.

    This means the Lua source shipped with this build does not match the
    identifier the build computed for it.
    """

    def __init__(self, script_name: str, expected: str, actual: str):
        self.script_name = script_name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Script {script_name!r} was installed as {actual}, expected {expected}"
        )


class Throttled(RateWardenError):
    """Raised when a throttle is triggered or its lockout is still running.

    The message may be shown to clients, so it does not mention which
    throttle fired. Use ``throttle_name`` for that.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, throttle_name: str, retry_in_seconds: float):
        self.throttle_name = throttle_name
        self.retry_in_seconds = retry_in_seconds
        super().__init__(
            f"Too many requests, please try again in {self.retry_after} seconds"
        )

    @property
    def retry_after(self) -> int:
        """Whole seconds to wait, suitable for a Retry-After header."""
        return max(1, math.ceil(self.retry_in_seconds))
