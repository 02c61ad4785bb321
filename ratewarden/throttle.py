"""Throttle: a leaky bucket per identity with a timed lockout on overflow."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ratewarden import identity
from ratewarden.core.logging import get_log_context, get_logger
from ratewarden.engine import BucketKeys, BucketStore, get_default_store
from ratewarden.exceptions import MisconfiguredThrottle, Throttled


@dataclass(frozen=True)
class Status:
    """Lockout status of a throttle identity."""
    is_blocked: bool
    remaining_block_seconds: float

    @property
    def throttled(self) -> bool:
        return self.is_blocked


class Throttle:
    """Admission control shared by every process using the same store.

    Each identity (the throttle name plus the discriminators added to the
    instance) gets a bucket of ``limit`` tokens leaking at ``limit / period``
    tokens per second. A call that would overflow the bucket starts a
    lockout of ``block_for`` seconds, during which every check fails with
    ``Throttled`` no matter how the bucket drains. Further traffic never
    extends a running lockout.

    Nothing is cached between calls: every check is one atomic round trip
    to the store.

    Example:
        >>> t = Throttle(name="logins-per-ip", limit=5, period=60, block_for=300)
        >>> t.add_discriminator(client_ip)
        >>> await t.check()  # raises Throttled once the limit is exceeded
    """

    def __init__(
        self,
        name: str,
        limit: float,
        period: float,
        block_for: float,
        store: Optional[BucketStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize a throttle.

        Args:
            name: Throttle name, like "shpongs-per-ip"
            limit: Tokens admitted per period; also the bucket capacity
            period: Period in seconds over which ``limit`` tokens leak out
            block_for: Lockout duration in seconds once the limit is exceeded;
                0 caps the bucket without locking out
            store: Bucket store, defaults to the process-wide store
            logger: Logger to use instead of the module logger

        Raises:
            MisconfiguredThrottle: If name is empty, limit or period is not
                positive, or block_for is negative. Raised before the store
                is contacted.
        """
        if not str(name):
            raise MisconfiguredThrottle("Throttle name must not be empty")
        if limit <= 0 or period <= 0:
            raise MisconfiguredThrottle()
        if block_for < 0:
            raise MisconfiguredThrottle("Throttle block_for must not be negative")

        # Keep limit and period as given so callers can read them back
        self._name = str(name)
        self._limit = limit
        self._period = period
        self._block_for = block_for
        self._leak_rate = float(limit) / period  # tokens per second
        self._discriminators: list[Any] = []
        self._store = store
        self._logger = logger or get_logger(__name__)

    @property
    def name(self) -> str:
        return self._name

    @property
    def limit(self) -> float:
        return self._limit

    @property
    def period(self) -> float:
        return self._period

    @property
    def block_for(self) -> float:
        return self._block_for

    @property
    def leak_rate(self) -> float:
        return self._leak_rate

    @property
    def discriminators(self) -> tuple[Any, ...]:
        return tuple(self._discriminators)

    @property
    def identifier(self) -> str:
        """Storage identity for the name and discriminators added so far."""
        return identity.resolve(self._name, self._discriminators)

    def add_discriminator(self, value: Any) -> "Throttle":
        """Add a value that separates this throttle's callers from others.

        It has to be something user- or connection-specific, and several
        can be combined; their order matters:

            throttle.add_discriminator(ip_address).add_discriminator(user_id)

        Args:
            value: A JSON-serializable value, or bytes, a date or time,
                Decimal, UUID, IP address, Enum, set or dataclass. Enum
                members and non-str mapping keys keep their type, so
                ``Tier.BASIC`` and ``1`` are different discriminators.

        Raises:
            TypeError: If the value has no stable serialization
        """
        identity.serialize([value])
        self._discriminators.append(value)
        return self

    def _get_store(self) -> BucketStore:
        if self._store is None:
            self._store = get_default_store()
        return self._store

    async def check(self, n_tokens: float = 1) -> float:
        """Apply the throttle, raising ``Throttled`` if it is locked out.

        ``n_tokens=0`` is a ping: it creates or refreshes the bucket keys
        and leaks the bucket without adding pressure, and can never start a
        lockout. Pinging a throttle on every request keeps its state alive
        alongside other throttles, so a long lockout for repeat offenders
        can be chained after a short one without ever firing on its own.

        Args:
            n_tokens: Tokens to put into the bucket, for example one per row
                a request inserts. Negative values take tokens out.

        Returns:
            Estimated capacity remaining, ``limit - level``; may be fractional

        Raises:
            Throttled: If the identity is locked out
        """
        identifier = self.identifier
        self._logger.debug(
            f"Applying throttle {self._name}",
            extra=get_log_context(throttle_name=self._name, identity=identifier, n_tokens=n_tokens),
        )
        result = await self._get_store().apply(
            BucketKeys.for_identity(identifier),
            capacity=self._limit,
            leak_rate=self._leak_rate,
            block_for=self._block_for,
            n_tokens=n_tokens,
        )

        if result.blocked:
            self._logger.warning(
                f"Throttle {self._name} exceeded limit of {self._limit} in {self._period} seconds "
                f"and is blocked for the next {result.remaining_block_seconds:.2f} seconds",
                extra=get_log_context(
                    throttle_name=self._name,
                    identity=identifier,
                    retry_in_seconds=result.remaining_block_seconds,
                ),
            )
            raise Throttled(self._name, result.remaining_block_seconds)

        return self._limit - result.level

    async def status(self) -> Status:
        """Report whether the identity is locked out, without changing anything."""
        result = await self._get_store().peek(
            BucketKeys.for_identity(self.identifier),
            leak_rate=self._leak_rate,
        )
        return Status(
            is_blocked=result.blocked,
            remaining_block_seconds=result.remaining_block_seconds,
        )
