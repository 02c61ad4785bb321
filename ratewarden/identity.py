"""Identity derivation for throttles.

A throttle tracks one bucket per identity. The identity is the throttle
name followed by a SHA-256 digest of the serialized discriminator list, so
keys have a bounded length no matter how many or how large the
discriminators are.
"""

import dataclasses
import enum
import hashlib
import ipaddress
import json
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Sequence


def _canonicalize(value: Any) -> Any:
    """Tag values json would otherwise encode like a different type.

    json writes int and str enum members as their plain values and turns
    non-str mapping keys into strings, so ``IntEnum.X`` would collide with
    ``1`` and ``{1: v}`` with ``{"1": v}``. Containers are walked so nested
    values get the same treatment.
    """
    if isinstance(value, enum.Enum):
        return {"__enum__": f"{type(value).__qualname__}.{value.name}"}
    if isinstance(value, dict):
        if all(type(key) is str for key in value):
            return {key: _canonicalize(item) for key, item in value.items()}
        pairs = [[_canonicalize(key), _canonicalize(item)] for key, item in value.items()]
        return {"__map__": sorted(pairs, key=lambda pair: serialize([pair[0]]))}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(item) for item in value]
    return value


def _encode_value(value: Any) -> Any:
    """Map values json cannot encode onto stable, type-tagged equivalents."""
    if isinstance(value, bytes):
        return {"__bytes__": value.hex()}
    if isinstance(value, (datetime, date, time)):
        return {"__" + type(value).__name__ + "__": value.isoformat()}
    if isinstance(value, Decimal):
        return {"__decimal__": str(value)}
    if isinstance(value, uuid.UUID):
        return {"__uuid__": str(value)}
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address,
                          ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return {"__ip__": str(value)}
    if isinstance(value, (set, frozenset)):
        # Sets have no order of their own; sort by their serialized members.
        return {"__set__": sorted(serialize([item]) for item in value)}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {"__" + type(value).__qualname__ + "__": _canonicalize(dataclasses.asdict(value))}
    raise TypeError(
        f"Discriminator of type {type(value).__name__} cannot be serialized"
    )


def serialize(discriminators: Sequence[Any]) -> str:
    """Serialize a discriminator sequence into a canonical string.

    The output depends only on the values and their order, never on object
    identity or the interpreter's hash seed. Mapping keys are sorted.

    Raises:
        TypeError: If a value has no stable serialization.
    """
    return json.dumps(
        _canonicalize(list(discriminators)),
        default=_encode_value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def discriminator_digest(discriminators: Sequence[Any]) -> str:
    """Return the hex SHA-256 digest of the serialized discriminators."""
    return hashlib.sha256(serialize(discriminators).encode("utf-8")).hexdigest()


def resolve(name: str, discriminators: Sequence[Any]) -> str:
    """Resolve a throttle name and its discriminators to a storage identity.

    The name is always the first discriminator, so two throttles with
    different names never share state even with identical discriminators.

    Args:
        name: Throttle name
        discriminators: Caller-supplied values, in the order they were added

    Returns:
        Identity string of the form ``"<name>:<sha256 hex>"``
    """
    return f"{name}:{discriminator_digest([name, *discriminators])}"
