"""Capability contracts understood by the service directory.

Two independent structural checks:
 - ``ServiceType``: the registrable marker. Anything exposing
   ``description()`` may be stored.
 - ``Closeable``: optional. Instances exposing ``close()`` are closed once
   when the owning directory shuts down.

Neither requires inheritance; they are ``runtime_checkable`` protocols so a
plain class with the right methods qualifies.
"""

from __future__ import annotations

from typing import Any, Hashable, Protocol, runtime_checkable

__all__ = [
    "ServiceType",
    "Closeable",
    "is_service",
    "is_closeable",
    "key_display_name",
    "check_key",
    "check_instance",
]


@runtime_checkable
class ServiceType(Protocol):  # pragma: no cover - structural
    def description(self) -> str: ...


@runtime_checkable
class Closeable(Protocol):  # pragma: no cover - structural
    def close(self) -> None: ...


def is_service(obj: Any) -> bool:
    return isinstance(obj, ServiceType)


def is_closeable(obj: Any) -> bool:
    # Protocol checks only see that the attribute exists
    return isinstance(obj, Closeable) and callable(getattr(obj, "close", None))


def key_display_name(key: Hashable) -> str:
    """Readable name for a capability key (used in messages and logs)."""
    if isinstance(key, type):
        return f"{key.__module__}.{key.__qualname__}"
    if isinstance(key, str):
        return key
    return repr(key)


def _is_concrete_class(key: Any) -> bool:
    # Protocol classes only support isinstance() when runtime_checkable and
    # then check structure, which ServiceType already covers.
    return isinstance(key, type) and not getattr(key, "_is_protocol", False)


def check_key(key: Any) -> None:
    if key is None:
        raise TypeError("key must not be None")
    try:
        hash(key)
    except TypeError:
        raise TypeError(f"key must be hashable, got {type(key).__name__}") from None


def check_instance(key: Any, instance: Any) -> None:
    """Validate an instance before registration under ``key``."""
    if instance is None:
        raise TypeError("service must not be None")
    if not is_service(instance):
        raise TypeError(
            f"{type(instance).__name__} does not implement ServiceType (missing description())"
        )
    if _is_concrete_class(key) and not isinstance(instance, key):
        raise TypeError(
            f"Service {type(instance).__name__} is not an instance of {key_display_name(key)}"
        )
