"""Typed service directory.

Independent parts of an application publish implementations of capability
interfaces here and other parts look them up by key. Nothing is wired
automatically; registration and retrieval are always explicit.

Usage pattern:
    directory = ServiceDirectory()
    directory.register(Clock, SystemClock())
    clock = directory.require_service(Clock)
    ...
    directory.close()  # closes every Closeable service once

Design notes:
- Keys are usually classes (including Protocol classes) or strings and are
  compared by equality, never structurally.
- Each key maps to an insertion-ordered list. Duplicates are allowed and a
  key whose list becomes empty is removed from the table.
- Thread-safety: one RLock guards the table. Events are enqueued while the
  lock is held, so event order always equals mutation order, and delivered
  after it is released, so a slow subscriber never holds up lookups or
  other mutators.
- Lifecycle: OPEN -> CLOSING -> CLOSED. Lookups keep working after close and
  report whatever is still registered until ``clear()`` is called.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from threading import RLock
from typing import Any, Dict, Generator, Hashable, List, Optional, Type, TypeVar, overload
import logging

from .capabilities import check_instance, check_key, is_closeable, key_display_name
from .errors import CloseFailure, DirectoryCloseError, DirectoryClosedError, ServiceNotFoundError
from .event_stream import EventStream
from .events import DirectoryClosed, DirectoryClosing, ServiceDeregistered, ServiceRegistered

T = TypeVar("T")

__all__ = ["DirectoryState", "ServiceDirectory"]

_logger = logging.getLogger(__name__)


class DirectoryState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ServiceDirectory:
    """Thread-safe registry of services grouped by capability key."""

    def __init__(
        self,
        *,
        buffer_capacity: int | None = None,
        offer_timeout: float | None = None,
    ) -> None:
        self._lock = RLock()
        self._services: Dict[Hashable, List[Any]] = {}
        self._state = DirectoryState.OPEN
        self._events = EventStream(buffer_capacity=buffer_capacity, offer_timeout=offer_timeout)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def register(self, key: Hashable, service: Any) -> None:
        """Append ``service`` to the entries for ``key``.

        Raises
        ------
        TypeError
            If key or service is None, or service lacks the ServiceType marker.
        DirectoryClosedError
            If the directory is closing or closed.
        """
        check_key(key)
        check_instance(key, service)
        with self._lock:
            if self._state is not DirectoryState.OPEN:
                raise DirectoryClosedError(
                    f"Cannot register {key_display_name(key)}: directory is {self._state.value}"
                )
            _logger.debug("register: %s -> %s", key_display_name(key), service)
            self._services.setdefault(key, []).append(service)
            self._events.enqueue(ServiceRegistered(key, service))
        self._events.flush()

    def deregister(self, key: Hashable, service: Any) -> None:
        """Remove the first entry for ``key`` that is ``service``.

        No-op (and no event) when there is no such entry.
        """
        check_key(key)
        if service is None:
            raise TypeError("service must not be None")
        with self._lock:
            self._check_not_closed("deregister", key)
            self._remove_locked(key, service)
        self._events.flush()

    def _remove_locked(self, key: Hashable, service: Any) -> None:
        bucket = self._services.get(key)
        if not bucket:
            return
        for i, existing in enumerate(bucket):
            if existing is service:
                bucket.pop(i)
                break
        else:
            return
        if not bucket:
            del self._services[key]
        _logger.debug("deregister: %s -> %s", key_display_name(key), service)
        self._events.enqueue(ServiceDeregistered(key, service))

    def deregister_all(self, key: Hashable) -> None:
        """Remove every entry for ``key``; one event per removed instance."""
        check_key(key)
        with self._lock:
            self._check_not_closed("deregister_all", key)
            removed = self._services.pop(key, None) or []
            if removed:
                _logger.debug(
                    "deregister_all: %s (%d entries)", key_display_name(key), len(removed)
                )
            for service in removed:
                self._events.enqueue(ServiceDeregistered(key, service))
        self._events.flush()

    def clear(self) -> None:
        """Remove every entry under every key.

        Unlike the other mutators this is also allowed after close, to release
        entries kept for stale lookups. Once closed the event stream refuses
        new events, so nothing is emitted then.
        """
        with self._lock:
            table = self._services
            self._services = {}
            for key, bucket in table.items():
                for service in bucket:
                    self._events.enqueue(ServiceDeregistered(key, service))
        self._events.flush()
        _logger.debug("clear: %d keys removed", len(table))

    @contextmanager
    def registered(self, key: Hashable, service: Any) -> Generator[Any, None, None]:
        """Register ``service`` for the duration of a ``with`` block.

        Example:
            with directory.registered(Clock, FakeClock()):
                ... code under test ...
        """
        self.register(key, service)
        try:
            yield service
        finally:
            with self._lock:
                if self._state is not DirectoryState.CLOSED:
                    self._remove_locked(key, service)
            self._events.flush()

    def _check_not_closed(self, operation: str, key: Hashable) -> None:
        if self._state is DirectoryState.CLOSED:
            raise DirectoryClosedError(
                f"Cannot {operation} {key_display_name(key)}: directory is closed"
            )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    @overload
    def optional_service(self, key: Type[T]) -> Optional[T]: ...

    @overload
    def optional_service(self, key: Hashable) -> Any: ...

    def optional_service(self, key):
        """First registered entry for ``key``, or None."""
        check_key(key)
        with self._lock:
            bucket = self._services.get(key)
            return bucket[0] if bucket else None

    @overload
    def require_service(self, key: Type[T]) -> T: ...

    @overload
    def require_service(self, key: Hashable) -> Any: ...

    def require_service(self, key):
        """Like ``optional_service`` but raises ``ServiceNotFoundError``."""
        service = self.optional_service(key)
        if service is None:
            raise ServiceNotFoundError(key)
        return service

    @overload
    def optional_services(self, key: Type[T]) -> List[T]: ...

    @overload
    def optional_services(self, key: Hashable) -> List[Any]: ...

    def optional_services(self, key):
        """All entries for ``key`` in registration order (empty if none)."""
        check_key(key)
        with self._lock:
            return list(self._services.get(key, ()))

    def services(self) -> List[Any]:
        """Every registered instance, grouped by key in table order."""
        with self._lock:
            return [service for bucket in self._services.values() for service in bucket]

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._services.keys())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._services

    # ------------------------------------------------------------------
    # Events / lifecycle
    # ------------------------------------------------------------------
    def events(self) -> EventStream:
        return self._events

    @property
    def state(self) -> DirectoryState:
        with self._lock:
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state is DirectoryState.CLOSED

    def close(self) -> None:
        """Shut the directory down.

        Only the first call does any work. Every distinct Closeable instance
        still registered is closed once, in table order. Failures do not stop
        the remaining closes; they are collected and raised together as a
        ``DirectoryCloseError`` after the directory reached CLOSED and the
        event stream ended.
        """
        with self._lock:
            if self._state is not DirectoryState.OPEN:
                return
            self._state = DirectoryState.CLOSING
            _logger.info("Service directory closing (%d services)", self._count_locked())
            self._events.enqueue(DirectoryClosing())
            snapshot = [service for bucket in self._services.values() for service in bucket]
        self._events.flush()

        failures: List[CloseFailure] = []
        seen: set[int] = set()
        for service in snapshot:
            if id(service) in seen or not is_closeable(service):
                continue
            seen.add(id(service))
            _logger.debug("close: %s", service)
            try:
                service.close()
            except Exception as exc:  # noqa: BLE001 - keep closing the rest
                _logger.warning("Closing service %r failed: %s", service, exc, exc_info=True)
                failures.append(CloseFailure.capture(service, exc))

        with self._lock:
            self._state = DirectoryState.CLOSED
            self._events.enqueue(DirectoryClosed())
            # nothing may follow DirectoryClosed, clear() included
            self._events.seal()
        self._events.close()
        _logger.info("Service directory closed (%d close failures)", len(failures))

        if failures:
            raise DirectoryCloseError(failures) from failures[0].exc

    def _count_locked(self) -> int:
        return sum(len(bucket) for bucket in self._services.values())

    def __enter__(self) -> "ServiceDirectory":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        with self._lock:
            return (
                f"ServiceDirectory(state={self._state.value}, keys={len(self._services)}, "
                f"services={self._count_locked()})"
            )
