"""Service directory events.

Four immutable variants cross the subscription boundary:

 - ``ServiceRegistered``: an instance was added under a key
 - ``ServiceDeregistered``: an instance was removed from a key
 - ``DirectoryClosing``: shutdown started, services are about to be closed
 - ``DirectoryClosed``: shutdown finished; the stream ends after this event

Timestamps come from ``perf_counter`` and are excluded from equality so two
events with the same payload compare equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any, ClassVar, Hashable, Union

from .capabilities import key_display_name

__all__ = [
    "EventKind",
    "ServiceRegistered",
    "ServiceDeregistered",
    "DirectoryClosing",
    "DirectoryClosed",
    "ServiceEvent",
]


class EventKind(str, Enum):
    REGISTERED = "registered"
    DEREGISTERED = "deregistered"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ServiceRegistered:
    """A service was registered.

    Attributes
    ----------
    key: The capability key the instance was registered under.
    instance: The registered instance.
    """

    kind: ClassVar[EventKind] = EventKind.REGISTERED

    key: Hashable
    instance: Any
    timestamp: float = field(default_factory=perf_counter, compare=False)

    def __str__(self) -> str:
        return f"[ServiceRegistered {key_display_name(self.key)} {self.instance}]"


@dataclass(frozen=True)
class ServiceDeregistered:
    """A service was deregistered.

    Attributes
    ----------
    key: The capability key the instance was registered under.
    instance: The removed instance.
    """

    kind: ClassVar[EventKind] = EventKind.DEREGISTERED

    key: Hashable
    instance: Any
    timestamp: float = field(default_factory=perf_counter, compare=False)

    def __str__(self) -> str:
        return f"[ServiceDeregistered {key_display_name(self.key)} {self.instance}]"


@dataclass(frozen=True)
class DirectoryClosing:
    kind: ClassVar[EventKind] = EventKind.CLOSING

    timestamp: float = field(default_factory=perf_counter, compare=False)

    def __str__(self) -> str:
        return "[DirectoryClosing]"


@dataclass(frozen=True)
class DirectoryClosed:
    kind: ClassVar[EventKind] = EventKind.CLOSED

    timestamp: float = field(default_factory=perf_counter, compare=False)

    def __str__(self) -> str:
        return "[DirectoryClosed]"


ServiceEvent = Union[ServiceRegistered, ServiceDeregistered, DirectoryClosing, DirectoryClosed]
