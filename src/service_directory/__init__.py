"""Service directory public API.

Curated surface for applications publishing and looking up services:
 - `ServiceDirectory` registry and its lifecycle states
 - Capability contracts (`ServiceType`, `Closeable`)
 - Event variants and the `EventStream` broadcast channel
 - Error taxonomy

There is deliberately no global instance; construct a directory and pass it
to the parts of the application that need it.
"""

from __future__ import annotations

from .core.directory import ServiceDirectory, DirectoryState  # noqa: F401
from .core.capabilities import ServiceType, Closeable, key_display_name  # noqa: F401
from .core.events import (  # noqa: F401
    EventKind,
    ServiceEvent,
    ServiceRegistered,
    ServiceDeregistered,
    DirectoryClosing,
    DirectoryClosed,
)
from .core.event_stream import EventStream, Subscription, TraceEntry  # noqa: F401
from .core.errors import (  # noqa: F401
    ServiceDirectoryError,
    ServiceNotFoundError,
    DirectoryClosedError,
    DirectoryCloseError,
    CloseFailure,
)

__all__ = [
    "ServiceDirectory",
    "DirectoryState",
    "ServiceType",
    "Closeable",
    "key_display_name",
    "EventKind",
    "ServiceEvent",
    "ServiceRegistered",
    "ServiceDeregistered",
    "DirectoryClosing",
    "DirectoryClosed",
    "EventStream",
    "Subscription",
    "TraceEntry",
    "ServiceDirectoryError",
    "ServiceNotFoundError",
    "DirectoryClosedError",
    "DirectoryCloseError",
    "CloseFailure",
]

__version__ = "0.1.0"
