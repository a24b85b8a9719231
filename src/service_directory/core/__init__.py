"""Core registry package.

Modules:
 - `capabilities`: registrable / closable contracts and key helpers
 - `events`: immutable event variants
 - `event_stream`: per-subscriber buffered broadcast channel
 - `directory`: the `ServiceDirectory` itself
 - `errors`: exception classes
"""

from .directory import ServiceDirectory, DirectoryState  # noqa: F401
from .event_stream import EventStream, Subscription  # noqa: F401

__all__ = [
    "ServiceDirectory",
    "DirectoryState",
    "EventStream",
    "Subscription",
]
