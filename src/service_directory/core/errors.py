"""Error taxonomy for the service directory.

 - ``ServiceNotFoundError``: raised only by ``require_service`` when no entry
   exists for a key.
 - ``DirectoryClosedError``: a mutation was attempted after shutdown.
 - ``DirectoryCloseError``: one or more managed services failed to close.
   Every failure is kept as a ``CloseFailure`` record; the first one is the
   ``__cause__`` and the rest are reported as suppressed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Hashable, List, Sequence
import threading
import traceback

from .capabilities import key_display_name

__all__ = [
    "ServiceDirectoryError",
    "ServiceNotFoundError",
    "DirectoryClosedError",
    "CloseFailure",
    "DirectoryCloseError",
]


class ServiceDirectoryError(RuntimeError):
    """Base class for errors raised by the service directory."""


class ServiceNotFoundError(ServiceDirectoryError, KeyError):
    """Raised when a required capability has no registered implementation."""

    def __init__(self, key: Hashable) -> None:
        self.key = key
        self.key_name = key_display_name(key)
        super().__init__(f"No implementations available of type {self.key_name}")

    def __str__(self) -> str:
        # KeyError.__str__ would quote the message
        return str(self.args[0])


class DirectoryClosedError(ServiceDirectoryError):
    """Raised when mutating a directory that has been closed."""


@dataclass(frozen=True)
class CloseFailure:
    """Structured capture of one service failing to close.

    Attributes
    ----------
    service: Any
        The instance whose ``close()`` raised.
    exc: BaseException
        The exception raised.
    traceback_str: str
        Formatted traceback text.
    thread_name: str
        Thread that performed the close.
    """

    service: Any
    exc: BaseException
    traceback_str: str
    thread_name: str

    @classmethod
    def capture(cls, service: Any, exc: BaseException) -> "CloseFailure":
        return cls(
            service=service,
            exc=exc,
            traceback_str="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            thread_name=threading.current_thread().name,
        )

    def summary(self, max_len: int = 120) -> str:  # pragma: no cover - trivial
        msg = f"{type(self.exc).__name__}: {self.exc}"
        return msg if len(msg) <= max_len else msg[: max_len - 3] + "..."


class DirectoryCloseError(ServiceDirectoryError):
    """Raised by ``ServiceDirectory.close`` when at least one service failed.

    The directory has still reached its closed state when this is raised.
    """

    def __init__(self, failures: Sequence[CloseFailure]) -> None:
        if not failures:
            raise ValueError("DirectoryCloseError requires at least one failure")
        self.failures: List[CloseFailure] = list(failures)
        first = self.failures[0]
        message = f"Failed to close service {first.service!r}: {first.exc}"
        extra = len(self.failures) - 1
        if extra:
            message += f" ({extra} additional failure(s) suppressed)"
        super().__init__(message)

    @property
    def first(self) -> BaseException:
        return self.failures[0].exc

    @property
    def suppressed(self) -> List[BaseException]:
        return [f.exc for f in self.failures[1:]]
