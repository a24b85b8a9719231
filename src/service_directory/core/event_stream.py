"""Broadcast channel for service directory events.

Publishing is split in two steps:
 - ``enqueue(event)`` appends to an ordered outbox. It never blocks, so it is
   safe to call while holding another lock (the directory does this to keep
   event order equal to mutation order).
 - ``flush()`` hands outbox events to subscribers. Only one thread delivers
   at a time; a thread finding delivery busy leaves its events to the
   thread already delivering.

Every subscriber owns a bounded FIFO buffer. During delivery the stream
waits for buffer space at most ``offer_timeout`` seconds, after which the
event is dropped for that one subscriber (counted in ``Subscription.dropped``).

Two consumption styles:
 - Pull: ``subscribe()`` without a handler, then ``poll()``, ``next_event()``,
   ``drain()`` or plain iteration (ends once the stream is closed and the
   buffer is empty).
 - Push: ``subscribe(handler)`` starts a daemon dispatcher thread that calls
   the handler for each event in order. A failing handler is logged and
   recorded in ``errors``; delivery continues.

In both styles ``on_complete`` runs once, after the last buffered event has
been consumed from a closed stream.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from itertools import count
from threading import Condition, Lock, RLock, Thread
from time import monotonic
from typing import Callable, Deque, Iterator, List, Optional, Tuple
import logging

from ..config import settings
from .events import ServiceEvent

__all__ = [
    "EventHandler",
    "EventStream",
    "Subscription",
    "TraceEntry",
]

_logger = logging.getLogger(__name__)

_subscriber_ids = count(1)

EventHandler = Callable[[ServiceEvent], None]


@dataclass(frozen=True)
class TraceEntry:
    """One delivered event as seen by the stream.

    ``sequence`` numbers events in outbox order; ``accepted`` and ``dropped``
    count the subscribers that took or missed the event.
    """

    sequence: int
    kind: str
    summary: str
    accepted: int
    dropped: int


class Subscription:
    """Handle for one subscriber of an ``EventStream``.

    Thread-safety: the buffer is guarded by a condition variable shared by
    the stream (waiting for space) and the consumer (waiting for events).
    """

    def __init__(
        self,
        stream: "EventStream",
        *,
        capacity: int,
        handler: Optional[EventHandler] = None,
        on_complete: Optional[Callable[[], None]] = None,
        name: str | None = None,
    ) -> None:
        self._stream = stream
        self._capacity = max(1, capacity)
        self._cond = Condition()
        self._buffer: Deque[ServiceEvent] = deque()
        self._completed = False
        self._cancelled = False
        self._finished = False  # on_complete already ran (or never will)
        self._dropped = 0
        self._delivered = 0
        self._errors: List[Tuple[ServiceEvent, BaseException]] = []
        self._handler = handler
        self._on_complete = on_complete
        self._thread: Optional[Thread] = None
        self.name = name or f"subscriber-{next(_subscriber_ids)}"

    # ------------------------------------------------------------------
    # Stream side
    # ------------------------------------------------------------------
    def _offer(self, event: ServiceEvent, timeout: float) -> bool:
        deadline: float | None = None
        with self._cond:
            while True:
                if self._cancelled or self._completed:
                    return False
                if len(self._buffer) < self._capacity:
                    self._buffer.append(event)
                    self._cond.notify_all()
                    return True
                if deadline is None:
                    deadline = monotonic() + timeout
                remaining = deadline - monotonic()
                if remaining <= 0:
                    self._dropped += 1
                    break
                self._cond.wait(remaining)
        _logger.warning(
            "Dropped %s for subscriber %s: buffer full (%d events)", event, self.name, self._capacity
        )
        return False

    def _complete(self) -> None:
        with self._cond:
            if self._completed:
                return
            self._completed = True
            self._cond.notify_all()
        if self._handler is None:
            self._finish_if_drained()

    def _start(self) -> None:
        if self._handler is None:
            return
        self._thread = Thread(
            target=self._dispatch_loop,
            args=(self._handler,),
            name=f"service-directory-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _finish_if_drained(self) -> None:
        with self._cond:
            if self._finished or self._cancelled or not self._completed or self._buffer:
                return
            self._finished = True
        if self._on_complete is None:
            return
        try:
            self._on_complete()
        except Exception:  # noqa: BLE001
            _logger.warning("Subscriber %s completion callback failed", self.name, exc_info=True)

    # ------------------------------------------------------------------
    # Push dispatch
    # ------------------------------------------------------------------
    def _dispatch_loop(self, handler: EventHandler) -> None:
        for event in self:
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001 - one bad handler must not end delivery
                _logger.warning(
                    "Subscriber %s failed handling %s", self.name, event, exc_info=True
                )
                with self._cond:
                    self._errors.append((event, exc))
        self._finish_if_drained()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    def poll(self) -> ServiceEvent | None:
        """Return the next buffered event without blocking, or None."""
        with self._cond:
            event = self._take_locked() if self._buffer else None
        self._after_take()
        return event

    def next_event(self, timeout: float | None = None) -> ServiceEvent | None:
        """Block until an event is available.

        Returns None on timeout, or once the stream has ended and the buffer
        is empty.
        """
        deadline = None if timeout is None else monotonic() + timeout
        event: ServiceEvent | None = None
        with self._cond:
            while not self._buffer:
                if self._completed or self._cancelled:
                    break
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
            if self._buffer:
                event = self._take_locked()
        self._after_take()
        return event

    def drain(self) -> List[ServiceEvent]:
        """Remove and return every currently buffered event."""
        with self._cond:
            items = list(self._buffer)
            self._buffer.clear()
            self._delivered += len(items)
            self._cond.notify_all()
        self._after_take()
        return items

    def _take_locked(self) -> ServiceEvent:
        event = self._buffer.popleft()
        self._delivered += 1
        self._cond.notify_all()
        return event

    def _after_take(self) -> None:
        if self._handler is None:
            self._finish_if_drained()

    def __iter__(self) -> Iterator[ServiceEvent]:
        while True:
            event = self.next_event()
            if event is None:
                return
            yield event

    # ------------------------------------------------------------------
    # Control / introspection
    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Stop receiving events; anything still buffered is discarded."""
        with self._cond:
            if self._cancelled:
                return
            self._cancelled = True
            self._buffer.clear()
            self._cond.notify_all()
        self._stream._detach(self)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the dispatcher thread to finish (push mode).

        Returns True when no further handler calls will happen.
        """
        if self._thread is None:
            return self.done
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def done(self) -> bool:
        with self._cond:
            return (self._completed or self._cancelled) and not self._buffer

    @property
    def completed(self) -> bool:
        with self._cond:
            return self._completed

    @property
    def cancelled(self) -> bool:
        with self._cond:
            return self._cancelled

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._buffer)

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._dropped

    @property
    def delivered(self) -> int:
        with self._cond:
            return self._delivered

    @property
    def errors(self) -> list[tuple[ServiceEvent, BaseException]]:
        with self._cond:
            return list(self._errors)

    def __repr__(self) -> str:
        return f"Subscription(name={self.name!r}, pending={self.pending}, dropped={self.dropped})"


class EventStream:
    """Multi-subscriber broadcast of ``ServiceEvent`` values.

    Lifecycle: open -> sealed (``seal()``, no new events accepted, queued
    ones still go out) -> closed (``close()``, subscriptions completed).
    """

    def __init__(
        self,
        *,
        buffer_capacity: int | None = None,
        offer_timeout: float | None = None,
    ) -> None:
        self._lock = RLock()
        self._delivery_lock = Lock()
        self._subs: List[Subscription] = []
        self._outbox: Deque[Tuple[int, ServiceEvent]] = deque()
        self._sequence = 0
        self._sealed = False
        self._closed = False
        self._buffer_capacity = (
            settings.DEFAULT_BUFFER_CAPACITY if buffer_capacity is None else buffer_capacity
        )
        self._offer_timeout = (
            settings.DEFAULT_OFFER_TIMEOUT if offer_timeout is None else offer_timeout
        )
        if self._buffer_capacity < 1:
            raise ValueError("buffer_capacity must be >= 1")
        if self._offer_timeout < 0:
            raise ValueError("offer_timeout must be >= 0")
        # None while tracing is off
        self._traces: Optional[Deque[TraceEntry]] = None

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def subscribe(
        self,
        handler: Optional[EventHandler] = None,
        *,
        on_complete: Optional[Callable[[], None]] = None,
        capacity: int | None = None,
        name: str | None = None,
    ) -> Subscription:
        """Attach a subscriber.

        Parameters
        ----------
        handler: EventHandler | None
            Push mode callback. When omitted the caller pulls events from the
            returned subscription.
        on_complete: Callable | None
            Invoked once after the final event of a closed stream has been
            consumed.
        capacity: int | None
            Buffer size for this subscriber (defaults to the stream's).
        name: str | None
            Label used in logs and the dispatcher thread name.
        """
        sub = Subscription(
            self,
            capacity=self._buffer_capacity if capacity is None else capacity,
            handler=handler,
            on_complete=on_complete,
            name=name,
        )
        with self._lock:
            closed = self._closed
            if not closed:
                self._subs.append(sub)
        if closed:
            sub._complete()
        sub._start()
        _logger.debug("subscribe: %s (closed=%s)", sub.name, closed)
        return sub

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            for i, existing in enumerate(self._subs):
                if existing is sub:
                    self._subs.pop(i)
                    break

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def enqueue(self, event: ServiceEvent) -> bool:
        """Append ``event`` to the outbox without delivering it.

        Returns False (and drops the event) once the stream is sealed.
        """
        with self._lock:
            if self._sealed:
                return False
            self._sequence += 1
            self._outbox.append((self._sequence, event))
            return True

    def flush(self) -> None:
        """Deliver queued events unless another thread is already doing so."""
        while True:
            if not self._delivery_lock.acquire(blocking=False):
                # the current deliverer re-checks the outbox after releasing
                return
            try:
                self._deliver_pending_locked()
            finally:
                self._delivery_lock.release()
            with self._lock:
                if not self._outbox:
                    return

    def submit(self, event: ServiceEvent) -> int:
        """Enqueue and deliver ``event`` now.

        Returns the number of subscribers that accepted it (0 once sealed).
        """
        with self._delivery_lock:
            if not self.enqueue(event):
                return 0
            return self._deliver_pending_locked(track=event)

    def _deliver_pending_locked(self, track: ServiceEvent | None = None) -> int:
        tracked = 0
        while True:
            with self._lock:
                if not self._outbox:
                    return tracked
                sequence, event = self._outbox.popleft()
                subs = list(self._subs)
            accepted = sum(1 for sub in subs if sub._offer(event, self._offer_timeout))
            if event is track:
                tracked = accepted
            with self._lock:
                if self._traces is not None:
                    self._traces.append(
                        TraceEntry(
                            sequence=sequence,
                            kind=event.kind.value,
                            summary=_summarize(event),
                            accepted=accepted,
                            dropped=len(subs) - accepted,
                        )
                    )

    def seal(self) -> None:
        """Refuse further events; already queued ones are still delivered."""
        with self._lock:
            self._sealed = True

    def close(self) -> None:
        """Seal, deliver what is queued, then complete every subscription.

        Idempotent.
        """
        self.seal()
        with self._delivery_lock:
            self._deliver_pending_locked()
            with self._lock:
                if self._closed:
                    return
                self._closed = True
                subs = list(self._subs)
                self._subs.clear()
        for sub in subs:
            sub._complete()
        _logger.debug("event stream closed (%d subscribers completed)", len(subs))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def is_sealed(self) -> bool:
        with self._lock:
            return self._sealed

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    # ------------------------------------------------------------------
    # Delivery tracing (diagnostics, off by default)
    # ------------------------------------------------------------------
    def enable_tracing(self, capacity: int | None = None) -> None:
        """Start recording delivered events, keeping the newest ``capacity``.

        Calling again with a different capacity keeps the newest entries.
        """
        size = settings.DEFAULT_TRACE_CAPACITY if capacity is None else capacity
        if size < 1:
            raise ValueError("trace capacity must be >= 1")
        with self._lock:
            self._traces = deque(self._traces or (), maxlen=size)

    def disable_tracing(self) -> None:
        """Stop recording and forget recorded entries."""
        with self._lock:
            self._traces = None

    def recent_traces(self, limit: int | None = None) -> list[TraceEntry]:
        with self._lock:
            entries = list(self._traces or ())
        return entries if limit is None else entries[max(len(entries) - limit, 0):]

    @property
    def tracing_enabled(self) -> bool:
        with self._lock:
            return self._traces is not None


def _summarize(event: ServiceEvent) -> str:
    text = str(event)
    return text if len(text) <= 40 else text[:37] + "..."
