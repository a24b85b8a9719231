import threading
import time

import pytest

from service_directory import (
    DirectoryClosed,
    DirectoryClosing,
    EventStream,
    ServiceDirectory,
    ServiceRegistered,
)
from factories import FakeService, make_fakes


def _registered(label: str) -> ServiceRegistered:
    return ServiceRegistered("key", FakeService(label))


def test_no_replay_for_late_subscribers(directory):
    f0, f1, _ = make_fakes()
    directory.register(FakeService, f0)
    sub = directory.events().subscribe()
    directory.register(FakeService, f1)
    assert [e.instance for e in sub.drain()] == [f1]


def test_multiple_subscribers_each_get_every_event(directory):
    a = directory.events().subscribe(name="a")
    b = directory.events().subscribe(name="b")
    f0, f1, f2 = make_fakes()
    for f in (f0, f1, f2):
        directory.register(FakeService, f)
    directory.close()
    assert list(a) == list(b)
    assert len(list(a)) == 0  # already consumed by the comparison above
    assert a.delivered == 5 and b.delivered == 5


def test_push_subscriber_receives_in_order():
    d = ServiceDirectory()
    received = []
    completed = threading.Event()
    sub = d.events().subscribe(received.append, on_complete=completed.set)

    fakes = make_fakes(5)
    for f in fakes:
        d.register(FakeService, f)
    d.close()

    assert sub.join(2.0)
    assert completed.is_set()
    assert [e.instance for e in received[:5]] == list(fakes)
    assert [type(e) for e in received[5:]] == [DirectoryClosing, DirectoryClosed]


def test_push_handler_errors_are_isolated():
    stream = EventStream()
    order = []

    def bad(evt):
        order.append("bad")
        raise RuntimeError("boom")

    bad_sub = stream.subscribe(bad)
    good_sub = stream.subscribe(lambda evt: order.append("good"))

    stream.submit(_registered("x"))
    stream.submit(_registered("y"))
    stream.close()

    assert bad_sub.join(2.0) and good_sub.join(2.0)
    assert order.count("bad") == 2 and order.count("good") == 2
    assert len(bad_sub.errors) == 2
    assert isinstance(bad_sub.errors[0][1], RuntimeError)
    assert good_sub.errors == []


def test_slow_subscriber_does_not_stall_producer_or_others():
    stream = EventStream(buffer_capacity=2, offer_timeout=0.05)
    slow = stream.subscribe(name="slow")  # never consumed
    fast_seen = []
    fast = stream.subscribe(fast_seen.append, name="fast", capacity=64)

    started = time.monotonic()
    for i in range(5):
        stream.submit(_registered(str(i)))
    elapsed = time.monotonic() - started
    stream.close()

    assert fast.join(2.0)
    assert len(fast_seen) == 5
    assert slow.pending == 2
    assert slow.dropped == 3
    # three drops, each bounded by the offer timeout
    assert elapsed < 2.0


def test_blocked_producer_resumes_when_consumer_catches_up():
    stream = EventStream(buffer_capacity=1, offer_timeout=5.0)
    sub = stream.subscribe()
    stream.submit(_registered("first"))

    def consume_later():
        time.sleep(0.05)
        sub.poll()

    t = threading.Thread(target=consume_later)
    t.start()
    assert stream.submit(_registered("second")) == 1
    t.join()
    assert sub.dropped == 0
    assert sub.poll().instance.label == "second"


def test_next_event_timeout_returns_none():
    stream = EventStream()
    sub = stream.subscribe()
    assert sub.next_event(timeout=0.01) is None
    assert not sub.done


def test_next_event_wakes_on_submit():
    stream = EventStream()
    sub = stream.subscribe()
    evt = _registered("late")

    t = threading.Timer(0.02, stream.submit, args=(evt,))
    t.start()
    assert sub.next_event(timeout=2.0) == evt
    t.join()


def test_buffered_events_survive_close():
    stream = EventStream()
    sub = stream.subscribe()
    stream.submit(_registered("a"))
    stream.close()
    assert sub.completed and not sub.done
    assert sub.poll() is not None
    assert sub.done
    assert sub.next_event() is None


def test_cancel_detaches_and_discards():
    stream = EventStream()
    sub = stream.subscribe()
    stream.submit(_registered("a"))
    assert stream.subscriber_count() == 1

    sub.cancel()
    assert stream.subscriber_count() == 0
    assert sub.cancelled and sub.done
    assert sub.poll() is None
    assert stream.submit(_registered("b")) == 0


def test_cancelled_push_subscriber_skips_on_complete():
    stream = EventStream()
    completions = []
    sub = stream.subscribe(lambda evt: None, on_complete=lambda: completions.append(1))
    sub.cancel()
    assert sub.join(2.0)
    stream.close()
    assert completions == []


def test_subscribe_after_close_completes_immediately():
    stream = EventStream()
    stream.close()
    pull_done = []
    pull = stream.subscribe(on_complete=lambda: pull_done.append(True))
    assert pull.done and pull_done == [True]

    push_done = threading.Event()
    push = stream.subscribe(lambda evt: None, on_complete=push_done.set)
    assert push.join(2.0)
    assert push_done.is_set()
    assert stream.subscriber_count() == 0


def test_close_is_idempotent():
    stream = EventStream()
    sub = stream.subscribe()
    stream.close()
    stream.close()
    assert stream.is_closed and sub.completed


def test_on_complete_failure_is_contained():
    stream = EventStream()

    def explode():
        raise ValueError("completion")

    stream.subscribe(on_complete=explode)
    stream.close()
    assert stream.is_closed


def test_invalid_configuration_rejected():
    with pytest.raises(ValueError):
        EventStream(buffer_capacity=0)
    with pytest.raises(ValueError):
        EventStream(offer_timeout=-1)


def test_event_string_forms():
    f = FakeService("clock")
    assert str(ServiceRegistered("clock", f)) == "[ServiceRegistered clock FakeService('clock')]"
    assert str(DirectoryClosing()) == "[DirectoryClosing]"
    assert str(DirectoryClosed()) == "[DirectoryClosed]"
    assert DirectoryClosed() == DirectoryClosed()


def test_pull_on_complete_waits_until_buffer_drained():
    stream = EventStream()
    completions = []
    sub = stream.subscribe(on_complete=lambda: completions.append(1))
    stream.submit(_registered("a"))
    stream.submit(_registered("b"))
    stream.close()

    assert completions == []
    assert sub.poll() is not None
    assert completions == []
    assert sub.poll() is not None
    assert completions == [1]
    assert sub.poll() is None
    assert completions == [1]


def test_pull_on_complete_after_iteration():
    stream = EventStream()
    completions = []
    sub = stream.subscribe(on_complete=lambda: completions.append(1))
    stream.submit(_registered("a"))
    stream.close()
    assert len(list(sub)) == 1
    assert completions == [1]


def test_enqueue_defers_delivery_until_flush():
    stream = EventStream()
    sub = stream.subscribe()
    assert stream.enqueue(_registered("a"))
    assert stream.enqueue(_registered("b"))
    assert sub.pending == 0
    stream.flush()
    assert [e.instance.label for e in sub.drain()] == ["a", "b"]


def test_sealed_stream_refuses_new_events_but_delivers_queued():
    stream = EventStream()
    sub = stream.subscribe()
    stream.enqueue(_registered("queued"))
    stream.seal()
    assert not stream.enqueue(_registered("late"))
    assert stream.submit(_registered("late")) == 0
    stream.close()
    assert [e.instance.label for e in sub] == ["queued"]
