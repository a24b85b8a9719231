import pytest

from service_directory import (
    CloseFailure,
    DirectoryCloseError,
    ServiceDirectoryError,
    ServiceNotFoundError,
)
from factories import FakeService


def _failure(message: str) -> CloseFailure:
    try:
        raise OSError(message)
    except OSError as exc:
        return CloseFailure.capture(FakeService(message), exc)


def test_service_not_found_names_the_key(directory):
    with pytest.raises(ServiceNotFoundError) as info:
        directory.require_service(FakeService)
    err = info.value
    assert err.key is FakeService
    assert err.key_name.endswith(".FakeService")
    assert str(err) == f"No implementations available of type {err.key_name}"


def test_service_not_found_is_lookup_error():
    err = ServiceNotFoundError("clock")
    assert isinstance(err, KeyError)
    assert isinstance(err, ServiceDirectoryError)
    assert str(err) == "No implementations available of type clock"


def test_close_error_single_failure():
    err = DirectoryCloseError([_failure("disk gone")])
    assert "disk gone" in str(err)
    assert "suppressed" not in str(err)
    assert err.suppressed == []
    assert isinstance(err.first, OSError)


def test_close_error_counts_suppressed():
    err = DirectoryCloseError([_failure("a"), _failure("b"), _failure("c")])
    assert "2 additional failure(s) suppressed" in str(err)
    assert [str(e) for e in err.suppressed] == ["b", "c"]


def test_close_error_requires_failures():
    with pytest.raises(ValueError):
        DirectoryCloseError([])


def test_close_failure_capture_keeps_traceback():
    failure = _failure("broken")
    assert "OSError: broken" in failure.traceback_str
    assert failure.thread_name
