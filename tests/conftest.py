# Shared fixtures: a fresh directory per test plus a pull subscription
# attached before the test body runs.

import pytest

from service_directory import ServiceDirectory


@pytest.fixture
def directory():
    d = ServiceDirectory()
    yield d
    if not d.is_closed:
        try:
            d.close()
        except Exception:  # pragma: no cover - test left a crashing service
            pass


@pytest.fixture
def events(directory):
    sub = directory.events().subscribe(name="test-recorder")
    yield sub
    sub.cancel()
