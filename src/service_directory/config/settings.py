"""Global defaults for service directories and their event streams."""

from __future__ import annotations

import os
from typing import Final

# Per-subscriber event buffer size (events)
DEFAULT_BUFFER_CAPACITY: Final = int(os.environ.get("SERVICE_DIRECTORY_BUFFER_CAPACITY", "256"))
# Max wait for buffer space before an event is dropped for one subscriber
DEFAULT_OFFER_TIMEOUT: Final = float(os.environ.get("SERVICE_DIRECTORY_OFFER_TIMEOUT", "1.0"))  # seconds
DEFAULT_TRACE_CAPACITY: Final = int(os.environ.get("SERVICE_DIRECTORY_TRACE_CAPACITY", "50"))
