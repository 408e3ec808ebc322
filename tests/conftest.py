"""
Pytest configuration: make sure `import tandem` works regardless of
where pytest is invoked, and provide the shared fixtures.

It prepends the project root (one directory above *tests/*) to
``sys.path`` **before** any tests are collected.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# /path/to/project/tests -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tandem.events import RecordingNotifier  # noqa: E402
from tandem.lifecycle import PartnershipLifecycle  # noqa: E402
from tandem.store import InMemoryPartnershipStore  # noqa: E402

T0 = datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemoryPartnershipStore()


@pytest.fixture
def lifecycle(store, notifier, clock):
    return PartnershipLifecycle(store, notifier, clock=clock)
