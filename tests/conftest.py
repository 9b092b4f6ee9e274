"""Root-level pytest fixtures for all tests.

Provides shared fixtures for:
- Fresh sessions
- A scripted in-memory chat backend
- A recording replacement for asyncio.sleep
"""

import pytest

from sessionstream.models.session import Session
from tests.helpers import FakeChatBackend


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def session() -> Session:
    """A fresh session at the welcome stage."""
    return Session.new("sess-test")


@pytest.fixture
def fake_backend() -> FakeChatBackend:
    """Backend with no scripted bodies; tests add what they need."""
    return FakeChatBackend()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    """Sleep replacement so retry backoff does not slow tests down."""
    return RecordingSleep()
