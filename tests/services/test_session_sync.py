"""Tests for SessionSynchronizer."""

import pytest

from sessionstream.models.session import Message, MessageType
from sessionstream.services.background import BackgroundTasks
from sessionstream.services.session_sync import SessionSynchronizer
from tests.helpers import FakeChatBackend


class TestSessionSynchronizer:
    @pytest.mark.asyncio
    async def test_sync_posts_camel_case_snapshot(self, session):
        backend = FakeChatBackend()
        synchronizer = SessionSynchronizer(backend)
        assert await synchronizer.sync(session) is True
        session_id, data = backend.synced[0]
        assert session_id == "sess-test"
        assert data["id"] == "sess-test"
        assert "conversationHistory" in data
        assert data["metadata"]["metrics"]["errorsEncountered"] == 0
        assert synchronizer.completed == 1

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, session, caplog):
        backend = FakeChatBackend()
        backend.sync_error = RuntimeError("db down")
        synchronizer = SessionSynchronizer(backend)
        assert await synchronizer.sync(session) is False
        assert synchronizer.failed == 1
        assert "Sync of session sess-test failed: db down" in caplog.text

    @pytest.mark.asyncio
    async def test_schedule_snapshots_at_call_time(self, session):
        backend = FakeChatBackend()
        tasks = BackgroundTasks()
        synchronizer = SessionSynchronizer(backend, tasks)

        synchronizer.schedule(session, reason="done")
        session.conversation_history.append(
            Message(id="late", type=MessageType.USER_MESSAGE, agent="user", content="later")
        )
        await tasks.drain()

        assert backend.synced[0][1]["conversationHistory"] == []

    @pytest.mark.asyncio
    async def test_scheduled_failure_does_not_raise(self, session):
        backend = FakeChatBackend()
        backend.sync_error = RuntimeError("db down")
        tasks = BackgroundTasks()
        synchronizer = SessionSynchronizer(backend, tasks)
        synchronizer.schedule(session)
        await tasks.drain()
        assert synchronizer.failed == 1
