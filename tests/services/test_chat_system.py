"""Tests for the ChatSystem send pipeline and session lifecycle."""

import asyncio

import pytest

from sessionstream.errors import ERROR_REGISTRY, SessionNotFoundError
from sessionstream.models.session import MessageType, Session, SessionStatus
from sessionstream.services.chat_system import (
    PROCESSING_NOTICE,
    ChatSystem,
    SendStatus,
    uses_interaction_route,
)
from sessionstream.services.retry import RetryPolicy
from sessionstream.stream.normalizer import ChunkNormalizer
from tests.helpers import FakeChatBackend, canonical_frame, sse_body


def _system(backend, sleep=None, **kwargs) -> ChatSystem:
    if sleep is not None:
        kwargs["sleep"] = sleep
    return ChatSystem(backend, **kwargs)


def _welcome_reply(*texts: str) -> bytes:
    frames = [canonical_frame(t, "WelcomeAgent") for t in texts]
    frames.append(canonical_frame(None, "WelcomeAgent", done=True))
    return sse_body(*frames)


class TestInteractionRoute:
    @pytest.mark.parametrize(
        "options,expected",
        [
            (None, False),
            ({}, False),
            ({"force_agent": "CodingAgent"}, False),
            ({"test_mode": True, "option": "a"}, False),
            ({"context": {"page": 1}}, True),
            ({"option": {"id": "1"}}, True),
        ],
    )
    def test_routing(self, options, expected):
        assert uses_interaction_route(options) is expected


class TestSessionLifecycle:
    """create/load/select/delete/clear."""

    @pytest.mark.asyncio
    async def test_create_session_schedules_sync(self):
        backend = FakeChatBackend(session_id="sess-new")
        system = _system(backend)
        session = await system.create_session()
        await system.drain()
        assert session.id == "sess-new"
        assert system.current_session is session
        assert [sid for sid, _ in backend.synced] == ["sess-new"]
        assert backend.synced[0][1]["conversationHistory"] == []

    @pytest.mark.asyncio
    async def test_create_session_falls_back_to_local_id(self):
        backend = FakeChatBackend()
        backend.create_error = RuntimeError("offline")
        system = _system(backend)
        session = await system.create_session()
        assert session.id.startswith("session-")
        assert system.current_error == "offline"
        await system.drain()

    @pytest.mark.asyncio
    async def test_create_session_reuses_known_id(self):
        system = _system(FakeChatBackend(session_id="same"))
        first = await system.create_session()
        second = await system.create_session()
        assert first is second
        assert len(system.sessions) == 1
        await system.drain()

    @pytest.mark.asyncio
    async def test_load_sessions_selects_latest_and_migrates(self):
        older = Session.new("old").snapshot()
        older["metadata"]["lastActive"] = "2024-01-01T00:00:00Z"
        newer = Session.new("new").snapshot()
        newer["metadata"]["lastActive"] = "2024-06-01T00:00:00Z"
        newer["conversationHistory"] = [
            {"id": "m1", "type": "user_message", "agent": "user", "content": "hi"},
            {"id": "m2", "type": "agent_response", "agent": "WelcomeAgent", "content": "hello"},
        ]
        backend = FakeChatBackend(sessions=[older, {"broken": True}, newer])
        system = _system(backend)

        loaded = await system.load_sessions()

        assert [s.id for s in loaded] == ["old", "new"]
        assert system.current_session_id == "new"
        assert system.current_session.metadata.agent_histories["welcomeHistory"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    @pytest.mark.asyncio
    async def test_load_sessions_keeps_local_copy(self):
        backend = FakeChatBackend(session_id="s1", sessions=[Session.new("s1").snapshot()])
        system = _system(backend)
        local = await system.create_session()
        local.title = "Local"
        loaded = await system.load_sessions()
        assert loaded[0] is local
        assert system.sessions["s1"].title == "Local"
        await system.drain()

    def test_get_unknown_session_raises(self):
        system = _system(FakeChatBackend())
        with pytest.raises(SessionNotFoundError) as exc_info:
            system.get_session("missing")
        assert exc_info.value.code == "E-4002"

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        system = _system(FakeChatBackend(session_id="s1"))
        await system.create_session()
        system.clear_chat()
        assert system.current_session is None
        assert "s1" in system.sessions
        assert system.delete_session("s1") is True
        assert system.delete_session("s1") is False
        await system.drain()

    def test_update_title(self):
        system = _system(FakeChatBackend())
        system.sessions["s1"] = Session.new("s1")
        assert system.update_session_title("s1", "Trip plans") is True
        assert system.sessions["s1"].title == "Trip plans"
        assert system.sessions["s1"].title_generated_at is not None
        assert system.update_session_title("nope", "x") is False


class TestSendMessage:
    """The streaming send pipeline."""

    @pytest.mark.asyncio
    async def test_send_creates_session_and_reconciles_reply(self):
        backend = FakeChatBackend([_welcome_reply("Hello", "Hello there", "Hello there!")])
        system = _system(backend)

        result = await system.send_message("hi")
        await system.drain()

        assert result.status == SendStatus.SENT
        assert result.attempts == 1
        history = system.current_session.conversation_history
        assert [m.type for m in history] == [MessageType.USER_MESSAGE, MessageType.AGENT_RESPONSE]
        assert history[0].content == "hi"
        assert history[1].content == "Hello there!"
        assert history[1].metadata.streaming is False
        assert system.current_session.metadata.metrics.user_interactions == 1

    @pytest.mark.asyncio
    async def test_rechunked_transport_gives_same_history(self):
        body = sse_body(
            canonical_frame("import ", "CodingAgent"),
            canonical_frame("React", "CodingAgent"),
            canonical_frame(" from 'react'", "CodingAgent", done=True),
        )
        contents = []
        for chunk_size in (0, 1, 5, 17):
            system = _system(FakeChatBackend([body], chunk_size=chunk_size))
            await system.send_message("build it")
            await system.drain()
            contents.append([m.content for m in system.current_session.conversation_history])
        assert all(c == ["build it", "import React from 'react'"] for c in contents)

    @pytest.mark.asyncio
    async def test_done_syncs_once_without_turn_end(self):
        backend = FakeChatBackend([_welcome_reply("Hi")], session_id="s1")
        system = _system(backend)
        await system.send_message("hi")
        await system.drain()
        # One sync on creation, one on done.
        assert len(backend.synced) == 2
        assert len(backend.synced[1][1]["conversationHistory"]) == 2

    @pytest.mark.asyncio
    async def test_turn_end_sync_when_stream_has_no_done(self):
        backend = FakeChatBackend([sse_body(canonical_frame("partial", "CodingAgent"))])
        system = _system(backend)
        await system.send_message("hi")
        await system.drain()
        assert len(backend.synced) == 2
        assert system.current_session.streaming_messages() == []

    @pytest.mark.asyncio
    async def test_thinking_frames_never_shown(self):
        body = sse_body(
            canonical_frame("let me think", "WelcomeAgent", intent="thinking"),
            canonical_frame("Answer", "WelcomeAgent", done=True),
        )
        system = _system(FakeChatBackend([body]))
        await system.send_message("q")
        contents = [m.content for m in system.current_session.conversation_history]
        assert contents == ["q", "Answer"]
        await system.drain()

    @pytest.mark.asyncio
    async def test_empty_stream_adds_processing_notice(self):
        system = _system(FakeChatBackend([sse_body(canonical_frame(None, done=True))]))
        await system.send_message("hi")
        last = system.current_session.conversation_history[-1]
        assert last.type == MessageType.SYSTEM_EVENT
        assert last.content == PROCESSING_NOTICE
        await system.drain()

    @pytest.mark.asyncio
    async def test_json_acknowledged_interaction_has_no_notice(self):
        system = _system(FakeChatBackend([b""]))
        await system.send_message("Yes", {"option": {"id": "1"}})
        history = system.current_session.conversation_history
        assert [m.type for m in history] == [MessageType.USER_MESSAGE]
        await system.drain()

    @pytest.mark.asyncio
    async def test_interaction_route_payload(self):
        backend = FakeChatBackend([_welcome_reply("Noted")], session_id="s1")
        system = _system(backend)
        await system.send_message("Yes", {"option": {"id": "1"}})
        kind, session_id, payload = backend.stream_calls[0]
        assert kind == "interaction"
        assert session_id == "s1"
        assert payload == {"option": {"id": "1"}, "message": "Yes"}
        user = system.current_session.conversation_history[0]
        assert user.metadata.option == {"option": {"id": "1"}}
        await system.drain()

    @pytest.mark.asyncio
    async def test_force_agent_uses_chat_route(self):
        backend = FakeChatBackend([_welcome_reply("ok")])
        system = _system(backend)
        await system.send_message("go", {"force_agent": "CodingAgent", "context": {"x": 1}})
        kind, _, payload = backend.stream_calls[0]
        assert kind == "stream"
        assert payload["forceAgent"] == "CodingAgent"
        assert payload["context"] == {"x": 1}
        await system.drain()

    @pytest.mark.asyncio
    async def test_abandoned_session_is_replaced(self):
        backend = FakeChatBackend([_welcome_reply("ok")], session_id="fresh")
        system = _system(backend)
        old = Session.new("old")
        old.status = SessionStatus.ABANDONED
        system.sessions["old"] = old
        system.current_session_id = "old"
        result = await system.send_message("hi")
        assert result.session_id == "fresh"
        assert old.conversation_history == []
        await system.drain()


class TestDuplicateSends:
    @pytest.mark.asyncio
    async def test_concurrent_duplicate_is_dropped(self):
        backend = FakeChatBackend([_welcome_reply("Hi")])
        backend.gate = asyncio.Event()
        system = _system(backend)
        await system.create_session()

        first = asyncio.ensure_future(system.send_message("hello"))
        await asyncio.sleep(0)
        second = await system.send_message("hello")
        backend.gate.set()
        first_result = await first
        await system.drain()

        assert second.status == SendStatus.DUPLICATE
        assert first_result.status == SendStatus.SENT
        assert len(backend.stream_calls) == 1
        users = [
            m for m in system.current_session.conversation_history
            if m.type == MessageType.USER_MESSAGE
        ]
        assert len(users) == 1

    @pytest.mark.asyncio
    async def test_double_submit_on_fresh_chat(self):
        backend = FakeChatBackend([_welcome_reply("Hi")])
        backend.gate = asyncio.Event()
        system = _system(backend)

        first = asyncio.ensure_future(system.send_message("hello"))
        second = await asyncio.ensure_future(system.send_message("hello"))
        backend.gate.set()
        first_result = await first
        await system.drain()

        assert second.status == SendStatus.DUPLICATE
        assert first_result.status == SendStatus.SENT
        assert second.session_id == first_result.session_id
        assert backend.create_calls == 1
        assert len(backend.stream_calls) == 1
        assert list(system.sessions) == ["sess-1"]

    @pytest.mark.asyncio
    async def test_sequential_identical_sends_both_go_through(self):
        backend = FakeChatBackend([_welcome_reply("Hi")])
        system = _system(backend)
        await system.send_message("hello")
        await system.send_message("hello")
        assert len(backend.stream_calls) == 2
        await system.drain()


class TestRetries:
    @pytest.mark.asyncio
    async def test_exhaustion_appends_one_apology(self, no_sleep):
        backend = FakeChatBackend([_welcome_reply("never")], failures=10)
        system = _system(backend, sleep=no_sleep)

        result = await system.send_message("hi")
        await system.drain()

        assert result.status == SendStatus.FAILED
        assert result.attempts == 4
        assert len(backend.stream_calls) == 4
        assert no_sleep.delays == [1.0, 2.0, 3.0]
        session = system.current_session
        assert session.metadata.metrics.errors_encountered == 4
        system_events = [
            m for m in session.conversation_history if m.type == MessageType.SYSTEM_EVENT
        ]
        assert len(system_events) == 1
        apology = system_events[0]
        assert apology.content == ERROR_REGISTRY["E-4001"].user_message
        assert apology.metadata.retry_count == 3
        assert "backend unavailable" in apology.metadata.error
        assert system.current_error is not None

    @pytest.mark.asyncio
    async def test_local_failure_is_not_resent(self, no_sleep):
        class BrokenNormalizer(ChunkNormalizer):
            def normalize(self, payload):
                raise RuntimeError("normalizer bug")

        backend = FakeChatBackend([_welcome_reply("Hi")])
        system = _system(backend, sleep=no_sleep, normalizer=BrokenNormalizer())

        result = await system.send_message("hi")
        await system.drain()

        assert result.status == SendStatus.FAILED
        assert result.attempts == 1
        assert len(backend.stream_calls) == 1
        assert no_sleep.delays == []
        apology = system.current_session.conversation_history[-1]
        assert apology.type == MessageType.SYSTEM_EVENT
        assert apology.metadata.retry_count == 0
        assert "normalizer bug" in apology.metadata.error

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, no_sleep):
        backend = FakeChatBackend([_welcome_reply("ok")], failures=1)
        system = _system(backend, sleep=no_sleep)
        result = await system.send_message("hi")
        await system.drain()
        assert result.status == SendStatus.SENT
        assert result.attempts == 2
        assert no_sleep.delays == [1.0]
        history = system.current_session.conversation_history
        assert [m.content for m in history] == ["hi", "ok"]
        assert system.current_error is None

    @pytest.mark.asyncio
    async def test_custom_policy(self, no_sleep):
        backend = FakeChatBackend([b""], failures=10)
        system = _system(backend, sleep=no_sleep, retry_policy=RetryPolicy(max_retries=1))
        result = await system.send_message("hi")
        assert result.attempts == 2
        apology = system.current_session.conversation_history[-1]
        assert apology.metadata.retry_count == 1
        await system.drain()

    @pytest.mark.asyncio
    async def test_retry_current_operation_resends_last_user_message(self, no_sleep):
        backend = FakeChatBackend([_welcome_reply("ok")], failures=4)
        system = _system(backend, sleep=no_sleep)
        await system.send_message("please")
        assert system.current_error is not None

        result = await system.retry_current_operation()
        await system.drain()

        assert result.status == SendStatus.SENT
        assert backend.stream_calls[-1][2]["message"] == "please"
        assert system.current_error is None

    @pytest.mark.asyncio
    async def test_retry_current_operation_without_error(self):
        system = _system(FakeChatBackend())
        assert await system.retry_current_operation() is None


class TestSessionRecovery:
    @pytest.mark.asyncio
    async def test_recovery_renames_session(self):
        backend = FakeChatBackend([_welcome_reply("x")], session_id="old")
        system = _system(backend)
        session = await system.create_session()

        result = await system.send_message(
            "", {"type": "session_recovered", "new_session_id": "new"}
        )
        await system.drain()

        assert result.status == SendStatus.RECOVERED
        assert session.id == "new"
        assert system.current_session_id == "new"
        assert "old" not in system.sessions
        assert backend.stream_calls == []
        assert session.conversation_history == []

    @pytest.mark.asyncio
    async def test_recovery_with_regenerate(self, no_sleep):
        backend = FakeChatBackend([_welcome_reply("again")], session_id="old")
        system = _system(backend, sleep=no_sleep)
        await system.create_session()

        await system.send_message(
            "",
            {
                "type": "session_recovered",
                "new_session_id": "new",
                "needs_regenerate": True,
                "message_id": "m-9",
            },
        )
        await system.drain()

        assert no_sleep.delays == [0.1]
        kind, session_id, payload = backend.stream_calls[0]
        assert kind == "interaction"
        assert session_id == "new"
        assert payload == {"type": "regenerate", "message_id": "m-9", "message": ""}


class TestTriggersThroughSend:
    @pytest.mark.asyncio
    async def test_title_generated_after_third_message(self):
        backend = FakeChatBackend([_welcome_reply("one"), _welcome_reply("two")])
        system = _system(backend)
        await system.send_message("first")
        await system.drain()
        assert backend.title_calls == []

        await system.send_message("second")
        await system.drain()

        assert len(backend.title_calls) == 1
        assert system.current_session.title == "Portfolio chat"

    @pytest.mark.asyncio
    async def test_ready_to_generate_requests_code_mode(self):
        handed_off = []
        switches = []
        body = sse_body(canonical_frame("Ready!", "WelcomeAgent", done=True, readyToGenerate=True))
        system = _system(
            FakeChatBackend([body], session_id="s1"),
            on_ready_to_generate=handed_off.append,
            on_request_mode_switch=lambda sid, mode: switches.append((sid, mode)),
        )
        await system.send_message("go")
        await system.drain()
        assert [s.id for s in handed_off] == ["s1"]
        assert switches == [("s1", "code")]

    @pytest.mark.asyncio
    async def test_message_update_listener(self):
        seen = []
        system = _system(
            FakeChatBackend([_welcome_reply("a", "ab")]),
            on_message_update=lambda session, outcome: seen.append(outcome.content_changed),
        )
        await system.send_message("hi")
        await system.drain()
        assert seen[:2] == [True, True]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_send(self):
        def explode(session, outcome):
            raise RuntimeError("render failed")

        system = _system(FakeChatBackend([_welcome_reply("fine")]), on_message_update=explode)
        result = await system.send_message("hi")
        await system.drain()
        assert result.status == SendStatus.SENT
        assert system.current_session.conversation_history[-1].content == "fine"


class TestFrameTolerance:
    """Frames the backend gets slightly wrong still reconcile."""

    @pytest.mark.asyncio
    async def test_numeric_ids_and_agent_names(self, no_sleep):
        body = sse_body(
            {
                "immediate_display": {"reply": "Hi", "agent_name": 7},
                "system_state": {"done": True, "metadata": {"message_id": 42}},
            }
        )
        backend = FakeChatBackend([body])
        system = _system(backend, sleep=no_sleep)

        result = await system.send_message("hello")
        await system.drain()

        assert result.status == SendStatus.SENT
        assert result.attempts == 1
        assert len(backend.stream_calls) == 1
        reply = system.current_session.conversation_history[-1]
        assert reply.content == "Hi"
        assert reply.agent == "7"
        assert reply.metadata.stream_message_id == "42"
        assert not reply.is_streaming

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [0, 3])
    async def test_malformed_frame_before_valid_frame(self, chunk_size):
        body = sse_body("{not json", canonical_frame("Hello", "WelcomeAgent", done=True))
        backend = FakeChatBackend([body], chunk_size=chunk_size)
        system = _system(backend)

        result = await system.send_message("hi")
        await system.drain()

        assert result.status == SendStatus.SENT
        history = system.current_session.conversation_history
        assert [m.content for m in history] == ["hi", "{not json", "Hello"]
        assert history[1].metadata.parse_error is True
        assert history[2].agent == "WelcomeAgent"
        assert history[2].metadata.parse_error is False
        assert system.current_session.streaming_messages() == []


class TestShareSession:
    @pytest.mark.asyncio
    async def test_posts_link_request(self):
        backend = FakeChatBackend([_welcome_reply("Hi")], session_id="sess-abcdef123456")
        system = _system(backend)
        await system.send_message("hello")
        await system.drain()

        result = await system.share_session("sess-abcdef123456")

        assert result == {"shareUrl": "https://share.test/abc"}
        request = backend.shared[0]
        assert request["type"] == "link"
        assert request["pageId"] == "sess-abcdef123456"
        assert request["pageTitle"] == "Session 123456"
        assert request["config"]["title"] == "Session 123456"
        assert request["config"]["allowedViewers"] == []
        assert [m["content"] for m in request["conversationHistory"]] == ["hello", "Hi"]
        assert request["pageContent"] == request["conversationHistory"]

    @pytest.mark.asyncio
    async def test_uses_existing_title(self):
        backend = FakeChatBackend(session_id="s1")
        system = _system(backend)
        session = await system.create_session()
        session.title = "Trip plans"
        await system.share_session("s1")
        assert backend.shared[0]["pageTitle"] == "Trip plans"
        await system.drain()

    @pytest.mark.asyncio
    async def test_unknown_session(self):
        system = _system(FakeChatBackend())
        with pytest.raises(SessionNotFoundError):
            await system.share_session("missing")
