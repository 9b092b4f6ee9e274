"""Tests for the session and message models."""

from sessionstream.models.session import (
    Message,
    MessageType,
    Session,
    SessionStatus,
    generate_message_id,
)


class TestSessionDefaults:
    def test_new_session(self):
        session = Session.new("s1", user_id="u1")
        assert session.status == SessionStatus.ACTIVE
        assert session.title is None
        assert session.conversation_history == []
        assert session.metadata.progress.current_stage == "welcome"
        assert session.metadata.progress.total_stages == 4
        metrics = session.metadata.metrics
        assert (metrics.user_interactions, metrics.errors_encountered) == (0, 0)
        assert session.metadata.settings.auto_save is True

    def test_message_ids_are_unique_and_tagged(self):
        a = generate_message_id("user")
        b = generate_message_id("user")
        assert a != b
        assert a.startswith("msg-") and a.endswith("-user")


class TestSnapshot:
    def test_snapshot_uses_camel_case(self):
        session = Session.new("s1")
        session.conversation_history.append(
            Message(id="m1", type=MessageType.USER_MESSAGE, agent="user", content="hi")
        )
        data = session.snapshot()
        assert "conversationHistory" in data
        assert "userId" in data
        assert data["metadata"]["metrics"]["errorsEncountered"] == 0
        assert data["metadata"]["progress"]["currentStage"] == "welcome"
        message = data["conversationHistory"][0]
        assert message["type"] == "user_message"
        assert message["metadata"]["streaming"] is False
        assert isinstance(message["timestamp"], str)

    def test_restore_round_trip_keeps_unknown_keys(self):
        data = Session.new("s1").snapshot()
        data["ownerTeam"] = "growth"
        restored = Session.from_snapshot(data)
        assert restored.id == "s1"
        assert restored.snapshot()["ownerTeam"] == "growth"

    def test_restore_keeps_unknown_message_keys(self):
        data = Session.new("s1").snapshot()
        data["conversationHistory"] = [{
            "id": "m1",
            "type": "user_message",
            "agent": "user",
            "content": "hi",
            "sender": {"name": "Ada"},
            "metadata": {"streaming": False, "readReceipt": True},
        }]
        message = Session.from_snapshot(data).snapshot()["conversationHistory"][0]
        assert message["sender"] == {"name": "Ada"}
        assert message["metadata"]["readReceipt"] is True

    def test_restore_accepts_snake_case(self):
        restored = Session.from_snapshot({
            "id": "s2",
            "conversation_history": [
                {"id": "m", "type": "agent_response", "agent": "CodingAgent", "content": "x"}
            ],
        })
        assert restored.conversation_history[0].type == MessageType.AGENT_RESPONSE

    def test_streaming_messages(self):
        session = Session.new("s1")
        message = Message(id="m", type=MessageType.AGENT_RESPONSE, agent="a")
        session.conversation_history.append(message)
        assert session.streaming_messages() == []
        message.metadata.streaming = True
        assert session.streaming_messages() == [message]

    def test_touch_updates_activity(self):
        session = Session.new("s1")
        before = session.metadata.last_active
        session.touch()
        assert session.metadata.last_active >= before
        assert session.metadata.updated_at == session.metadata.last_active
