"""Tests for offline transcript replay."""

import pytest

from sessionstream.services.replay import replay_transcript
from tests.helpers import canonical_frame, sse_body


@pytest.mark.asyncio
async def test_replay_reconciles_and_counts():
    body = sse_body(
        canonical_frame("thinking...", intent="thinking"),
        canonical_frame("Hello", "WelcomeAgent"),
        "not json at all",
        canonical_frame("Hello!", "WelcomeAgent", done=True),
    )
    report = await replay_transcript(body)

    assert report.frames == 4
    assert report.events == 3
    assert report.skipped == 1
    contents = [m.content for m in report.session.conversation_history]
    assert contents == ["Hello!", "not json at all"]
    assert report.session.conversation_history[1].metadata.parse_error is True


@pytest.mark.asyncio
async def test_replay_is_independent_of_chunk_size():
    body = sse_body(
        canonical_frame("def ", "CodingAgent"),
        canonical_frame("main():", "CodingAgent"),
        canonical_frame(None, "CodingAgent", done=True),
    )
    results = []
    for size in (0, 1, 3, 64):
        report = await replay_transcript(body, chunk_size=size)
        results.append([m.content for m in report.session.conversation_history])
    assert results == [["def main():"]] * 4


@pytest.mark.asyncio
async def test_replay_closes_unterminated_message():
    report = await replay_transcript(sse_body(canonical_frame("cut off"), sentinel=False))
    assert report.session.streaming_messages() == []
