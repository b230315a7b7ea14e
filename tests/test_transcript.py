from __future__ import annotations

import pytest

from coaching.extractor import StructuredResult
from coaching.transcript import Message, Transcript, TranscriptClosed

RESULT = StructuredResult(status="complete", strengths=["A"], passion="p", career_paths=["X"], reliability_score=80)


def test_messages_get_unique_ids_and_are_immutable():
    a = Message.create("user", "hi")
    b = Message.create("user", "hi")
    assert a.id != b.id
    assert a.timestamp.tzinfo is not None
    with pytest.raises(Exception):
        a.content = "changed"


def test_unknown_role_rejected():
    with pytest.raises(ValueError):
        Message.create("tool", "x")


def test_transcript_closes_exactly_once():
    t = Transcript()
    t.append(Message.create("assistant", "Hello"))
    t.append(Message.create("user", "Hi"))
    assert t.is_open and t.user_turns == 1
    assert t.to_wire() == [{"role": "assistant", "content": "Hello"}, {"role": "user", "content": "Hi"}]

    t.close(RESULT)
    assert t.is_closed and t.result is RESULT
    with pytest.raises(TranscriptClosed):
        t.append(Message.create("user", "more"))
    with pytest.raises(TranscriptClosed):
        t.close(RESULT)
    assert len(t) == 2
