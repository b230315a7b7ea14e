from __future__ import annotations

import json
from typing import List

import pytest

from coaching.controller import (
    ConversationBusy,
    ConversationController,
    ConversationNotOpen,
    ConversationState,
)
from coaching.profile import Profile
from coaching.prompts import GREETINGS, WRAP_UP
from coaching.transport import ErrorKind, TransportError

RESULT_JSON = json.dumps({
    "status": "complete",
    "strengths": ["A"],
    "passion": "p",
    "career_paths": ["X"],
    "reliability_score": 80,
})


class ScriptedTransport:
    """Returns queued replies (or raises queued errors) and records every call."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[list] = []

    def complete(self, messages, language):
        self.calls.append([dict(m) for m in messages])
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, Exception):
            raise reply
        return reply


def _started(transport, **kwargs) -> ConversationController:
    c = ConversationController(transport, "en", session_id_factory=iter(["s1", "s2", "s3"]).__next__, **kwargs)
    c.start()
    return c


def test_start_seeds_greeting_without_calling_model():
    t = ScriptedTransport()
    c = ConversationController(t)
    assert c.state is ConversationState.IDLE

    greeting = c.start()
    assert c.state is ConversationState.OPEN
    assert greeting.role == "assistant"
    assert greeting.content == GREETINGS["en"]
    assert t.calls == []
    assert c.session_id


def test_finish_gating_threshold():
    t = ScriptedTransport("q1", "q2")
    c = _started(t)

    # zero user turns
    assert not c.can_finish()
    assert c.finish().accepted is False

    # one user turn, one reply
    c.send("I like design")
    assert not c.can_finish()
    assert c.finish().accepted is False
    assert c.state is ConversationState.OPEN

    # two user turns, two replies
    c.send("And people")
    assert c.can_finish()
    assert c.result is None


def test_rejected_finish_makes_no_call():
    t = ScriptedTransport("q1")
    c = _started(t)
    c.send("hello")
    calls_before = len(t.calls)
    c.finish()
    assert len(t.calls) == calls_before


def test_result_reply_closes_transcript():
    t = ScriptedTransport("Sure, let's continue. " + RESULT_JSON)
    c = _started(t)
    outcome = c.send("That is all")

    assert outcome.closed
    assert outcome.result.strengths == ["A"]
    assert c.state is ConversationState.CLOSED
    assert c.transcript.is_closed
    # The JSON reply is not appended as dialogue.
    assert [m.role for m in c.messages] == ["assistant", "user"]


def test_dialogue_reply_is_appended():
    t = ScriptedTransport("Tell me more about your interests.")
    c = _started(t)
    outcome = c.send("I work in a school")

    assert outcome.reply.content == "Tell me more about your interests."
    assert c.state is ConversationState.OPEN
    assert [m.role for m in c.messages] == ["assistant", "user", "assistant"]


def test_transport_sees_full_transcript():
    t = ScriptedTransport("q1", "q2")
    c = _started(t)
    c.send("one")
    c.send("two")
    last = t.calls[-1]
    assert [m["role"] for m in last] == ["assistant", "user", "assistant", "user"]
    assert last[-1]["content"] == "two"


def test_auth_error_keeps_user_message_and_stays_open():
    t = ScriptedTransport(TransportError(ErrorKind.INVALID_CREDENTIAL, "401"), "recovered")
    c = _started(t)
    outcome = c.send("hello")

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.INVALID_CREDENTIAL
    assert outcome.user_message("en").startswith("Invalid API key")
    assert c.state is ConversationState.OPEN
    assert [m.role for m in c.messages] == ["assistant", "user"]

    # The user may simply send again.
    again = c.send("hello again")
    assert again.reply.content == "recovered"


def test_unexpected_exception_is_classified_unknown():
    t = ScriptedTransport(RuntimeError("boom"))
    c = _started(t)
    outcome = c.send("hello")
    assert outcome.error.kind is ErrorKind.UNKNOWN
    assert not c.busy


def test_closed_conversation_rejects_turns():
    t = ScriptedTransport(RESULT_JSON)
    c = _started(t)
    c.send("done")
    with pytest.raises(ConversationNotOpen):
        c.send("more?")
    assert c.finish().accepted is False


def test_send_before_start_is_rejected():
    c = ConversationController(ScriptedTransport())
    with pytest.raises(ConversationNotOpen):
        c.send("hi")


def test_blank_message_is_rejected():
    c = _started(ScriptedTransport())
    with pytest.raises(ValueError):
        c.send("   ")


def test_busy_controller_rejects_overlapping_send():
    holder = {}

    class ReentrantTransport:
        def complete(self, messages, language):
            with pytest.raises(ConversationBusy):
                holder["c"].send("overlap")
            return "fine"

    c = _started(ReentrantTransport())
    holder["c"] = c
    assert c.send("first").reply.content == "fine"
    assert not c.busy


def test_manual_finish_sends_hidden_wrap_up():
    t = ScriptedTransport("q1", "q2", RESULT_JSON)
    c = _started(t)
    c.send("one")
    c.send("two")
    outcome = c.finish()

    assert outcome.closed
    assert t.calls[-1][-1] == {"role": "user", "content": WRAP_UP["en"]}
    assert all(m.content != WRAP_UP["en"] for m in c.messages)


def test_finish_without_compliance_stays_open():
    t = ScriptedTransport("q1", "q2", "Before we wrap up, one more question?")
    c = _started(t)
    c.send("one")
    c.send("two")
    outcome = c.finish()
    assert outcome.reply is not None
    assert c.state is ConversationState.OPEN


def test_restart_gives_fresh_transcript_and_session():
    t = ScriptedTransport(RESULT_JSON)
    c = _started(t)
    first_session = c.session_id
    c.send("done")
    assert c.state is ConversationState.CLOSED

    c.start()
    assert c.state is ConversationState.OPEN
    assert c.session_id != first_session
    assert len(c.messages) == 1


def test_test_passphrase_closes_with_sample():
    t = ScriptedTransport()
    c = _started(t, test_passphrase="sanad-demo")
    outcome = c.send("sanad-demo")
    assert outcome.closed
    assert outcome.result.status == "complete"
    assert t.calls == []


def test_monologue_is_stripped_from_replies():
    t = ScriptedTransport("ANALYSIS: user is a designer\n\nWhat do you enjoy most?")
    c = _started(t)
    assert c.send("I design").reply.content == "What do you enjoy most?"


def test_busy_controller_rejects_overlapping_finish():
    holder = {"calls": 0}

    class ReentrantTransport:
        def complete(self, messages, language):
            holder["calls"] += 1
            if holder["calls"] == 3:
                with pytest.raises(ConversationBusy):
                    holder["c"].finish()
            return "next question?"

    c = _started(ReentrantTransport())
    holder["c"] = c
    c.send("one")
    c.send("two")
    assert c.can_finish()
    outcome = c.send("three")

    assert holder["calls"] == 3
    assert outcome.reply.content == "next question?"
    assert [m.role for m in c.messages].count("assistant") == 4
    assert not c.busy


def test_profile_is_sent_as_hidden_context_turn():
    t = ScriptedTransport("q1", "q2", RESULT_JSON)
    profile = Profile(name="Sara", current_role="Teacher", goals="Move into EdTech")
    c = _started(t, profile=profile)
    c.send("one")

    first = t.calls[-1][0]
    assert first["role"] == "user"
    assert first["content"].startswith("User Profile:")
    assert "- Current Role: Teacher" in first["content"]
    assert "- Age:" not in first["content"]
    assert all(not m.content.startswith("User Profile:") for m in c.messages)

    c.send("two")
    c.finish()
    assert t.calls[-1][0] == first
    assert t.calls[-1][-1]["content"] == WRAP_UP["en"]


def test_empty_profile_adds_no_context():
    t = ScriptedTransport("q1")
    c = _started(t, profile=Profile())
    c.send("hello")
    assert [m["role"] for m in t.calls[-1]] == ["assistant", "user"]
