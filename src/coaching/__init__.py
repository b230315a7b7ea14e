"""Coaching conversation core: transcript, completion extraction, transport, controller."""

from __future__ import annotations

from .controller import (
    ConversationBusy,
    ConversationController,
    ConversationNotOpen,
    ConversationState,
    TurnOutcome,
    new_session_id,
)
from .extractor import ParseResult, StructuredResult, extract_result, parse_result
from .transcript import Message, Transcript, TranscriptClosed
from .transport import ErrorKind, GeminiTransport, ProxyTransport, Transport, TransportError, create_transport

__all__ = [
    "ConversationBusy",
    "ConversationController",
    "ConversationNotOpen",
    "ConversationState",
    "ErrorKind",
    "GeminiTransport",
    "Message",
    "ParseResult",
    "ProxyTransport",
    "StructuredResult",
    "Transcript",
    "TranscriptClosed",
    "Transport",
    "TransportError",
    "TurnOutcome",
    "create_transport",
    "extract_result",
    "new_session_id",
    "parse_result",
]
