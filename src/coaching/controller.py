"""Turn-taking protocol for a coaching conversation.

The controller owns one transcript at a time and drives it through
``IDLE -> OPEN -> CLOSED``. Each user submission is a single, unretried call to
the transport; the reply either continues the dialogue or closes the transcript
with a :class:`~coaching.extractor.StructuredResult`.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .extractor import StructuredResult, extract_result, strip_internal_monologue
from .profile import Profile
from .prompts import GREETINGS, TEST_MODE_NOTICE, WRAP_UP, normalize_language, sample_result
from .transcript import Message, Transcript
from .transport import ErrorKind, Transport, TransportError

logger = logging.getLogger(__name__)

MIN_USER_TURNS = 2


def new_session_id() -> str:
    return str(uuid.uuid4())


class ConversationState(str, Enum):
    IDLE = "idle"
    OPEN = "open"
    CLOSED = "closed"


class ConversationNotOpen(RuntimeError):
    """Raised when a turn is attempted outside the OPEN state."""


class ConversationBusy(RuntimeError):
    """Raised when a turn is attempted while another is in flight."""


@dataclass(frozen=True)
class TurnOutcome:
    """What happened on one send/finish.

    Exactly one of ``reply``, ``result`` or ``error`` is set on an accepted
    turn. A rejected finish has ``accepted=False`` and nothing else.
    """

    accepted: bool = True
    reply: Optional[Message] = None
    result: Optional[StructuredResult] = None
    error: Optional[TransportError] = None

    @property
    def closed(self) -> bool:
        return self.result is not None

    def user_message(self, language: str = "en") -> Optional[str]:
        return self.error.user_message(language) if self.error else None


class ConversationController:
    def __init__(
        self,
        transport: Transport,
        language: str = "en",
        *,
        min_user_turns: int = MIN_USER_TURNS,
        test_passphrase: Optional[str] = None,
        session_id_factory: Callable[[], str] = new_session_id,
        profile: Optional[Profile] = None,
    ) -> None:
        self.transport = transport
        self.language = normalize_language(language)
        self.profile = profile
        self.min_user_turns = int(min_user_turns)
        self.test_passphrase = (test_passphrase or "").strip() or None
        self._new_session_id = session_id_factory

        self._transcript: Optional[Transcript] = None
        self._session_id: Optional[str] = None
        self._busy = False

    # --------- state ----------
    @property
    def state(self) -> ConversationState:
        if self._transcript is None:
            return ConversationState.IDLE
        return ConversationState.OPEN if self._transcript.is_open else ConversationState.CLOSED

    @property
    def transcript(self) -> Optional[Transcript]:
        return self._transcript

    @property
    def messages(self) -> List[Message]:
        return list(self._transcript.messages) if self._transcript else []

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def result(self) -> Optional[StructuredResult]:
        return self._transcript.result if self._transcript else None

    @property
    def busy(self) -> bool:
        return self._busy

    # --------- lifecycle ----------
    def start(self) -> Message:
        """Open a fresh transcript seeded with the local greeting."""
        self._transcript = Transcript()
        self._session_id = self._new_session_id()
        greeting = self._transcript.append(Message.create("assistant", GREETINGS[self.language]))
        logger.info("session %s started (%s)", self._session_id, self.language)
        return greeting

    def can_finish(self) -> bool:
        return (
            self.state is ConversationState.OPEN
            and self._transcript is not None
            and self._transcript.user_turns >= self.min_user_turns
        )

    # --------- turns ----------
    def send(self, text: str) -> TurnOutcome:
        content = (text or "").strip()
        if not content:
            raise ValueError("message text is empty")
        self._require_open()

        if self.test_passphrase and content == self.test_passphrase:
            return self._close_with_sample()

        self._transcript.append(Message.create("user", content))
        return self._exchange(self._wire())

    def finish(self) -> TurnOutcome:
        """Ask the model to wrap up. Below the turn threshold nothing happens."""
        if self._busy:
            raise ConversationBusy("a reply is still pending")
        if not self.can_finish():
            return TurnOutcome(accepted=False)
        return self._exchange(self._wire() + [{"role": "user", "content": WRAP_UP[self.language]}])

    # --------- internals ----------
    def _wire(self) -> list:
        context = self.profile.context_message() if self.profile else None
        head = [{"role": "user", "content": context}] if context else []
        return head + self._transcript.to_wire()

    def _require_open(self) -> None:
        if self.state is not ConversationState.OPEN:
            raise ConversationNotOpen(f"conversation is {self.state.value}")
        if self._busy:
            raise ConversationBusy("a reply is still pending")

    def _exchange(self, wire: list) -> TurnOutcome:
        self._busy = True
        try:
            raw = self.transport.complete(wire, self.language)
        except TransportError as e:
            logger.warning("turn failed in session %s: %s (%s)", self._session_id, e.kind.value, e)
            return TurnOutcome(error=e)
        except Exception as e:
            logger.exception("unexpected transport failure in session %s", self._session_id)
            return TurnOutcome(error=TransportError(ErrorKind.UNKNOWN, str(e)))
        finally:
            self._busy = False

        result = extract_result(raw)
        if result is not None:
            self._transcript.close(result)
            logger.info("session %s closed with result", self._session_id)
            return TurnOutcome(result=result)

        reply = self._transcript.append(Message.create("assistant", strip_internal_monologue(raw)))
        return TurnOutcome(reply=reply)

    def _close_with_sample(self) -> TurnOutcome:
        logger.info("test passphrase used in session %s", self._session_id)
        self._transcript.append(Message.create("assistant", TEST_MODE_NOTICE[self.language]))
        result = sample_result(self.language)
        self._transcript.close(result)
        return TurnOutcome(result=result)
