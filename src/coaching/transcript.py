"""Role-tagged chat messages and the append-only transcript that owns them."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .extractor import StructuredResult


ROLES = ("user", "assistant", "system")


class TranscriptClosed(RuntimeError):
    """Raised when a closed transcript is asked to take another turn."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    """A single conversation message."""

    role: str            # "user" | "assistant" | "system"
    content: str
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"unknown role {self.role!r}, expected one of {ROLES}")

    @classmethod
    def create(cls, role: str, content: str) -> "Message":
        return cls(role=role, content=content)

    def to_wire(self) -> Dict[str, str]:
        """The ``{role, content}`` form sent to the model endpoints."""
        return {"role": self.role, "content": self.content}


class Transcript:
    """Ordered log of chat turns for one coaching session.

    The transcript grows monotonically while open. Attaching a
    :class:`StructuredResult` closes it, which happens exactly once.
    """

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self._messages: List[Message] = list(messages or [])
        self._result: Optional["StructuredResult"] = None

    # --------- state ----------
    @property
    def is_open(self) -> bool:
        return self._result is None

    @property
    def is_closed(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> Optional["StructuredResult"]:
        return self._result

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def user_turns(self) -> int:
        return sum(1 for m in self._messages if m.role == "user")

    # --------- mutation ----------
    def append(self, message: Message) -> Message:
        if self.is_closed:
            raise TranscriptClosed("transcript is closed; start a new session")
        self._messages.append(message)
        return message

    def close(self, result: "StructuredResult") -> None:
        if self.is_closed:
            raise TranscriptClosed("transcript already has a result attached")
        self._result = result

    # --------- views ----------
    def to_wire(self) -> List[Dict[str, str]]:
        return [m.to_wire() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))
