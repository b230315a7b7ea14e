"""Background profile gathered before the conversation starts.

The profile is never part of the transcript. It reaches the model as a leading
context turn on every call, ahead of the greeting.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

# (field, English label used in the context turn)
FIELDS: Tuple[Tuple[str, str], ...] = (
    ("name", "Name"),
    ("age", "Age"),
    ("education", "Education"),
    ("current_role", "Current Role"),
    ("skills", "Skills"),
    ("interests", "Interests"),
    ("goals", "Goals"),
    ("challenges", "Challenges"),
)

QUESTIONS: Dict[str, Dict[str, str]] = {
    "en": {
        "name": "What is your name?",
        "age": "How old are you?",
        "education": "What is your education level?",
        "current_role": "What is your current role (or most recent position)?",
        "skills": "What are your skills?",
        "interests": "What are your interests and passions?",
        "goals": "What are your career goals?",
        "challenges": "What challenges do you face?",
    },
    "ar": {
        "name": "ما اسمك؟",
        "age": "كم عمرك؟",
        "education": "ما مستواك التعليمي؟",
        "current_role": "ما وظيفتك الحالية؟ (أو آخر وظيفة شغلتها)",
        "skills": "ما مهاراتك؟",
        "interests": "ما اهتماماتك وشغفك؟",
        "goals": "ما أهدافك المهنية؟",
        "challenges": "ما التحديات التي تواجهك؟",
    },
}


@dataclass(frozen=True)
class Profile:
    name: str = ""
    age: str = ""
    education: str = ""
    current_role: str = ""
    skills: str = ""
    interests: str = ""
    goals: str = ""
    challenges: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Profile":
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v).strip() for k, v in (data or {}).items() if k in known and v is not None})

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @property
    def is_empty(self) -> bool:
        return not any(self.to_dict().values())

    def context_message(self) -> Optional[str]:
        """The ``User Profile:`` block sent to the model, or None when nothing was answered."""
        lines: List[str] = [f"- {label}: {getattr(self, key)}" for key, label in FIELDS if getattr(self, key)]
        if not lines:
            return None
        return "User Profile:\n" + "\n".join(lines)
