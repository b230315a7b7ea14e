"""Detect the structured completion payload a coaching model embeds in a reply.

The model ends an assessment by emitting a JSON object such as::

    {"status": "complete", "strengths": [...], "passion": "...",
     "career_paths": [...], "reliability_score": 85}

Replies are inspected one at a time. Anything that does not parse and validate
is ordinary dialogue; failures here are never surfaced as errors.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Opening fence with an optional language tag, and the closing fence.
_FENCE_OPEN = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```\s*$")
_GREEDY_OBJECT = re.compile(r"\{[\s\S]*\}")
_MONOLOGUE = re.compile(r"^[\s*#>_]*(THOUGHT|PLAN|ANALYSIS)\b\s*[:\-\n]")


class StructuredResult(BaseModel):
    """Terminal assessment payload. Immutable once produced."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    status: Literal["complete"]
    strengths: List[StrictStr]
    passion: StrictStr
    career_paths: List[StrictStr]
    reliability_score: Union[StrictInt, StrictFloat]
    advice: Optional[StrictStr] = None

    @field_validator("reliability_score")
    @classmethod
    def _clamp_score(cls, v: Union[int, float]) -> Union[int, float]:
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("reliability_score must be finite")
        return min(max(v, 0), 100)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass(frozen=True)
class ParseResult:
    """Tagged outcome of :func:`parse_result`."""

    result: Optional[StructuredResult] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.result is not None

    @classmethod
    def success(cls, result: StructuredResult) -> "ParseResult":
        return cls(result=result)

    @classmethod
    def failure(cls, reason: str) -> "ParseResult":
        return cls(result=None, reason=reason)

    def __bool__(self) -> bool:
        return self.ok


# -----------------------------
# Text helpers
# -----------------------------
def strip_code_fences(text: str) -> str:
    """Remove a leading/trailing triple-backtick fence (optionally tagged)."""
    s = (text or "").strip()
    s = _FENCE_OPEN.sub("", s, count=1)
    s = _FENCE_CLOSE.sub("", s, count=1)
    return s.strip()


def find_payload(text: str) -> Optional[str]:
    """Span from the first ``{`` to the last ``}`` (greedy, not balanced)."""
    m = _GREEDY_OBJECT.search(text or "")
    return m.group(0) if m else None


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield top-level ``{...}`` spans, skipping braces inside JSON strings."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text or ""):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : i + 1]


def strip_internal_monologue(text: str) -> str:
    """Drop leaked THOUGHT/PLAN/ANALYSIS paragraphs from a dialogue reply."""
    paragraphs = re.split(r"\n\s*\n", (text or "").strip())
    kept = [p for p in paragraphs if not _MONOLOGUE.match(p)]
    cleaned = "\n\n".join(kept).strip()
    return cleaned or (text or "").strip()


# -----------------------------
# Parsing
# -----------------------------
def _validate(payload: Any) -> Tuple[Optional[StructuredResult], str]:
    if not isinstance(payload, dict):
        return None, "payload is not an object"
    try:
        return StructuredResult.model_validate(payload), ""
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return None, f"invalid fields: {fields}"


def _parse_span(span: str) -> Tuple[Optional[StructuredResult], str]:
    try:
        payload = json.loads(span)
    except (json.JSONDecodeError, RecursionError) as e:
        return None, f"not JSON: {e}"
    return _validate(payload)


def parse_result(text: str) -> ParseResult:
    """Parse one assistant reply into a :class:`StructuredResult` if it carries one."""
    cleaned = strip_code_fences(text)
    span = find_payload(cleaned)
    if span is None:
        return ParseResult.failure("no object in reply")

    result, reason = _parse_span(span)
    if result is not None:
        return ParseResult.success(result)
    if not reason.startswith("not JSON"):
        return ParseResult.failure(reason)

    # Greedy span held prose or several objects; try each balanced one.
    for candidate in iter_balanced_objects(cleaned):
        found, _ = _parse_span(candidate)
        if found is not None:
            return ParseResult.success(found)
    return ParseResult.failure(reason)


def extract_result(text: str) -> Optional[StructuredResult]:
    parsed = parse_result(text)
    if not parsed.ok:
        logger.debug("reply treated as dialogue: %s", parsed.reason)
    return parsed.result
