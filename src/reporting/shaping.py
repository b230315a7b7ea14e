"""Arabic shaping for PDF output.

ReportLab draws code points as-is: it neither joins Arabic letters into their
contextual forms nor reorders right-to-left runs. Text is reshaped to
presentation forms, broken into lines while still in logical order, and only
then is each line put into visual order. Reordering a whole paragraph first
would leave ReportLab wrapping it from the wrong end.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional

import arabic_reshaper
from bidi.algorithm import get_display
from reportlab.lib.utils import simpleSplit

logger = logging.getLogger(__name__)

# Arabic, Arabic Supplement, Arabic Extended-A
_ARABIC = re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF]")


def has_arabic(text: str) -> bool:
    return bool(text) and bool(_ARABIC.search(text))


def _reshape(text: str) -> str:
    try:
        return arabic_reshaper.reshape(text)
    except Exception as e:  # pragma: no cover - reshaper edge cases
        logger.warning("Arabic reshaping failed, using raw text: %s", e)
        return text


def _visual(line: str, base_dir: Optional[str]) -> str:
    try:
        return get_display(line, base_dir=base_dir)
    except Exception as e:  # pragma: no cover - bidi edge cases
        logger.warning("Bidi reordering failed, using logical order: %s", e)
        return line


def shape_for_pdf(text: str, rtl: bool = True) -> str:
    """Return a single line of ``text`` ready for ReportLab; unchanged when it has no Arabic."""
    if not has_arabic(text):
        return text
    return _visual(_reshape(text), "R" if rtl else None)


def wrap_for_pdf(text: str, font_name: str, font_size: float, width: float, rtl: bool = True) -> List[str]:
    """Break ``text`` into lines no wider than ``width`` points, each in visual order.

    Lines come back top to bottom, so the first line holds the start of the
    sentence. Text without Arabic is returned as a single unwrapped line.
    """
    if not has_arabic(text):
        return [text]
    logical = simpleSplit(_reshape(text), font_name, font_size, width)
    base_dir = "R" if rtl else None
    return [_visual(line, base_dir) for line in logical]
