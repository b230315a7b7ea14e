"""Paginated PDF export of a finished assessment (ReportLab)."""
from __future__ import annotations

import logging
import os
import subprocess
import threading
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from coaching.extractor import StructuredResult

from .shaping import has_arabic, wrap_for_pdf
from .view import ReportView, build_report

logger = logging.getLogger(__name__)

MODULE_DIR = Path(__file__).resolve().parent

ACCENT = colors.HexColor("#10B981")
MUTED = colors.HexColor("#6B7280")
INK = colors.HexColor("#1F2937")
PANEL = colors.HexColor("#F9FAFB")
ADVICE_PANEL = colors.HexColor("#ECFDF5")

PAGE_MARGIN = 2 * cm
FRAME_PADDING = 6  # SimpleDocTemplate frame padding on each side
PANEL_WIDTH = 17 * cm
PANEL_PADDING = 12
TEXT_WIDTH = A4[0] - 2 * PAGE_MARGIN - 2 * FRAME_PADDING
PANEL_TEXT_WIDTH = PANEL_WIDTH - 2 * PANEL_PADDING

# ------------------------------------------------------------------------------
# Font setup (needs Arabic glyphs; Helvetica is the last resort)
# ------------------------------------------------------------------------------
FONT_REGULAR_CANDIDATES = [
    MODULE_DIR / "fonts" / "Cairo-Regular.ttf",
    Path("/usr/share/fonts/truetype/noto/NotoNaskhArabic-Regular.ttf"),
    Path("/usr/share/fonts/truetype/noto/NotoSansArabic-Regular.ttf"),
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/TTF/DejaVuSans.ttf"),
    Path("/usr/share/fonts/truetype/freefont/FreeSans.ttf"),
]
FONT_BOLD_CANDIDATES = [
    MODULE_DIR / "fonts" / "Cairo-Bold.ttf",
    Path("/usr/share/fonts/truetype/noto/NotoNaskhArabic-Bold.ttf"),
    Path("/usr/share/fonts/truetype/noto/NotoSansArabic-Bold.ttf"),
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
    Path("/usr/share/fonts/TTF/DejaVuSans-Bold.ttf"),
    Path("/usr/share/fonts/truetype/freefont/FreeSansBold.ttf"),
]

_font_lock = threading.Lock()
_fonts: Optional[Tuple[str, str]] = None


def _first_existing_path(candidates: List[Path]) -> Optional[Path]:
    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate
    return None


def _fontconfig_match(pattern: str) -> Optional[Path]:
    try:
        result = subprocess.run(
            ["fc-match", "-f", "%{file}\n", pattern],
            check=False,
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    raw = result.stdout.strip() if result.returncode == 0 else ""
    candidate = Path(raw) if raw else None
    if candidate and candidate.suffix.lower() == ".ttf" and candidate.is_file():
        return candidate
    return None


def init_fonts() -> Tuple[str, str]:
    """Register the report fonts once; returns (regular, bold) font names."""
    global _fonts
    with _font_lock:
        if _fonts is not None:
            return _fonts

        override = os.environ.get("SANAD_PDF_FONT")
        regular = Path(override) if override and Path(override).is_file() else None
        regular = regular or _first_existing_path(FONT_REGULAR_CANDIDATES) or _fontconfig_match(":lang=ar")
        if regular is None:
            logger.warning("No Arabic-capable TTF found; PDF falls back to Helvetica.")
            _fonts = ("Helvetica", "Helvetica-Bold")
            return _fonts

        try:
            pdfmetrics.registerFont(TTFont("SanadRegular", str(regular)))
            bold = _first_existing_path(FONT_BOLD_CANDIDATES)
            if bold:
                pdfmetrics.registerFont(TTFont("SanadBold", str(bold)))
                _fonts = ("SanadRegular", "SanadBold")
            else:
                _fonts = ("SanadRegular", "SanadRegular")
            logger.info("PDF font loaded: %s", regular)
        except Exception as e:
            logger.error("Font registration failed (%s); using Helvetica.", e)
            _fonts = ("Helvetica", "Helvetica-Bold")
        return _fonts


# ------------------------------------------------------------------------------
# Styles & text
# ------------------------------------------------------------------------------
def create_pdf_styles(rtl: bool) -> dict:
    regular, bold = init_fonts()
    align = TA_RIGHT if rtl else TA_LEFT
    base = getSampleStyleSheet()["Normal"]
    return {
        "title": ParagraphStyle("SanadTitle", parent=base, fontName=bold, fontSize=22, leading=28,
                                textColor=ACCENT, alignment=align),
        "meta": ParagraphStyle("SanadMeta", parent=base, fontName=regular, fontSize=9, leading=12,
                               textColor=MUTED, alignment=align),
        "section": ParagraphStyle("SanadSection", parent=base, fontName=bold, fontSize=14, leading=20,
                                  textColor=ACCENT, alignment=align, spaceAfter=6),
        "body": ParagraphStyle("SanadBody", parent=base, fontName=regular, fontSize=11, leading=18,
                               textColor=INK, alignment=align),
        "score": ParagraphStyle("SanadScore", parent=base, fontName=bold, fontSize=30, leading=36,
                                textColor=ACCENT, alignment=TA_CENTER),
        "score_label": ParagraphStyle("SanadScoreLabel", parent=base, fontName=regular, fontSize=11,
                                      leading=14, textColor=MUTED, alignment=TA_CENTER),
        "footer": ParagraphStyle("SanadFooter", parent=base, fontName=regular, fontSize=8, leading=11,
                                 textColor=MUTED, alignment=TA_CENTER),
    }


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _sanitize_pdf_text(value: Any, style: ParagraphStyle, width: float, rtl: bool = False) -> str:
    """ReportLab Paragraph safe text conversion.

    Arabic text is wrapped here, in logical order, and each line is reordered
    for display; the lines are joined with explicit breaks so ReportLab keeps them.
    """
    if value is None:
        return ""
    text = str(value)
    if not has_arabic(text):
        return _escape(text)
    lines = wrap_for_pdf(text, style.fontName, style.fontSize, width, rtl=rtl)
    return "<br/>".join(_escape(line) for line in lines)


def _para(value: Any, style: ParagraphStyle, width: float = PANEL_TEXT_WIDTH, rtl: bool = False) -> Paragraph:
    return Paragraph(_sanitize_pdf_text(value, style, width, rtl), style)


def _panel(rows: List[Any], rtl: bool = False, background=PANEL) -> Table:
    # The accent bar sits on the side the text starts from.
    bar = "LINEAFTER" if rtl else "LINEBEFORE"
    table = Table([[r] for r in rows], colWidths=[PANEL_WIDTH])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), background),
        (bar, (0, 0), (-1, -1), 3, ACCENT),
        ("LEFTPADDING", (0, 0), (-1, -1), PANEL_PADDING),
        ("RIGHTPADDING", (0, 0), (-1, -1), PANEL_PADDING),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    return table


# ------------------------------------------------------------------------------
# Document
# ------------------------------------------------------------------------------
def build_story(view: ReportView) -> list:
    styles = create_pdf_styles(view.is_rtl)
    rtl = view.is_rtl
    lb = view.labels
    score = int(view.score) if float(view.score).is_integer() else round(view.score, 1)

    def para(value: Any, style: str, width: float = PANEL_TEXT_WIDTH) -> Paragraph:
        return _para(value, styles[style], width, rtl)

    story: list = [
        para(lb["title"], "title", TEXT_WIDTH),
        para(f"{lb['generated_on']}: {view.generated_on}", "meta", TEXT_WIDTH),
        Spacer(1, 0.5 * cm),
        _panel([para(f"{score}%", "score"), para(lb["reliability_score"], "score_label")],
               rtl, background=ADVICE_PANEL),
        Spacer(1, 0.5 * cm),
    ]

    story.append(_panel([para(lb["strengths"], "section")] + [para(f"• {s}", "body") for s in view.strengths], rtl))
    story.append(Spacer(1, 0.4 * cm))

    story.append(_panel([para(lb["passion"], "section"), para(view.passion, "body")], rtl))
    story.append(Spacer(1, 0.4 * cm))

    story.append(_panel(
        [para(lb["career_paths"], "section")]
        + [para(f"{i}. [{p.tier}] {p.text}", "body") for i, p in enumerate(view.career_paths, 1)],
        rtl,
    ))

    if view.advice:
        story.append(Spacer(1, 0.4 * cm))
        story.append(_panel([para(lb["advice"], "section"), para(view.advice, "body")], rtl, background=ADVICE_PANEL))

    story.append(Spacer(1, 1 * cm))
    story.append(para(lb["prepared_by"], "footer", TEXT_WIDTH))
    story.append(para(view.generated_on, "footer", TEXT_WIDTH))
    return story


def render_pdf(result: StructuredResult, language: str, generated_on: Optional[date] = None) -> bytes:
    """Render ``result`` as an A4 PDF and return the document bytes."""
    view = build_report(result, language, generated_on)
    with BytesIO() as buffer:
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=1.5 * cm,
            bottomMargin=1.5 * cm,
            title=view.labels["title"],
            author="Sanad",
        )
        doc.build(build_story(view))
        return buffer.getvalue()


def report_filename(language: str) -> str:
    return "sanad-report-ar.pdf" if language == "ar" else "sanad-report.pdf"
