"""Localized report view model built from a finished assessment."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from coaching.extractor import StructuredResult
from coaching.prompts import normalize_language

LABELS: Dict[str, Dict[str, str]] = {
    "ar": {
        "title": "تحليلك الاستراتيجي",
        "subtitle": "نتائج المستشار الاستراتيجي",
        "strengths": "نقاط القوة",
        "passion": "الشغف والدافع العميق",
        "career_paths": "المسارات المهنية المقترحة",
        "advice": "النصيحة الاستراتيجية",
        "reliability_score": "نسبة الثقة",
        "prepared_by": "تم إعداد هذا بواسطة سند - المستشار الاستراتيجي",
        "generated_on": "تاريخ الإعداد",
        "start_new": "بدء جلسة جديدة",
        "export_pdf": "تحميل التقرير PDF",
    },
    "en": {
        "title": "Your Strategic Analysis",
        "subtitle": "Elite Career Consultant Results",
        "strengths": "Your Strengths",
        "passion": "Your Deep Passion & Drive",
        "career_paths": "Recommended Career Paths",
        "advice": "Strategic Advice",
        "reliability_score": "Confidence Score",
        "prepared_by": "Prepared by Sanad - Elite Strategic Consultant",
        "generated_on": "Generated on",
        "start_new": "Start New Session",
        "export_pdf": "Download PDF Report",
    },
}

# First path is the safe route, second the growth route, the rest are novel.
TIERS: Dict[str, List[str]] = {
    "ar": ["آمن", "نمو", "فريد"],
    "en": ["Safe", "Growth", "Unique"],
}

_MONTHS = {
    "ar": ["يناير", "فبراير", "مارس", "أبريل", "مايو", "يونيو", "يوليو", "أغسطس", "سبتمبر", "أكتوبر", "نوفمبر", "ديسمبر"],
    "en": ["January", "February", "March", "April", "May", "June", "July", "August", "September", "October", "November", "December"],
}


def format_date(day: date, language: str) -> str:
    lang = normalize_language(language)
    month = _MONTHS[lang][day.month - 1]
    if lang == "ar":
        return f"{day.day} {month} {day.year}"
    return f"{month} {day.day}, {day.year}"


def tier_for(index: int, language: str) -> str:
    tiers = TIERS[normalize_language(language)]
    return tiers[min(index, len(tiers) - 1)]


@dataclass(frozen=True)
class CareerPathView:
    tier: str
    text: str


@dataclass(frozen=True)
class ReportView:
    language: str
    direction: str
    labels: Dict[str, str]
    generated_on: str
    score: float
    strengths: List[str] = field(default_factory=list)
    passion: str = ""
    career_paths: List[CareerPathView] = field(default_factory=list)
    advice: Optional[str] = None

    @property
    def is_rtl(self) -> bool:
        return self.direction == "rtl"


def build_report(result: StructuredResult, language: str, generated_on: Optional[date] = None) -> ReportView:
    lang = normalize_language(language)
    return ReportView(
        language=lang,
        direction="rtl" if lang == "ar" else "ltr",
        labels=dict(LABELS[lang]),
        generated_on=format_date(generated_on or date.today(), lang),
        score=result.reliability_score,
        strengths=list(result.strengths),
        passion=result.passion,
        career_paths=[CareerPathView(tier_for(i, lang), p) for i, p in enumerate(result.career_paths)],
        advice=result.advice,
    )


def render_text(view: ReportView) -> str:
    """Plain-text rendering for terminals."""
    lb = view.labels
    score = int(view.score) if float(view.score).is_integer() else round(view.score, 1)
    lines = [
        lb["title"],
        "=" * len(lb["title"]),
        f"{lb['prepared_by']} | {lb['generated_on']}: {view.generated_on}",
        "",
        f"{lb['reliability_score']}: {score}%",
        "",
        lb["strengths"],
    ]
    lines += [f"  - {s}" for s in view.strengths]
    lines += ["", lb["passion"], f"  {view.passion}", "", lb["career_paths"]]
    lines += [f"  {i}. [{p.tier}] {p.text}" for i, p in enumerate(view.career_paths, 1)]
    if view.advice:
        lines += ["", lb["advice"], f"  {view.advice}"]
    return "\n".join(lines) + "\n"
