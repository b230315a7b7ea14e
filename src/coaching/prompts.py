"""Language-selected instruction text and canned strings for coaching sessions."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict

from .extractor import StructuredResult

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
LANGUAGES = ("ar", "en")


def normalize_language(language: str | None) -> str:
    """Anything that is not Arabic is served in English."""
    return "ar" if (language or "").strip().lower() == "ar" else "en"


@lru_cache(maxsize=None)
def default_instruction(language: str) -> str:
    """Bundled system instruction for ``language``."""
    lang = normalize_language(language)
    return (PROMPTS_DIR / f"{lang}.txt").read_text(encoding="utf-8").strip()


GREETINGS: Dict[str, str] = {
    "ar": (
        "مرحباً! أنا سند، مستشارك الاستراتيجي. أنا هنا لأساعدك في اكتشاف نقاط قوتك "
        "الخفية ورسم مسارك المهني. أخبرني... ما هو الهدف أو التحول الذي تسعى لتحقيقه "
        "في حياتك المهنية؟"
    ),
    "en": (
        "Hello! I'm Sanad, your Elite Strategic Career Consultant. I'm here to help you "
        "discover your hidden strengths and chart your career path. Tell me... what goal "
        "or transformation are you seeking in your career?"
    ),
}

# Sent to the model when the user ends the chat early; never stored in the transcript.
WRAP_UP: Dict[str, str] = {
    "ar": (
        "أرغب في إنهاء المحادثة الآن. بناءً على ما ناقشناه، أخرج النتيجة النهائية "
        "بصيغة JSON الخام فقط كما هو محدد في التعليمات."
    ),
    "en": (
        "I would like to end the conversation now. Based on what we discussed, output "
        "the final result as raw JSON only, exactly as specified in your instructions."
    ),
}

TEST_MODE_NOTICE: Dict[str, str] = {
    "ar": "**وضع الاختبار** - جاري توليد تقرير تجريبي...",
    "en": "**Test Mode** - Generating sample report...",
}

_SAMPLE_RESULTS: Dict[str, dict] = {
    "ar": {
        "status": "complete",
        "strengths": [
            "التفكير الاستراتيجي",
            "القدرة على التحليل العميق",
            "مهارات التواصل الفعال",
            "الإبداع في حل المشكلات",
        ],
        "passion": (
            "لديك شغف عميق بإحداث تأثير إيجابي في حياة الآخرين من خلال تقديم الاستشارات "
            "والتوجيه. هذا الدافع الداخلي يجعلك تبحث دائماً عن طرق جديدة للتعلم والنمو."
        ),
        "career_paths": [
            "المسار الآمن: مستشار تطوير مهني في شركة استشارات معتمدة",
            "مسار النمو: إطلاق منصة تدريب رقمية خاصة",
            "المسار الفريد: الجمع بين الذكاء الاصطناعي والتوجيه المهني",
        ],
        "reliability_score": 87,
        "advice": (
            "ابدأ بتطوير حضورك الرقمي أولاً بكتابة محتوى قيّم، ثم قدّم استشارات مجانية "
            "لبناء سمعتك. خلال 6 أشهر ستكون لديك قاعدة عملاء كافية للانطلاق."
        ),
    },
    "en": {
        "status": "complete",
        "strengths": [
            "Strategic Thinking",
            "Deep Analytical Skills",
            "Effective Communication",
            "Creative Problem Solving",
        ],
        "passion": (
            "You have a deep passion for making a positive impact on others' lives through "
            "consulting and guidance. This inner drive makes you constantly seek new ways "
            "to learn and grow."
        ),
        "career_paths": [
            "Safe Path: Career Development Consultant at an established consulting firm",
            "Growth Path: Launch your own digital coaching platform",
            "Unique Path: Combine AI with career coaching",
        ],
        "reliability_score": 87,
        "advice": (
            "Start by developing your digital presence: write valuable content, then offer "
            "free consultations to build your reputation. Within 6 months you will have a "
            "client base sufficient to launch independently."
        ),
    },
}


def sample_result(language: str) -> StructuredResult:
    """Canned result used by the test-mode passphrase."""
    return StructuredResult.model_validate(_SAMPLE_RESULTS[normalize_language(language)])
