"""
Текстовая сводка дня через внешний генератор текста (необязательно).

Генератор - любой callable(prompt) -> str или объект с методом generate(prompt).
Его ошибка не влияет на агрегаты: generate_narrative просто возвращает None
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Optional, Union
from .aggregate import DeliveryResult

logger = logging.getLogger(__name__)

MIN_SHIPMENTS_FOR_LOW = 5  # в "отстающие" попадают агенты с объёмом больше этого

_PROMPT_TEMPLATE = """\
Act as a logistics manager assistant. Analyze this daily delivery report for a station.
Station Total Volume: {total}
Station Success Rate: {rate:.1f}%
Delivered: {delivered}
Failed/RTO: {failed_rto}

Top Performers: {top}
Low Performers (Need Attention): {bottom}

Please provide a short, professional summary in {language}.
Structure:
1. General Assessment (Excellent/Good/Needs Improvement).
2. Key Highlights (Who did great).
3. Areas of Concern (Who is struggling, mention the failure count).
4. One actionable tip for tomorrow.

Keep it concise (max 150 words). Format with bullet points.
"""

Generator = Union[Callable[[str], str], Any]


def build_performance_prompt(result: DeliveryResult, language: str = "Arabic") -> str:
    gt = result.grand_total
    ranked = sorted(result.summaries, key=lambda s: -s.success_rate)
    top = ", ".join(f"{s.name} ({s.success_rate:.1f}%)" for s in ranked[:3]) or "-"
    weak = sorted((s for s in result.summaries if s.total > MIN_SHIPMENTS_FOR_LOW), key=lambda s: s.success_rate)
    bottom = ", ".join(f"{s.name} ({s.success_rate:.1f}%, Failed: {s.failed})" for s in weak[:3]) or "-"
    return _PROMPT_TEMPLATE.format(
        total=gt.total,
        rate=gt.success_rate,
        delivered=gt.delivered,
        failed_rto=gt.failed + gt.rto,
        top=top,
        bottom=bottom,
        language=language,
    )


def generate_narrative(result: DeliveryResult, generator: Generator, language: str = "Arabic") -> Optional[str]:
    prompt = build_performance_prompt(result, language=language)
    call = generator.generate if hasattr(generator, "generate") else generator
    try:
        text = call(prompt)
    except Exception as e:
        logger.warning("Narrative generation failed: %s", e)
        return None
    text = str(text or "").strip()
    return text or None
