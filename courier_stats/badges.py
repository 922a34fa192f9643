from __future__ import annotations
from typing import Any, Dict, Iterable, List, Set
from .utils import RULES

# порядок = порядок показа
BADGE_ORDER = ["sniper", "turbo", "guardian", "fire", "beast"]

DEFAULT_BADGE_RULES: Dict[str, Dict[str, float]] = {
    "sniper": {"min_total": 10, "min_rate": 100},   # 100% при объёме от 10
    "turbo": {"min_total": 80},                     # большой объём
    "guardian": {"min_total": 20, "max_rto": 0},    # ни одного RTO
    "fire": {"min_total": 50, "min_rate": 98},      # высокий процент и объём
    "beast": {"min_total": 120},                    # объём независимо от процента
}


def _badge_rules() -> Dict[str, Dict[str, float]]:
    custom = RULES.get("badges", {}) or {}
    out = {}
    for tag in BADGE_ORDER:
        rule = dict(DEFAULT_BADGE_RULES[tag])
        rule.update(custom.get(tag, {}) or {})
        out[tag] = rule
    return out


def evaluate_badges(summary: Any) -> Set[str]:
    """
    Значки по готовой сводке агента (success_rate уже посчитан).
    Правила независимы: агент может получить любой поднабор
    """
    total = summary.total
    rate = summary.success_rate
    rto = summary.rto

    badges: Set[str] = set()
    for tag, rule in _badge_rules().items():
        if total < rule.get("min_total", 0):
            continue
        if "min_rate" in rule and rate < float(rule["min_rate"]):
            continue
        if "max_rto" in rule and rto > rule["max_rto"]:
            continue
        badges.add(tag)
    return badges


def ordered_badges(badges: Iterable[str]) -> List[str]:
    b = set(badges)
    return [t for t in BADGE_ORDER if t in b]
