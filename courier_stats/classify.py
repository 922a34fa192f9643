from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
from .utils import collapse_ws, norm_upper

# =========================

# 1) Delivery: статус отправления -> категория
# =========================
# Порядок важен: при поиске по подстроке побеждает первый ключ
# ("REJECTED_DELIVERY_ATTEMPTED" -> rto, т.к. REJECTED стоит раньше)
DEFAULT_STATUS_MAPPING: Dict[str, str] = {
    "DELIVERED": "delivered",
    "CASH_IN_ASSOCIATE": "delivered",
    "SUCCESS": "delivered",
    "AT_STATION": "ofd",
    "ON_ROAD_WITH_DELIVERY_ASSOCIATE": "ofd",
    "OUT_FOR_DELIVERY": "ofd",
    "OFD": "ofd",
    "REJECTED": "rto",
    "DEPARTED_FOR_FC": "rto",
    "RTO": "rto",
    "RETURNED": "rto",
    "DAMAGED": "rto",
    "DELIVERY_ATTEMPTED": "failed",
    "HOLD_FOR_REDELIVERY": "failed",
    "FAILED": "failed",
    "FLD": "failed",
    "DELAYED": "failed",
}

DELIVERY_CATEGORIES = ("delivered", "failed", "ofd", "rto")


def classify_delivery_status(status: Any) -> Optional[str]:
    """
    Категория по тексту статуса: точное совпадение, затем подстрока
    (первый подходящий ключ таблицы). None - строка не учитывается нигде
    """
    s = str(status).strip().upper() if status is not None else ""
    if not s or s == "NAN":
        return None
    if s in DEFAULT_STATUS_MAPPING:
        return DEFAULT_STATUS_MAPPING[s]
    for key, cat in DEFAULT_STATUS_MAPPING.items():
        if key in s:
            return cat
    return None

# =========================

# 2) Pickup: упорядоченный список правил, побеждает первое сработавшее
# =========================
PICKUP_CATEGORIES = ("picked", "ofd", "failed", "cancelled", "rvp", "web")

VERIFICATION_FAILED_PHRASES = [
    "VERIFICATION FAILED", "FAILED VERIFICATION", "OTP MISMATCH", "OTP FAILED", "QC FAILED",
    "فشل التحقق",
]
PHONE_OFF_PHRASES = [
    "PHONE OFF", "SWITCHED OFF", "SWITCH OFF", "NOT REACHABLE", "UNREACHABLE",
    "الجوال مغلق",
]
CUSTOMER_REFUSAL_PHRASES = [
    "CUSTOMER REFUSED", "REFUSED", "NOT INTERESTED", "CHANGED MIND", "NO LONGER REQUIRED",
    "رفض العميل",
]
CANCELLED_STATE_TOKENS = ["CANCELLED"]
PICKUP_FAILED_STATE_TOKENS = ["PICKUP FAILED", "PICKUP FAILE"]
PICKED_STATE_TOKENS = [
    "RECEIVED", "PICKED", "SUCCESS",
    "IN TRANSIT TO HUB", "ARRIVED AT HUB", "DEPARTED FROM STATION",
]
FAILURE_REASON_PHRASES = [
    "CUSTOMER NOT AVAILABLE", "NO ANSWER", "WRONG ADDRESS", "ADDRESS NOT FOUND", "RESCHEDULE", "NOT READY",
]
FAILURE_STATE_TOKENS = ["FAILED", "REJECTED", "ATTEMPTED", "RETURNED"]

# заглушки для пустой причины
REASON_PLACEHOLDERS = {
    "rvp": "Verification failed",
    "web": "Phone off",
    "failed": "No reason given",
    "cancelled": "No cancel reason",
}

# куда пишется причина: reasons -> reasonsBreakdown, cancel -> cancelReasonBreakdown
REASONS = "reasons"
CANCEL_REASONS = "cancel"


def _has_any(text: str, phrases: List[str]) -> bool:
    return any(p in text for p in phrases)


PickupPredicate = Callable[[str, str, str], bool]

# (категория, предикат(reason, state, operation), куда писать причину)
PICKUP_RULES: List[Tuple[str, PickupPredicate, Optional[str]]] = [
    ("rvp", lambda reason, state, op: _has_any(reason, VERIFICATION_FAILED_PHRASES), REASONS),
    ("web", lambda reason, state, op: _has_any(reason, PHONE_OFF_PHRASES), REASONS),
    (
        "cancelled",
        lambda reason, state, op: (
            _has_any(reason, CUSTOMER_REFUSAL_PHRASES)
            or _has_any(op, CANCELLED_STATE_TOKENS)
            or _has_any(state, CANCELLED_STATE_TOKENS)
            or _has_any(state, PICKUP_FAILED_STATE_TOKENS)
        ),
        CANCEL_REASONS,
    ),
    ("picked", lambda reason, state, op: _has_any(state, PICKED_STATE_TOKENS), None),
    (
        "failed",
        lambda reason, state, op: _has_any(reason, FAILURE_REASON_PHRASES) or _has_any(state, FAILURE_STATE_TOKENS),
        REASONS,
    ),
]
DEFAULT_PICKUP_CATEGORY = "ofd"


def match_pickup_rule(reason: Any, state: Any, operation: Any = "") -> Tuple[str, Optional[str]]:
    # (категория, куда писать причину); тексты приводятся к upper + схлопнутые пробелы
    r, s, o = norm_upper(reason), norm_upper(state), norm_upper(operation)
    for category, predicate, breakdown in PICKUP_RULES:
        if predicate(r, s, o):
            return category, breakdown
    return DEFAULT_PICKUP_CATEGORY, None


def classify_pickup_row(reason: Any, state: Any, operation: Any = "") -> str:
    return match_pickup_rule(reason, state, operation)[0]


def reason_key(reason: Any, category: str) -> str:
    # ключ разбивки: исходный текст причины со схлопнутыми пробелами, либо заглушка категории
    txt = collapse_ws(reason)
    return txt if txt else REASON_PLACEHOLDERS.get(category, "")
