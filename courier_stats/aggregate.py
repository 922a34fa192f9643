from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set
from .badges import evaluate_badges, ordered_badges
from .classify import classify_delivery_status, match_pickup_rule, reason_key, REASONS, CANCEL_REASONS
from .names import canonicalize, resolve_alias
from .schema import (SheetSchema, detect_schema, DELIVERY, PICKUP, AUTO, SUMMARY_ROWS, PER_SHIPMENT_ROWS)
from .utils import RULES, as_count, cell_text, is_blank, norm_text

logger = logging.getLogger(__name__)

DEFAULT_HUB_TOKEN = RULES.get("station", {}).get("hub_token", "dqn3")

# строки-итоги внутри summary-листа: TOTAL, SUBTOTAL, GRAND TOTAL, DQN3 TOTAL, STATION TOTAL ...
_TOTAL_MARKER_RE = re.compile(r"\b(SUB ?)?TOTAL\b")


def _rate(num: int, denom: int) -> float:
    return (num / denom) * 100 if denom > 0 else 0.0


# =========================

# Сводки
# =========================
@dataclass
class DeliverySummary:
    name: str
    delivered: int = 0
    failed: int = 0
    ofd: int = 0
    rto: int = 0
    success_rate: float = 0.0
    pending_trackings: List[str] = field(default_factory=list)
    all_trackings: List[Dict[str, str]] = field(default_factory=list)
    badges: Set[str] = field(default_factory=set)

    @property
    def total(self) -> int:
        return self.delivered + self.failed + self.ofd + self.rto

    def finalize(self) -> "DeliverySummary":
        # процент считаем один раз, после свёртки всех строк; значки - после процента
        self.success_rate = _rate(self.delivered, self.total)
        self.badges = evaluate_badges(self)
        return self

    def absorb(self, other: "DeliverySummary") -> None:
        self.delivered += other.delivered
        self.failed += other.failed
        self.ofd += other.ofd
        self.rto += other.rto
        self.pending_trackings.extend(other.pending_trackings)
        self.all_trackings.extend(other.all_trackings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "delivered": self.delivered,
            "failed": self.failed,
            "ofd": self.ofd,
            "rto": self.rto,
            "total": self.total,
            "success_rate": self.success_rate,
            "pending_trackings": list(self.pending_trackings),
            "all_trackings": [dict(t) for t in self.all_trackings],
            "badges": ordered_badges(self.badges),
        }


@dataclass
class PickupSummary:
    name: str
    picked: int = 0
    ofd: int = 0
    failed: int = 0
    cancelled: int = 0
    rvp: int = 0
    web: int = 0
    success_rate: float = 0.0
    trackings: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        # все классифицированные строки, включая cancelled/rvp/web
        return self.picked + self.ofd + self.failed + self.cancelled + self.rvp + self.web

    @property
    def rate_denominator(self) -> int:
        # cancelled в знаменатель процента не входит
        return self.picked + self.failed + self.rvp + self.web + self.ofd

    def finalize(self) -> "PickupSummary":
        self.success_rate = _rate(self.picked, self.rate_denominator)
        return self

    def absorb(self, other: "PickupSummary") -> None:
        for cat in ("picked", "ofd", "failed", "cancelled", "rvp", "web"):
            setattr(self, cat, getattr(self, cat) + getattr(other, cat))
        self.trackings.extend(other.trackings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "picked": self.picked,
            "ofd": self.ofd,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "rvp": self.rvp,
            "web": self.web,
            "total": self.total,
            "success_rate": self.success_rate,
            "trackings": [dict(t) for t in self.trackings],
        }


@dataclass
class DeliveryTotals:
    delivered: int = 0
    failed: int = 0
    ofd: int = 0
    rto: int = 0

    @property
    def total(self) -> int:
        return self.delivered + self.failed + self.ofd + self.rto

    @property
    def success_rate(self) -> float:
        return _rate(self.delivered, self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivered": self.delivered, "failed": self.failed, "ofd": self.ofd, "rto": self.rto,
            "total": self.total, "success_rate": self.success_rate,
        }


@dataclass
class PickupTotals:
    picked: int = 0
    ofd: int = 0
    failed: int = 0
    cancelled: int = 0
    rvp: int = 0
    web: int = 0

    @property
    def total(self) -> int:
        return self.picked + self.ofd + self.failed + self.cancelled + self.rvp + self.web

    @property
    def success_rate(self) -> float:
        return _rate(self.picked, self.picked + self.failed + self.rvp + self.web + self.ofd)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "picked": self.picked, "ofd": self.ofd, "failed": self.failed,
            "cancelled": self.cancelled, "rvp": self.rvp, "web": self.web,
            "total": self.total, "success_rate": self.success_rate,
        }


@dataclass
class DeliveryResult:
    layout: str
    summaries: List[DeliverySummary]
    grand_total: DeliveryTotals
    issues: List[Dict[str, Any]] = field(default_factory=list)
    domain: str = DELIVERY

    def by_name(self) -> Dict[str, DeliverySummary]:
        return {s.name: s for s in self.summaries}


@dataclass
class PickupResult:
    summaries: List[PickupSummary]
    grand_total: PickupTotals
    reasons_breakdown: Dict[str, int] = field(default_factory=dict)
    cancel_reason_breakdown: Dict[str, int] = field(default_factory=dict)
    issues: List[Dict[str, Any]] = field(default_factory=list)
    domain: str = PICKUP
    layout: Optional[str] = None

    def by_name(self) -> Dict[str, PickupSummary]:
        return {s.name: s for s in self.summaries}


# =========================

# Итоги и слияние шардов
# =========================
def delivery_grand_total(summaries: Iterable[DeliverySummary]) -> DeliveryTotals:
    # второй проход по готовым сводкам; процент пересчитывается из сумм, а не усредняется
    gt = DeliveryTotals()
    for s in summaries:
        gt.delivered += s.delivered
        gt.failed += s.failed
        gt.ofd += s.ofd
        gt.rto += s.rto
    return gt


def pickup_grand_total(summaries: Iterable[PickupSummary]) -> PickupTotals:
    gt = PickupTotals()
    for s in summaries:
        gt.picked += s.picked
        gt.ofd += s.ofd
        gt.failed += s.failed
        gt.cancelled += s.cancelled
        gt.rvp += s.rvp
        gt.web += s.web
    return gt


def merge_delivery_shards(parts: Iterable[Mapping[str, DeliverySummary]]) -> Dict[str, DeliverySummary]:
    # сложение счётчиков коммутативно и ассоциативно: шарды можно сворачивать в любом порядке
    out: Dict[str, DeliverySummary] = {}
    for part in parts:
        for name, s in part.items():
            if name not in out:
                out[name] = DeliverySummary(name=name)
            out[name].absorb(s)
    return {k: v.finalize() for k, v in out.items()}


def merge_pickup_shards(parts: Iterable[Mapping[str, PickupSummary]]) -> Dict[str, PickupSummary]:
    out: Dict[str, PickupSummary] = {}
    for part in parts:
        for name, s in part.items():
            if name not in out:
                out[name] = PickupSummary(name=name)
            out[name].absorb(s)
    return {k: v.finalize() for k, v in out.items()}


def sort_by_rate(summaries: Iterable[Any]) -> List[Any]:
    # по убыванию процента; sorted стабилен - при равенстве порядок первого появления
    return sorted(summaries, key=lambda s: -s.success_rate)


# =========================

# Свёртка строк (аккумулятор передаётся явно)
# =========================
def _issue(level: str, code: str, message: str, **extra: Any) -> Dict[str, Any]:
    return {"level": level, "code": code, "message": message, **extra}


def _in_hub(row: Mapping[str, Any], station_col: Optional[str], hub_token: str) -> bool:
    # пустое значение станции не фильтруется
    if not station_col or not hub_token:
        return True
    v = norm_text(row.get(station_col))
    return not v or hub_token.lower() in v


def _row_is_blank(row: Mapping[str, Any]) -> bool:
    return all(is_blank(v) for v in row.values())


def _delivery_entry(acc: Dict[str, DeliverySummary], name: str) -> DeliverySummary:
    if name not in acc:
        acc[name] = DeliverySummary(name=name)
    return acc[name]


def is_total_marker(raw_name: Any) -> bool:
    return bool(_TOTAL_MARKER_RE.search(canonicalize(raw_name)))


def fold_delivery_summary_rows(
    acc: Dict[str, DeliverySummary],
    records: Iterable[Mapping[str, Any]],
    schema: SheetSchema,
    aliases: Optional[Dict[str, str]],
    hub_token: str,
    issues: List[Dict[str, Any]],
) -> Dict[str, DeliverySummary]:
    """
    Summary-лист: строки уже содержат delivered/failed/ofd/rto по агенту, просто складываем.
    Пропускаются: чужие хабы, строки без имени, строки-итоги
    """
    agent_col = schema.col("agent")
    if not agent_col:
        issues.append(_issue("warn", "unrecognized_layout", "Summary sheet has no agent name column; rows skipped."))
        logger.warning("Summary sheet without agent column, columns=%s", schema.field_names)
        return acc

    station_col = schema.col("station")
    for row in records:
        if not _in_hub(row, station_col, hub_token):
            continue
        raw_name = row.get(agent_col)
        if is_blank(raw_name) or is_total_marker(raw_name):
            continue

        s = _delivery_entry(acc, resolve_alias(raw_name, aliases))
        for cat in ("delivered", "failed", "ofd", "rto"):
            col = schema.col(cat)
            if col:
                setattr(s, cat, getattr(s, cat) + as_count(row.get(col)))
    return acc


def fold_delivery_shipments(
    acc: Dict[str, DeliverySummary],
    records: Iterable[Mapping[str, Any]],
    schema: SheetSchema,
    aliases: Optional[Dict[str, str]],
    hub_token: str,
    issues: List[Dict[str, Any]],
) -> Dict[str, DeliverySummary]:
    # лист по отправлениям: одна строка = один трек, категорию даёт classify_delivery_status
    missing = schema.missing("agent", "status")
    if missing:
        issues.append(_issue(
            "warn", "unrecognized_layout",
            "Shipment sheet lacks required columns; rows skipped.",
            missing=missing,
        ))
        logger.warning("Shipment sheet missing %s, columns=%s", missing, schema.field_names)
        return acc

    agent_col = schema.col("agent")
    status_col = schema.col("status")
    track_col = schema.col("tracking")
    station_col = schema.col("station")

    unclassified: Dict[str, int] = {}
    for row in records:
        if _row_is_blank(row) or not _in_hub(row, station_col, hub_token):
            continue

        cat = classify_delivery_status(cell_text(row.get(status_col)))
        if cat is None:
            st = cell_text(row.get(status_col)).upper()
            unclassified[st] = unclassified.get(st, 0) + 1
            continue

        s = _delivery_entry(acc, resolve_alias(row.get(agent_col), aliases))
        setattr(s, cat, getattr(s, cat) + 1)

        track = cell_text(row.get(track_col)) if track_col else ""
        if track:
            s.all_trackings.append({"id": track, "status": cat})
            if cat != "delivered":
                s.pending_trackings.append(track)

    if unclassified:
        issues.append(_issue(
            "info", "unclassified_status",
            f"{sum(unclassified.values())} row(s) with unknown status were not counted.",
            statuses=unclassified,
        ))
    return acc


def fold_pickup_rows(
    acc: Dict[str, PickupSummary],
    reasons: Dict[str, int],
    cancel_reasons: Dict[str, int],
    records: Iterable[Mapping[str, Any]],
    schema: SheetSchema,
    aliases: Optional[Dict[str, str]],
    issues: List[Dict[str, Any]],
) -> Dict[str, PickupSummary]:
    """
    Pickup: каждая строка проходит упорядоченный список правил (PICKUP_RULES).
    total увеличивается для любой непустой строки; причины rvp/web/failed -> reasons,
    причины отмены -> cancel_reasons
    """
    agent_col = schema.col("agent")
    if not agent_col:
        issues.append(_issue("warn", "unrecognized_layout", "Pickup sheet has no agent column; rows skipped."))
        logger.warning("Pickup sheet without agent column, columns=%s", schema.field_names)
        return acc

    state_col = schema.col("state")
    op_col = schema.col("operation")
    reason_col = schema.col("reason")
    track_col = schema.col("tracking")

    for row in records:
        if _row_is_blank(row):
            continue
        name = resolve_alias(row.get(agent_col), aliases)
        reason = row.get(reason_col) if reason_col else ""
        state = row.get(state_col) if state_col else ""
        op = row.get(op_col) if op_col else ""

        cat, breakdown = match_pickup_rule(reason, state, op)
        if name not in acc:
            acc[name] = PickupSummary(name=name)
        s = acc[name]
        setattr(s, cat, getattr(s, cat) + 1)

        if breakdown == REASONS:
            key = reason_key(reason, cat)
            reasons[key] = reasons.get(key, 0) + 1
        elif breakdown == CANCEL_REASONS:
            key = reason_key(reason, cat)
            cancel_reasons[key] = cancel_reasons.get(key, 0) + 1

        track = cell_text(row.get(track_col)) if track_col else ""
        if track:
            s.trackings.append({"id": track, "status": cat})
    return acc


# =========================

# Main: строки листа -> сводки
# =========================
def process_delivery_records(
    records: Sequence[Mapping[str, Any]],
    schema: SheetSchema,
    aliases: Optional[Dict[str, str]] = None,
    hub_token: Optional[str] = None,
) -> DeliveryResult:
    hub = DEFAULT_HUB_TOKEN if hub_token is None else hub_token
    acc: Dict[str, DeliverySummary] = {}
    issues: List[Dict[str, Any]] = []

    if schema.layout == SUMMARY_ROWS:
        fold_delivery_summary_rows(acc, records, schema, aliases, hub, issues)
    else:
        fold_delivery_shipments(acc, records, schema, aliases, hub, issues)

    summaries = sort_by_rate(s.finalize() for s in acc.values())
    return DeliveryResult(
        layout=schema.layout or PER_SHIPMENT_ROWS,
        summaries=summaries,
        grand_total=delivery_grand_total(summaries),
        issues=issues,
    )


def process_pickup_records(
    records: Sequence[Mapping[str, Any]],
    schema: SheetSchema,
    aliases: Optional[Dict[str, str]] = None,
) -> PickupResult:
    acc: Dict[str, PickupSummary] = {}
    reasons: Dict[str, int] = {}
    cancel_reasons: Dict[str, int] = {}
    issues: List[Dict[str, Any]] = []

    fold_pickup_rows(acc, reasons, cancel_reasons, records, schema, aliases, issues)

    summaries = sort_by_rate(s.finalize() for s in acc.values())
    return PickupResult(
        summaries=summaries,
        grand_total=pickup_grand_total(summaries),
        reasons_breakdown=reasons,
        cancel_reason_breakdown=cancel_reasons,
        issues=issues,
    )


def process_sheet(
    records: Sequence[Mapping[str, Any]],
    aliases: Optional[Dict[str, str]] = None,
    domain: str = AUTO,
    hub_token: Optional[str] = None,
):
    """
    Полный проход по одному листу:
      detect_schema -> стратегия домена -> алиасы + классификация -> свёртка -> процент/значки -> итог
    EmptySheetError пробрасывается (лист без значений)
    """
    records = list(records or [])
    schema = detect_schema(records, domain)

    if schema.domain == PICKUP:
        result = process_pickup_records(records, schema, aliases)
    else:
        result = process_delivery_records(records, schema, aliases, hub_token)

    logger.info(
        "Processed %s sheet (%s): %d rows -> %d agents, total=%d",
        schema.domain, schema.layout or "-", len(records), len(result.summaries), result.grand_total.total,
    )
    return result
