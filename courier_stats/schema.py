from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from .errors import EmptySheetError
from .utils import is_blank, norm_header

logger = logging.getLogger(__name__)

DELIVERY = "delivery"
PICKUP = "pickup"
AUTO = "auto"

SUMMARY_ROWS = "summary_rows"
PER_SHIPMENT_ROWS = "per_shipment_rows"

# Синонимы заголовков (после norm_header). "contains" - подстрока, "exact" - точное совпадение, "prefix" - начало
SYN = {
    "station": {"contains": ["station", "hub", "location"]},
    # summary-лист: предагрегированные строки по агенту
    "summary_agent": {"contains": ["da name", "agent", "name"]},
    "delivered": {"exact": ["delivered"]},
    "failed": {"prefix": ["fail"]},
    "ofd": {"exact": ["ofd"]},
    "rto": {"exact": ["rto"]},
    # лист по отправлениям
    "shipment_agent": {"contains": ["da name", "driver", "associate", "agent"]},
    "status": {"contains": ["status"]},
    "tracking": {"contains": ["tracking", "airbill", "awb"]},
    # pickup
    "pickup_agent": {"contains": ["agent", "courier", "driver", "da name", "name"]},
    "state": {"contains": ["state", "status"]},
    "operation": {"contains": ["operation"]},
    "reason": {"contains": ["reason", "remark"]},
}

SUMMARY_MARKERS = ("delivered", "ofd", "rto")


@dataclass
class SheetSchema:
    domain: str
    layout: Optional[str]
    # роль -> исходное имя колонки (найдено один раз, а не на каждой строке)
    columns: Dict[str, Optional[str]] = field(default_factory=dict)
    field_names: List[str] = field(default_factory=list)

    def col(self, role: str) -> Optional[str]:
        return self.columns.get(role)

    def missing(self, *roles: str) -> List[str]:
        return [r for r in roles if not self.columns.get(r)]


def find_column(field_names: Sequence[str], role: str, exclude: Iterable[Optional[str]] = ()) -> Optional[str]:
    """
    Первая колонка, заголовок которой подходит под синонимы роли.
    Внутри роли приоритет по порядку синонимов: "da name" важнее "name"
    """
    rule = SYN[role]
    skip = {x for x in exclude if x}
    normed = [(f, norm_header(f)) for f in field_names if f not in skip]
    for kind in ("exact", "prefix", "contains"):
        for target in rule.get(kind, []):
            for f, h in normed:
                if not h:
                    continue
                if kind == "exact" and h == target:
                    return f
                if kind == "prefix" and h.startswith(target):
                    return f
                if kind == "contains" and target in h:
                    return f
    return None


def collect_field_names(records: Iterable[Mapping[str, Any]]) -> List[str]:
    # объединение ключей всех строк в порядке первого появления
    seen: Dict[str, None] = {}
    for r in records:
        for k in r.keys():
            if k not in seen:
                seen[k] = None
    return list(seen.keys())


def is_pickup_fields(field_names: Iterable[str]) -> bool:
    headers = [norm_header(f) for f in field_names]
    has_source = any("source" in h for h in headers)
    has_dest = any("destination" in h for h in headers)
    return has_source and has_dest


def is_summary_fields(field_names: Iterable[str]) -> bool:
    return any(norm_header(f) in SUMMARY_MARKERS for f in field_names)


def _resolve_columns(field_names: List[str], domain: str, layout: Optional[str]) -> Dict[str, Optional[str]]:
    cols: Dict[str, Optional[str]] = {}
    if domain == PICKUP:
        cols["tracking"] = find_column(field_names, "tracking")
        cols["reason"] = find_column(field_names, "reason")
        cols["operation"] = find_column(field_names, "operation")
        cols["state"] = find_column(field_names, "state", exclude=[cols["operation"]])
        cols["agent"] = find_column(field_names, "pickup_agent", exclude=[cols["tracking"], cols["state"], cols["reason"]])
        return cols

    cols["station"] = find_column(field_names, "station")
    if layout == SUMMARY_ROWS:
        for role in ("delivered", "failed", "ofd", "rto"):
            cols[role] = find_column(field_names, role)
        cols["agent"] = find_column(field_names, "summary_agent", exclude=[cols["station"]])
    else:
        cols["status"] = find_column(field_names, "status")
        cols["tracking"] = find_column(field_names, "tracking")
        cols["agent"] = find_column(field_names, "shipment_agent", exclude=[cols["station"]])
    return cols


def detect_layout(field_names: Iterable[str], domain: str = AUTO) -> SheetSchema:
    """
    Определяет домен и раскладку по именам колонок:
      - pickup: одновременно есть колонки с "source" и "destination" (или явная подсказка)
      - delivery + summary_rows: есть колонка ровно "delivered"/"ofd"/"rto"
      - иначе delivery + per_shipment_rows
    """
    names = list(field_names)
    d = (domain or AUTO).lower()
    if d not in (DELIVERY, PICKUP, AUTO):
        raise ValueError(f"unknown domain hint: {domain!r}")
    if d == AUTO:
        d = PICKUP if is_pickup_fields(names) else DELIVERY

    layout = None
    if d == DELIVERY:
        layout = SUMMARY_ROWS if is_summary_fields(names) else PER_SHIPMENT_ROWS

    return SheetSchema(domain=d, layout=layout, columns=_resolve_columns(names, d, layout), field_names=names)


def detect_schema(records: Sequence[Mapping[str, Any]], domain: str = AUTO) -> SheetSchema:
    # EmptySheetError, если ни в одной строке нет ни одного значения
    if not any(any(not is_blank(v) for v in r.values()) for r in records or []):
        raise EmptySheetError("sheet has no non-empty values")
    schema = detect_layout(collect_field_names(records), domain)
    logger.debug("Detected %s/%s with columns %s", schema.domain, schema.layout, schema.columns)
    return schema
