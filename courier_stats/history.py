from __future__ import annotations
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import numpy as np
import pandas as pd
from .aggregate import DeliveryResult, DeliverySummary
from .utils import RULES, try_parse_date

DEFAULT_TARGET_RATE = float(RULES.get("goal", {}).get("default_target_rate", 95))
DEFAULT_RETENTION_DAYS = int(RULES.get("history", {}).get("retention_days", 90))

DIRECTORY_COLUMNS = ["name", "total_orders", "total_delivered", "days_worked", "last_seen", "success_rate"]
TREND_COLUMNS = ["date", "delivered", "total", "success_rate"]


def build_history_record(result: DeliveryResult, report_date: Any) -> Dict[str, Any]:
    """
    Запись дня для архива:
      station_total - итог по станции, agents - по агенту (pending-треки и все треки со статусом)
    """
    d = try_parse_date(report_date)
    if not d:
        raise ValueError(f"invalid report date: {report_date!r}")
    ts = int(datetime.strptime(d, "%Y-%m-%d").replace(tzinfo=timezone.utc).timestamp() * 1000)
    gt = result.grand_total
    return {
        "date": d,
        "timestamp": ts,
        "station_total": {
            "delivered": gt.delivered,
            "total": gt.total,
            "success_rate": gt.success_rate,
        },
        "agents": [
            {
                "name": s.name,
                "delivered": s.delivered,
                "total": s.total,
                "success_rate": s.success_rate,
                "trackings": list(s.pending_trackings),
                "shipment_details": [dict(t) for t in s.all_trackings],
            }
            for s in result.summaries
        ],
    }


def _agent_rows(history: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = []
    for rec in history or []:
        for a in rec.get("agents") or []:
            rows.append({
                "date": rec.get("date", ""),
                "name": a.get("name", ""),
                "delivered": int(a.get("delivered", 0) or 0),
                "total": int(a.get("total", 0) or 0),
            })
    return pd.DataFrame(rows, columns=["date", "name", "delivered", "total"])


def agent_directory(history: List[Dict[str, Any]]) -> pd.DataFrame:
    # все агенты из истории: объём, доставлено, дней в работе, последняя дата; по убыванию объёма
    df = _agent_rows(history)
    if df.empty:
        return pd.DataFrame(columns=DIRECTORY_COLUMNS)

    out = df.groupby("name", sort=False).agg(
        total_orders=("total", "sum"),
        total_delivered=("delivered", "sum"),
        days_worked=("date", "count"),
        last_seen=("date", "max"),
    ).reset_index()
    out["success_rate"] = np.where(
        out["total_orders"] > 0,
        out["total_delivered"] / out["total_orders"].replace(0, np.nan) * 100,
        0.0,
    )
    out = out.sort_values("total_orders", ascending=False, kind="stable").reset_index(drop=True)
    return out[DIRECTORY_COLUMNS]


def agent_dates(history: List[Dict[str, Any]], name: str) -> List[str]:
    # даты, в которых встречается агент (по умолчанию - все они попадают в слияние)
    out = set()
    for rec in history or []:
        if any(a.get("name") == name for a in rec.get("agents") or []):
            out.add(rec.get("date"))
    return sorted(d for d in out if d)


def station_trend(history: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = []
    for rec in history or []:
        st = rec.get("station_total") or {}
        rows.append({
            "date": rec.get("date", ""),
            "delivered": int(st.get("delivered", 0) or 0),
            "total": int(st.get("total", 0) or 0),
        })
    df = pd.DataFrame(rows, columns=["date", "delivered", "total"])
    if df.empty:
        return pd.DataFrame(columns=TREND_COLUMNS)
    df = df.groupby("date", as_index=False).sum().sort_values("date").reset_index(drop=True)
    df["success_rate"] = np.where(df["total"] > 0, df["delivered"] / df["total"].replace(0, np.nan) * 100, 0.0)
    return df[TREND_COLUMNS]


def deliveries_needed(summary: DeliverySummary, target_rate: Optional[float] = None) -> Dict[str, Any]:
    """
    Калькулятор цели: сколько ещё доставок (из ofd + failed) нужно до target_rate.
      needed >= target/100 * total - delivered
    possible - хватает ли отложенных отправлений; max_rate - лучший достижимый процент
    """
    target = DEFAULT_TARGET_RATE if target_rate is None else float(target_rate)
    total = summary.total
    pending = summary.ofd + summary.failed
    if total == 0:
        return {"needed": 0, "possible": False, "max_rate": 0.0, "pending": 0}

    needed = math.ceil(target * total / 100 - summary.delivered)
    max_rate = (summary.delivered + pending) / total * 100
    return {
        "needed": max(0, needed),
        "possible": 0 < needed <= pending,
        "max_rate": max_rate,
        "pending": pending,
    }


def retention_cutoff(today: Any = None, keep_days: Optional[int] = None) -> str:
    # первая дата, которая ещё хранится; всё раньше - под удаление
    days = DEFAULT_RETENTION_DAYS if keep_days is None else int(keep_days)
    d = try_parse_date(today) if today is not None else date.today().isoformat()
    if not d:
        raise ValueError(f"invalid date: {today!r}")
    base = datetime.strptime(d, "%Y-%m-%d").date()
    return (base - timedelta(days=days)).isoformat()
