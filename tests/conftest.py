"""
tests/conftest.py

Shared fixtures: in-memory stores (with configurable failures) and
small record batches for each sheet layout.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List

import pytest

from courier_stats.errors import StoreUnavailableError
from courier_stats.store import AliasStore, HistoryStore


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryStore(AliasStore, HistoryStore):
    """
    Alias + history store kept in memory.

    fail_on        - operation names that raise StoreUnavailableError
    rewrite_limit  - batch_update_agent_name writes this many dates, then raises
    """

    def __init__(self, history: List[Dict[str, Any]] | None = None, aliases: Dict[str, str] | None = None) -> None:
        self.history = copy.deepcopy(history or [])
        self.aliases = dict(aliases or {})
        self.fail_on: set = set()
        self.rewrite_limit: int | None = None
        self.calls: List[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise StoreUnavailableError(f"{op} unavailable", operation=op)

    def fetch_aliases(self) -> Dict[str, str]:
        self._check("fetch_aliases")
        return dict(self.aliases)

    def save_aliases(self, table: Dict[str, str]) -> None:
        self._check("save_aliases")
        self.aliases = dict(table)

    def fetch_history(self) -> List[Dict[str, Any]]:
        self._check("fetch_history")
        return sorted(copy.deepcopy(self.history), key=lambda r: r["date"], reverse=True)

    def save_daily_record(self, record: Dict[str, Any]) -> None:
        self._check("save_daily_record")
        self.history = [h for h in self.history if h["date"] != record["date"]] + [copy.deepcopy(record)]

    def batch_update_agent_name(self, dates: Iterable[str], old_name: str, new_name: str) -> List[str]:
        self._check("batch_update_agent_name")
        changed: List[str] = []
        for d in sorted(dates):
            if self.rewrite_limit is not None and len(changed) >= self.rewrite_limit:
                raise RuntimeError("connection reset during batch write")
            for rec in self.history:
                if rec["date"] != d:
                    continue
                for a in rec["agents"]:
                    if a["name"] == old_name:
                        a["name"] = new_name
                changed.append(d)
        return changed

    def delete_agent_globally(self, name: str) -> List[str]:
        self._check("delete_agent_globally")
        changed = []
        for rec in self.history:
            kept = [a for a in rec["agents"] if a["name"] != name]
            if len(kept) != len(rec["agents"]):
                rec["agents"] = kept
                changed.append(rec["date"])
        return changed

    def delete_old_records(self, cutoff_date: str) -> List[str]:
        self._check("delete_old_records")
        removed = [h["date"] for h in self.history if h["date"] < cutoff_date]
        self.history = [h for h in self.history if h["date"] >= cutoff_date]
        return removed


def day(date: str, *agents: tuple) -> Dict[str, Any]:
    """History record for `date` with (name, delivered, total) agent tuples."""
    rows = [{"name": n, "delivered": d, "total": t, "success_rate": (d / t * 100) if t else 0.0} for n, d, t in agents]
    return {
        "date": date,
        "timestamp": 0,
        "station_total": {
            "delivered": sum(r["delivered"] for r in rows),
            "total": sum(r["total"] for r in rows),
            "success_rate": 0.0,
        },
        "agents": rows,
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def john_store() -> MemoryStore:
    return MemoryStore(history=[
        day("2024-01-01", ("JOHN", 8, 10), ("MARY", 5, 5)),
        day("2024-01-02", ("JOHN", 9, 10)),
        day("2024-01-03", ("MARY", 3, 4)),
    ])


@pytest.fixture()
def shipment_records() -> List[Dict[str, Any]]:
    return [
        {"Tracking ID": "T1", "DA Name": "ali ahmed", "Status": "DELIVERED", "Station": "DQN3"},
        {"Tracking ID": "T2", "DA Name": "Ali  Ahmed ", "Status": "OUT_FOR_DELIVERY", "Station": "DQN3"},
        {"Tracking ID": "T3", "DA Name": "omar", "Status": "REJECTED", "Station": "DQN3"},
        {"Tracking ID": "T4", "DA Name": "omar", "Status": "DELIVERY_ATTEMPTED", "Station": "dqn3"},
        {"Tracking ID": "T5", "DA Name": "omar", "Status": "DELIVERED", "Station": "DXB1"},
        {"Tracking ID": "T6", "DA Name": "omar", "Status": "LOST_IN_SPACE", "Station": "DQN3"},
    ]


@pytest.fixture()
def summary_records() -> List[Dict[str, Any]]:
    return [
        {"Station": "DQN3", "DA Name": "Ali Ahmed", "Delivered": 40, "Failed Attempts": 2, "OFD": 1, "RTO": 0},
        {"Station": "DQN3", "DA Name": "omar", "Delivered": "12", "Failed Attempts": "x", "OFD": None, "RTO": 3},
        {"Station": "DXB1", "DA Name": "other hub", "Delivered": 99, "Failed Attempts": 0, "OFD": 0, "RTO": 0},
        {"Station": "DQN3", "DA Name": "Grand Total", "Delivered": 52, "Failed Attempts": 2, "OFD": 1, "RTO": 3},
        {"Station": "DQN3", "DA Name": "", "Delivered": 7, "Failed Attempts": 0, "OFD": 0, "RTO": 0},
    ]


@pytest.fixture()
def pickup_records() -> List[Dict[str, Any]]:
    return [
        {"Tracking": "P1", "Courier": "Sara", "State": "PICKUP FAILED", "Reason": "", "Source": "A", "Destination": "B"},
        {"Tracking": "P2", "Courier": "Sara", "State": "RECEIVED", "Reason": "", "Source": "A", "Destination": "B"},
        {"Tracking": "P3", "Courier": "Sara", "State": "FAILED", "Reason": "OTP mismatch", "Source": "A", "Destination": "B"},
        {"Tracking": "P4", "Courier": "Nour", "State": "FAILED", "Reason": "Phone switched off", "Source": "A", "Destination": "B"},
        {"Tracking": "P5", "Courier": "Nour", "State": "FAILED", "Reason": "No answer", "Source": "A", "Destination": "B"},
        {"Tracking": "P6", "Courier": "Nour", "State": "ASSIGNED", "Reason": "", "Source": "A", "Destination": "B"},
        {"Tracking": "P7", "Courier": "Nour", "State": "OPEN", "Reason": "Customer refused", "Source": "A", "Destination": "B"},
    ]
