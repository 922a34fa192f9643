"""
Интерфейсы внешних хранилищ и локальная реализация на одном JSON-файле.

Конвейер сам ничего не сохраняет: IdentityMergeEngine получает хранилища снаружи.
JsonStore - офлайн-режим (и тестовый), документ вида:
  {"aliases": {"SOURCE": "TARGET"}, "history": [<HistoricalRecord>, ...]}
"""
from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from .errors import StoreUnavailableError
from .utils import load_json, save_json, store_path, try_parse_date

logger = logging.getLogger(__name__)


class AliasStore(ABC):
    @abstractmethod
    def fetch_aliases(self) -> Dict[str, str]:
        """Таблица алиасов целиком."""

    @abstractmethod
    def save_aliases(self, table: Dict[str, str]) -> None:
        """Заменяет таблицу целиком (не дельта)."""


class HistoryStore(ABC):
    @abstractmethod
    def fetch_history(self) -> List[Dict[str, Any]]:
        """Записи по дням, новые первыми."""

    @abstractmethod
    def save_daily_record(self, record: Dict[str, Any]) -> None:
        """Сохраняет (перезаписывает) запись дня."""

    @abstractmethod
    def batch_update_agent_name(self, dates: Iterable[str], old_name: str, new_name: str) -> List[str]:
        """Переименовывает агента в записях выбранных дат одним вызовом; возвращает изменённые даты."""

    @abstractmethod
    def delete_agent_globally(self, name: str) -> List[str]:
        """Удаляет агента из всех записей; возвращает изменённые даты."""

    @abstractmethod
    def delete_old_records(self, cutoff_date: str) -> List[str]:
        """Удаляет записи с датой раньше cutoff_date; возвращает удалённые даты."""


def _valid_record(rec: Any) -> bool:
    return isinstance(rec, dict) and isinstance(rec.get("date"), str) and len(rec["date"]) > 0


class JsonStore(AliasStore, HistoryStore):
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else store_path()
        self._lock = threading.Lock()

    # --- low level ---
    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"aliases": {}, "history": []}
        doc = load_json(self.path, None)
        if not isinstance(doc, dict):
            raise StoreUnavailableError(f"store file is unreadable: {self.path}", operation="read")
        doc.setdefault("aliases", {})
        doc.setdefault("history", [])
        return doc

    def _write(self, doc: Dict[str, Any], operation: str) -> None:
        try:
            save_json(self.path, doc)
        except OSError as e:
            logger.warning("Store %s failed: %s", operation, e)
            raise StoreUnavailableError(f"cannot write store file {self.path}: {e}", operation=operation) from e

    # --- aliases ---
    def fetch_aliases(self) -> Dict[str, str]:
        with self._lock:
            aliases = self._read().get("aliases") or {}
        return {str(k): str(v) for k, v in aliases.items()}

    def save_aliases(self, table: Dict[str, str]) -> None:
        with self._lock:
            doc = self._read()
            doc["aliases"] = dict(table)
            self._write(doc, "save_aliases")

    # --- history ---
    def fetch_history(self) -> List[Dict[str, Any]]:
        with self._lock:
            history = [r for r in self._read().get("history", []) if _valid_record(r)]
        return sorted(history, key=lambda r: r["date"], reverse=True)

    def save_daily_record(self, record: Dict[str, Any]) -> None:
        date = try_parse_date(record.get("date"))
        if not date:
            raise ValueError(f"record has no valid date: {record.get('date')!r}")
        rec = dict(record)
        rec["date"] = date
        with self._lock:
            doc = self._read()
            doc["history"] = [h for h in doc["history"] if h.get("date") != date] + [rec]
            self._write(doc, "save_daily_record")

    def batch_update_agent_name(self, dates: Iterable[str], old_name: str, new_name: str) -> List[str]:
        wanted = set(dates)
        changed: List[str] = []
        with self._lock:
            doc = self._read()
            for rec in doc["history"]:
                if not _valid_record(rec) or rec["date"] not in wanted:
                    continue
                hit = False
                for a in rec.get("agents") or []:
                    if a.get("name") == old_name:
                        a["name"] = new_name
                        hit = True
                if hit:
                    changed.append(rec["date"])
            if changed:
                self._write(doc, "batch_update_agent_name")
        return changed

    def delete_agent_globally(self, name: str) -> List[str]:
        changed: List[str] = []
        with self._lock:
            doc = self._read()
            for rec in doc["history"]:
                agents = rec.get("agents") or []
                kept = [a for a in agents if a.get("name") != name]
                if len(kept) != len(agents):
                    rec["agents"] = kept
                    changed.append(rec.get("date", ""))
            if changed:
                self._write(doc, "delete_agent_globally")
        return changed

    def delete_old_records(self, cutoff_date: str) -> List[str]:
        cutoff = try_parse_date(cutoff_date)
        if not cutoff:
            raise ValueError(f"invalid cutoff date: {cutoff_date!r}")
        with self._lock:
            doc = self._read()
            removed = [h.get("date") for h in doc["history"] if _valid_record(h) and h["date"] < cutoff]
            if removed:
                doc["history"] = [h for h in doc["history"] if h.get("date") not in removed]
                self._write(doc, "delete_old_records")
        return removed
