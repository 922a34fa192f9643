from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from .errors import PartialMergeFailure, StoreUnavailableError
from .names import canonicalize, upsert_alias
from .store import AliasStore, HistoryStore
from .utils import try_parse_date

logger = logging.getLogger(__name__)

IDLE = "idle"
VALIDATING = "validating"
REWRITING_HISTORY = "rewriting_history"
SAVING_ALIAS = "saving_alias"
RELOADING = "reloading"
FAILED = "failed"


@dataclass
class MergeReport:
    status: str  # noop | merged | unchanged | deleted | pruned
    source: str
    target: Optional[str] = None
    rewritten_dates: List[str] = field(default_factory=list)
    unaffected_dates: List[str] = field(default_factory=list)
    alias_saved: bool = False
    message: str = ""
    transitions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "source": self.source,
            "target": self.target,
            "rewritten_dates": list(self.rewritten_dates),
            "unaffected_dates": list(self.unaffected_dates),
            "alias_saved": self.alias_saved,
            "message": self.message,
        }


def _date_keys(dates: Iterable[Any]) -> List[str]:
    out = set()
    for d in dates or []:
        key = try_parse_date(d) or (str(d).strip() if d is not None else "")
        if key:
            out.add(key)
    return sorted(out)


def _store_result_dates(res: Any, requested: List[str], operation: str) -> List[str]:
    # хранилище может вернуть список дат, либо просто True/None; False - ошибка
    if res is False:
        raise StoreUnavailableError(f"{operation} reported failure", operation=operation)
    if res is None or res is True:
        return list(requested)
    return sorted(str(d) for d in res)


class IdentityMergeEngine:
    """
    Ретроактивное переименование/слияние агентов.

    Idle -> Validating -> RewritingHistory -> SavingAlias -> Reloading -> Idle
    Idle -> ... -> Failed -> Idle при любой ошибке хранилища.

    Вызовы merge для одного и того же source сериализуются (блокировка на идентичность),
    чтение-запись таблицы алиасов - под отдельной блокировкой.
    После Reloading актуальные history/aliases лежат в self.history / self.aliases.

    self.state - последний переход любого вызова (при параллельных merge по разным
    идентичностям он общий); путь конкретного вызова - report.transitions
    """

    def __init__(self, alias_store: AliasStore, history_store: HistoryStore) -> None:
        self.alias_store = alias_store
        self.history_store = history_store
        self.state = IDLE
        self.history: List[Dict[str, Any]] = []
        self.aliases: Dict[str, str] = {}
        self._guard = threading.Lock()
        self._identity_locks: Dict[str, threading.Lock] = {}
        self._alias_lock = threading.Lock()

    # --- helpers ---
    def _lock_for(self, identity: str) -> threading.Lock:
        with self._guard:
            if identity not in self._identity_locks:
                self._identity_locks[identity] = threading.Lock()
            return self._identity_locks[identity]

    def _enter(self, state: str, report: Optional[MergeReport] = None) -> None:
        logger.info("Identity merge: %s -> %s", self.state, state)
        self.state = state
        if report is not None:
            report.transitions.append(state)

    def _fail(self, report: MergeReport, exc: BaseException) -> None:
        self._enter(FAILED, report)
        logger.warning("Identity merge failed for %s: %s", report.source, exc)
        self._enter(IDLE, report)

    def _probe_rewritten(self, dates: List[str], old_name: str, new_name: str) -> List[str]:
        # после сбоя смотрим, какие даты всё-таки переписаны
        try:
            history = self.history_store.fetch_history()
        except Exception as e:
            logger.warning("Cannot inspect history after failed rewrite: %s", e)
            return []
        wanted = set(dates)
        done = []
        for rec in history or []:
            if rec.get("date") not in wanted:
                continue
            names = {a.get("name") for a in rec.get("agents") or []}
            if new_name in names and old_name not in names:
                done.append(rec["date"])
        return sorted(done)

    def reload(self) -> None:
        try:
            history = self.history_store.fetch_history()
            aliases = self.alias_store.fetch_aliases()
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"reload failed: {e}", operation="reload") from e
        self.history = list(history or [])
        self.aliases = dict(aliases or {})

    def _reload_step(self, report: MergeReport) -> None:
        self._enter(RELOADING, report)
        try:
            self.reload()
        except StoreUnavailableError as e:
            self._fail(report, e)
            raise

    # --- operations ---
    def merge(
        self,
        source: str,
        target_raw: str,
        affected_dates: Iterable[Any] = (),
        persist_as_rule: bool = True,
    ) -> MergeReport:
        """
        Переименовать агента source в target_raw.
          - даты affected_dates переписываются одним пакетным вызовом хранилища
          - persist_as_rule: правило source -> target сохраняется в таблицу алиасов (всю таблицу)
        Если target совпадает с source и дат нет - status="noop", хранилище не трогаем.
        Ошибка после частичной записи -> PartialMergeFailure
        """
        src_key = canonicalize(source)
        with self._lock_for(src_key):
            return self._merge_locked(source, src_key, target_raw, _date_keys(affected_dates), persist_as_rule)

    def _merge_locked(self, source: str, src_key: str, target_raw: str, dates: List[str], persist_as_rule: bool) -> MergeReport:
        # история хранит канонические имена
        old_name = src_key
        report = MergeReport(status="merged", source=old_name)
        self._enter(VALIDATING, report)

        target = canonicalize(target_raw)
        report.target = target
        if target == src_key and not dates:
            report.status = "noop"
            report.message = "No changes detected."
            self._enter(IDLE, report)
            return report

        # 1) история (ретроактивно)
        if dates and target != src_key:
            self._enter(REWRITING_HISTORY, report)
            try:
                res = self.history_store.batch_update_agent_name(dates, old_name, target)
                report.rewritten_dates = _store_result_dates(res, dates, "batch_update_agent_name")
            except Exception as e:
                done = self._probe_rewritten(dates, old_name, target)
                self._fail(report, e)
                if done:
                    raise PartialMergeFailure(
                        f"history rewrite for {old_name!r} stopped after {len(done)} of {len(dates)} date(s)",
                        stage=REWRITING_HISTORY,
                        rewritten_dates=done,
                        unaffected_dates=[d for d in dates if d not in done],
                        cause=e,
                    ) from e
                if isinstance(e, StoreUnavailableError):
                    raise
                raise StoreUnavailableError(f"history rewrite failed: {e}", operation="batch_update_agent_name") from e
            report.unaffected_dates = [d for d in dates if d not in report.rewritten_dates]

        # 2) правило на будущее
        if persist_as_rule and target != src_key:
            self._enter(SAVING_ALIAS, report)
            try:
                with self._alias_lock:
                    table = self.alias_store.fetch_aliases() or {}
                    new_table = upsert_alias(table, src_key, target)
                    if self.alias_store.save_aliases(new_table) is False:
                        raise StoreUnavailableError("save_aliases reported failure", operation="save_aliases")
                report.alias_saved = True
            except Exception as e:
                self._fail(report, e)
                if report.rewritten_dates:
                    raise PartialMergeFailure(
                        f"history for {old_name!r} rewritten but alias rule was not saved",
                        stage=SAVING_ALIAS,
                        rewritten_dates=report.rewritten_dates,
                        unaffected_dates=report.unaffected_dates,
                        alias_saved=False,
                        cause=e,
                    ) from e
                if isinstance(e, StoreUnavailableError):
                    raise
                raise StoreUnavailableError(f"alias save failed: {e}", operation="save_aliases") from e

        if not report.rewritten_dates and not report.alias_saved:
            report.status = "unchanged"

        # 3) перечитать историю и алиасы
        self._reload_step(report)
        report.message = f"{old_name} -> {target}: {len(report.rewritten_dates)} date(s) rewritten" + (
            ", alias saved" if report.alias_saved else ""
        )
        self._enter(IDLE, report)
        return report

    def delete(self, identity: str) -> MergeReport:
        """
        Безвозвратно удаляет агента из всех записей истории, минуя таблицу алиасов.
        Подтверждение - ответственность вызывающего
        """
        name = canonicalize(identity)
        with self._lock_for(name):
            report = MergeReport(status="deleted", source=name)
            self._enter(REWRITING_HISTORY, report)
            try:
                res = self.history_store.delete_agent_globally(name)
            except Exception as e:
                self._fail(report, e)
                if isinstance(e, StoreUnavailableError):
                    raise
                raise StoreUnavailableError(f"delete failed: {e}", operation="delete_agent_globally") from e
            report.rewritten_dates = _store_result_dates(res, [], "delete_agent_globally")
            self._reload_step(report)
            report.message = f"{name} removed from {len(report.rewritten_dates)} record(s)"
            self._enter(IDLE, report)
            return report

    def prune(self, cutoff_date: Any) -> MergeReport:
        # удалить записи старше cutoff_date (retention)
        cutoff = try_parse_date(cutoff_date)
        if not cutoff:
            raise ValueError(f"invalid cutoff date: {cutoff_date!r}")
        report = MergeReport(status="pruned", source="", target=None)
        self._enter(REWRITING_HISTORY, report)
        try:
            res = self.history_store.delete_old_records(cutoff)
        except Exception as e:
            self._fail(report, e)
            if isinstance(e, StoreUnavailableError):
                raise
            raise StoreUnavailableError(f"prune failed: {e}", operation="delete_old_records") from e
        report.rewritten_dates = _store_result_dates(res, [], "delete_old_records")
        self._reload_step(report)
        report.message = f"{len(report.rewritten_dates)} record(s) older than {cutoff} removed"
        self._enter(IDLE, report)
        return report
