"""
Ошибки конвейера.

EmptySheetError     - лист без единого значения, партия отклоняется целиком
StoreUnavailableError - внешнее хранилище не ответило; повтор - на стороне вызывающего
PartialMergeFailure - слияние агентов записало часть дат и упало
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional


class EmptySheetError(ValueError):
    """Ни в одной строке листа нет ни одного значения."""


class StoreUnavailableError(RuntimeError):
    """Вызов внешнего хранилища (история/алиасы) завершился ошибкой."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class PartialMergeFailure(StoreUnavailableError):
    """
    Слияние агентов прервано после частичной записи.
    Транзакции между датами нет, поэтому вызывающий получает
    списки изменённых и нетронутых дат как есть.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        rewritten_dates: Iterable[str] = (),
        unaffected_dates: Iterable[str] = (),
        alias_saved: bool = False,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, operation=stage)
        self.stage = stage
        self.rewritten_dates: List[str] = sorted(rewritten_dates)
        self.unaffected_dates: List[str] = sorted(unaffected_dates)
        self.alias_saved = alias_saved
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": str(self),
            "stage": self.stage,
            "rewritten_dates": list(self.rewritten_dates),
            "unaffected_dates": list(self.unaffected_dates),
            "alias_saved": self.alias_saved,
            "cause": repr(self.cause) if self.cause is not None else None,
        }
