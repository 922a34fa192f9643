from __future__ import annotations
from typing import Any, Dict, Iterable, List, Tuple
import re
from rapidfuzz import fuzz
from .utils import cell_text

UNKNOWN = "UNKNOWN"
SYSTEM = "SYSTEM"

# префикс, которым сервис автопереназначения помечает имена
SYSTEM_PREFIX = "SYS_"
# имя самого сервиса после снятия префикса
SYSTEM_SERVICE_NAMES = {"AUTO_REASSIGN"}
CUSTOMER_SUFFIX = " CUSTOMER"
BLANK_MARKERS = {"NAN", "NONE"}


def _clean(raw: Any) -> str:
    s = cell_text(raw)
    s = re.sub(r"\s+", " ", s).strip()
    return s.upper()


def canonicalize(raw: Any) -> str:
    """
    Каноническое имя агента:
    - trim + схлопывание пробелов + upper
    - снимаем префикс SYS_ и хвост " CUSTOMER" (повторно, чтобы функция была идемпотентной)
    - сервис автопереназначения -> SYSTEM
    - пусто (или остался только маркер NAN/NONE) -> UNKNOWN
    Никогда не бросает исключений
    """
    s = _clean(raw)

    changed = True
    while changed and s:
        changed = False
        if s.startswith(SYSTEM_PREFIX):
            s = s[len(SYSTEM_PREFIX):].strip()
            changed = True
        if s.endswith(CUSTOMER_SUFFIX):
            s = s[: -len(CUSTOMER_SUFFIX)].strip()
            changed = True

    if s in SYSTEM_SERVICE_NAMES:
        return SYSTEM
    # "NAN"/"NONE" - текстовые маркеры пустой ячейки
    if not s or s in BLANK_MARKERS:
        return UNKNOWN
    return s


def resolve_alias(raw: Any, table: Dict[str, str] | None) -> str:
    # один переход по таблице, без цепочек: A->B, B->C даёт B
    name = canonicalize(raw)
    if not table:
        return name
    return table.get(name, name)


def alias_chains(table: Dict[str, str]) -> List[Tuple[str, str, str]]:
    # (a, b, c) для каждой пары a->b, b->c; пустой список = таблица без цепочек
    out = []
    for a, b in table.items():
        if b in table and table[b] != b:
            out.append((a, b, table[b]))
    return out


def upsert_alias(table: Dict[str, str], source: Any, target: Any) -> Dict[str, str]:
    """
    Возвращает новую таблицу с правилом source -> target, сохраняя её без цепочек:
      - если target сам перенаправлен (target -> T2), правило пишется как source -> T2
      - входящие правила X -> source переписываются на X -> target
      - самоссылки удаляются
    """
    src = canonicalize(source)
    dst = canonicalize(target)
    out = {canonicalize(k): canonicalize(v) for k, v in (table or {}).items()}

    final = out.get(dst, dst)
    if final == src:
        # target уже указывал на source: разворачиваем правило
        out.pop(dst, None)
        final = dst

    out[src] = final
    for k, v in list(out.items()):
        if v == src:
            out[k] = final

    return {k: v for k, v in out.items() if k != v}


def find_similar_identities(name: Any, candidates: Iterable[str], threshold: int = 85, limit: int = 5) -> List[Tuple[str, int]]:
    # вероятные дубли написания (для экрана алиасов): [(имя, похожесть 0..100)]
    n = canonicalize(name)
    scored = []
    seen = set()
    for c in candidates:
        cn = canonicalize(c)
        if cn == n or cn in seen:
            continue
        seen.add(cn)
        sc = int(fuzz.token_sort_ratio(n, cn))
        if sc >= threshold:
            scored.append((cn, sc))
    scored.sort(key=lambda x: x[1], reverse=True)
    return scored[:limit]
