from __future__ import annotations
import re
import pandas as pd
from .utils import norm_header, is_blank

NUMERIC_RE = re.compile(r"^\s*[-+]?\d+([.,]\d+)?\s*$")

# Ключевые слова, характерные для шапок выгрузок (delivery / pickup)
HEADER_KWS = [
    "da name", "driver", "associate", "agent", "courier",
    "tracking", "airbill", "awb",
    "status", "state", "operation", "reason", "remark",
    "station", "hub", "location", "route", "ship method",
    "delivered", "ofd", "rto", "fail",
    "source", "destination",
]


def _row_keyword_score(row: pd.Series) -> float:
    score = 0.0
    for v in row.tolist():
        h = norm_header(v)
        if not h:
            continue
        for k in HEADER_KWS:
            if k in h:
                score += 1.0
                break
    return score


def _row_headerish_score(row: pd.Series) -> float:
    # похоже на шапку: непустые, короткие, не числа
    nonempty = 0
    shortish = 0
    not_numeric = 0
    for v in row.tolist():
        if is_blank(v):
            continue
        s = str(v).strip()
        nonempty += 1
        if 2 <= len(s) <= 60:
            shortish += 1
        if not NUMERIC_RE.match(s):
            not_numeric += 1
    return 0.3 * nonempty + 0.2 * shortish + 0.2 * not_numeric


def detect_header_row(df_raw: pd.DataFrame, max_scan_rows: int = 30) -> int:
    """
    Возвращает номер строки шапки (0-based) в "матрице" листа.
    Над шапкой в выгрузках бывают баннеры/заголовки отчёта:
      - шапка содержит ключевые слова колонок
      - сильно штрафуем поздний start
    Если ключевых слов нет нигде - первая непустая строка
    """
    n = min(max_scan_rows, len(df_raw))
    first_nonempty = None
    best = None
    best_score = 0.0

    for i in range(n):
        row = df_raw.iloc[i]
        if all(is_blank(v) for v in row.tolist()):
            continue
        if first_nonempty is None:
            first_nonempty = i

        kw = _row_keyword_score(row)
        if kw == 0:
            continue
        score = 2.5 * kw + _row_headerish_score(row) - 0.4 * i
        if best is None or score > best_score:
            best = i
            best_score = score

    if best is not None:
        return best
    return first_nonempty if first_nonempty is not None else 0
