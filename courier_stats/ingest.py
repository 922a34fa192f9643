from __future__ import annotations
import csv
import logging
from io import BytesIO
from typing import List, Dict, Any, Optional
import pandas as pd
from openpyxl import load_workbook
from .header_detect import detect_header_row
from .utils import cell_text, is_blank

logger = logging.getLogger(__name__)
# =========================

# Excel: лист как матрица, merged cells разворачиваем
# =========================
def _sheet_to_matrix_with_merged(wb_bytes: bytes, sheet_name: str) -> List[List[Any]]:
    wb = load_workbook(BytesIO(wb_bytes), read_only=False, data_only=True)
    ws = wb[sheet_name]
    merged_map = {}
    for r in ws.merged_cells.ranges:
        min_col, min_row, max_col, max_row = r.bounds
        top_val = ws.cell(min_row, min_col).value
        for rr in range(min_row, max_row + 1):
            for cc in range(min_col, max_col + 1):
                merged_map[(rr, cc)] = top_val

    rows = []
    for r in range(1, ws.max_row + 1):
        row_vals = []
        for c in range(1, ws.max_column + 1):
            v = ws.cell(r, c).value
            if (r, c) in merged_map and is_blank(v):
                v = merged_map[(r, c)]
            row_vals.append(v)
        rows.append(row_vals)
    return rows
# =========================

# CSV: кодировка + разделитель
# =========================
def _guess_delimiter(sample_text: str) -> str:
    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters=",;\t|")
        if dialect.delimiter:
            return dialect.delimiter
    except csv.Error:
        pass

    # fallback: больше всего разделителей на строку
    lines = [ln for ln in sample_text.splitlines() if ln.strip()][:20]
    if not lines:
        return ","
    scores = {d: sum(ln.count(d) for ln in lines) / len(lines) for d in [",", ";", "\t", "|"]}
    best = max(scores.items(), key=lambda x: x[1])[0]
    return best if scores[best] > 0 else ","


def _read_csv_bytes(data: bytes) -> pd.DataFrame:
    # header=None: шапку ищем сами (над ней бывают строки-баннеры)
    last_err: Optional[Exception] = None
    for enc in ["utf-8-sig", "utf-8", "cp1256", "cp1252"]:
        try:
            sample = data[:65536].decode(enc)
        except UnicodeDecodeError as e:
            last_err = e
            continue
        try:
            return pd.read_csv(
                BytesIO(data),
                header=None,
                sep=_guess_delimiter(sample),
                engine="python",
                encoding=enc,
                dtype=object,
                skip_blank_lines=True,
            )
        except (ValueError, pd.errors.ParserError) as e:
            last_err = e
            continue
    raise ValueError(f"cannot read CSV: {last_err}")


def _make_unique(cols: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out = []
    for i, c in enumerate(cols):
        base = c or f"col_{i + 1}"
        n = seen.get(base, 0) + 1
        seen[base] = n
        out.append(base if n == 1 else f"{base}__{n}")
    return out


def matrix_to_records(df_raw: pd.DataFrame) -> Dict[str, Any]:
    """
    Матрица листа -> {"records": [...], "origin_rows": [...], "header_row": N}
    Ключи записей - тексты шапки; колонки без заголовка и без данных отбрасываются.
    Значения NaN -> None, номера строк - как в исходнике (с 1)
    """
    if df_raw.empty:
        return {"records": [], "origin_rows": [], "header_row": 0}

    h = detect_header_row(df_raw)
    headers = _make_unique([cell_text(v) for v in df_raw.iloc[h].tolist()])
    body = df_raw.iloc[h + 1:]

    keep = []
    for j, name in enumerate(headers):
        titled = not is_blank(df_raw.iat[h, j])
        has_data = any(not is_blank(v) for v in body.iloc[:, j].tolist())
        if titled or has_data:
            keep.append((j, name))

    records: List[Dict[str, Any]] = []
    origin_rows: List[int] = []
    for pos, (_, row) in enumerate(body.iterrows()):
        vals = row.tolist()
        rec = {name: (None if is_blank(vals[j]) else vals[j]) for j, name in keep}
        if all(v is None for v in rec.values()):
            continue
        records.append(rec)
        origin_rows.append(h + 2 + pos)

    return {"records": records, "origin_rows": origin_rows, "header_row": h + 1}
# =========================

# Main: uploads -> tables
# =========================
def load_tables_from_uploads(uploads) -> List[Dict[str, Any]]:
    """
    uploads - объекты с .name и .getvalue() (bytes), как у загрузчиков файлов.
    Возвращает список таблиц:
      {
        "source_name": <имя файла>,
        "sheet_name": <лист или 'CSV'>,
        "records": [{заголовок: значение}, ...],
        "origin_rows": [номер строки в исходнике],
        "header_row": <номер строки шапки>,
      }
    """
    tables: List[Dict[str, Any]] = []

    for up in uploads:
        name = up.name
        data = up.getvalue()

        if name.lower().endswith(".csv"):
            parsed = matrix_to_records(_read_csv_bytes(data))
            tables.append({"source_name": name, "sheet_name": "CSV", **parsed})
            continue

        # Excel
        xls = pd.ExcelFile(BytesIO(data))
        for sheet in xls.sheet_names:
            try:
                df_raw = pd.DataFrame(_sheet_to_matrix_with_merged(data, sheet_name=sheet))
            except (KeyError, ValueError) as e:
                logger.warning("Merged-cell read failed for %s/%s, plain read: %s", name, sheet, e)
                df_raw = pd.read_excel(BytesIO(data), sheet_name=sheet, header=None, dtype=object)
            parsed = matrix_to_records(df_raw)
            tables.append({"source_name": name, "sheet_name": sheet, **parsed})

    return tables
