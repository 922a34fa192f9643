import os
import re
import json
import math
from pathlib import Path
from typing import Any, Optional
from dateutil import parser as dtparser

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

COURIER_STATS_HOME = os.environ.get("COURIER_STATS_HOME")
if COURIER_STATS_HOME:
    USER_DATA_DIR = Path(COURIER_STATS_HOME)
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default

def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)

_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP варианты
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_LEAD_INT_RE = re.compile(r"^\s*[-+]?\d+")


def is_blank(v: Any) -> bool:
    # пустая ячейка: None, NaN из pandas, пустая строка или текстовое "nan"
    if v is None:
        return True
    if isinstance(v, float) and math.isnan(v):
        return True
    s = str(v).strip()
    return s == "" or s.lower() in ("nan", "none")


def cell_text(v: Any) -> str:
    if is_blank(v):
        return ""
    s = str(v).replace("\ufeff", "")
    return _NBSP_RE.sub(" ", s).strip()


def collapse_ws(s: Any) -> str:
    return re.sub(r"\s+", " ", cell_text(s)).strip()


def norm_text(s: Any) -> str:
    """
    Нормализация текста для сравнения:
    - BOM/неразрывные пробелы
    - внешние кавычки
    - lower
    - схлопывание пробелов
    """
    s = cell_text(s)
    if not s:
        return ""
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    s = s.lower()
    s = re.sub(r"\s+", " ", s).strip()
    return s


def norm_header(s: Any) -> str:
    """
    Нормализация заголовка колонки:
    "daName", "DA Name", "da_name", "DA-NAME" -> "da name"
    """
    raw = cell_text(s)
    if not raw:
        return ""
    raw = _CAMEL_RE.sub(r"\1 \2", raw)
    raw = re.sub(r"[_\-]+", " ", raw)
    return norm_text(raw)


def norm_upper(s: Any) -> str:
    # статусы/причины сравниваем в верхнем регистре
    return collapse_ws(s).upper()


def as_count(x: Any) -> int:
    """
    Счётчик из ячейки: ведущее целое число ("12 шт" -> 12), float усекается.
    Нечисловое/пустое/отрицательное -> 0
    """
    if is_blank(x) or isinstance(x, bool):
        return 0
    if isinstance(x, (int, float)):
        try:
            n = int(x)
        except (OverflowError, ValueError):
            return 0
        return max(0, n)
    m = _LEAD_INT_RE.match(str(x))
    if not m:
        return 0
    return max(0, int(m.group(0)))


def try_parse_date(s: Any) -> Optional[str]:
    # ключ даты в формате YYYY-MM-DD (для истории и retention)
    if s is None:
        return None

    # pandas.Timestamp / datetime.date / datetime.datetime
    if hasattr(s, "year") and hasattr(s, "month") and hasattr(s, "day"):
        try:
            return f"{int(s.year):04d}-{int(s.month):02d}-{int(s.day):02d}"
        except (TypeError, ValueError):
            pass

    txt = norm_text(s)
    if not txt:
        return None

    # yyyy-mm-dd
    if re.match(r"^\d{4}[./-]\d{1,2}[./-]\d{1,2}", txt):
        try:
            dt = dtparser.parse(txt, dayfirst=False, fuzzy=True)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    # dd.mm.yyyy
    if re.match(r"^\d{1,2}[./-]\d{1,2}[./-]\d{2,4}$", txt):
        try:
            dt = dtparser.parse(txt, dayfirst=True, fuzzy=True)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    return None

def rules_path() -> Path:
    return DEFAULT_DATA_DIR / "rules.json"

def store_path() -> Path:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return USER_DATA_DIR / "station_store.json"


RULES = load_json(rules_path(), {})
