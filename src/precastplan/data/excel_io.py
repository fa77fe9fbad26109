from __future__ import annotations

import io
import re
import unicodedata
from datetime import date, datetime, time

import pandas as pd


def read_excel_bytes(content: bytes) -> pd.DataFrame:
    """Read .xlsx bytes into a DataFrame (first sheet only)."""
    bio = io.BytesIO(content)
    df = pd.read_excel(bio)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def normalize_col_name(name: str) -> str:
    """Normalize Excel column names to an ASCII snake_case token.

    Plant exports come with accents, non-breaking spaces and unit suffixes
    like "Altura (cm)"; those all collapse to plain tokens.
    """

    s = str(name or "").strip().lower()
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[\s\t]+", " ", s)
    s = re.sub(r"[^a-z0-9 ]+", " ", s)
    s = re.sub(r"\s+", "_", s).strip("_")
    return s


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [normalize_col_name(c) for c in df.columns]
    return df


def is_blank(value) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    return not str(value).strip() or str(value).strip().lower() == "nan"


def to_int01(value) -> int:
    """Coerce common Excel numeric/bool-ish values to 0/1."""
    if is_blank(value):
        return 0
    s = str(value).strip().lower()
    if s in {"1", "true", "yes", "y", "si", "sí", "x"}:
        return 1
    if s in {"0", "false", "no", "n"}:
        return 0
    try:
        return 1 if int(float(s)) != 0 else 0
    except ValueError:
        return 0


def to_bool_or_none(value) -> bool | None:
    if is_blank(value):
        return None
    return bool(to_int01(value))


def to_str_or_none(value) -> str | None:
    if is_blank(value):
        return None
    if isinstance(value, float) and float(value).is_integer():
        return str(int(value))
    return str(value).strip()


_DIGITS_RE = re.compile(r"^-?\d+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer cell.

    Accepts ints, floats like 12.0 and digit-only strings. Raises ValueError otherwise.
    """
    if value is None:
        raise ValueError(f"{field} empty")

    if isinstance(value, bool):
        raise ValueError(f"{field} invalid: {value!r}")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if pd.isna(value):
            raise ValueError(f"{field} empty")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} invalid (not an integer): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} empty")
    if _DIGITS_RE.match(s):
        return int(s)
    try:
        f = float(s.replace(",", "."))
    except ValueError:
        raise ValueError(f"{field} invalid: {value!r}") from None
    if f.is_integer():
        return int(f)
    raise ValueError(f"{field} invalid (not an integer): {value!r}")


def coerce_date(value, *, field: str = "date") -> date:
    """Coerce common Excel/Pandas date representations to a date."""
    if is_blank(value):
        raise ValueError(f"{field} empty")

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    # pandas Timestamp
    if hasattr(value, "to_pydatetime"):
        return value.to_pydatetime().date()

    s = str(value).strip()
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass

    for fmt in ("%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"{field} invalid: {value!r}")


def coerce_time(value, *, field: str = "time") -> time | None:
    """Coerce an HH:MM cell (string, time or datetime) to a time. Empty -> None."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.time().replace(second=0, microsecond=0)
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    s = str(value).strip()
    m = re.match(r"^(\d{1,2}):(\d{2})(?::\d{2})?$", s)
    if not m:
        raise ValueError(f"{field} invalid (expected HH:MM): {value!r}")
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        raise ValueError(f"{field} out of range: {value!r}")
    return time(hh, mm)


def coerce_float(value) -> float | None:
    """Coerce common Excel/Pandas numeric representations to float.

    Returns None when value is empty/NaN. Strings may use ',' as decimal separator.
    """
    if is_blank(value):
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    s = str(value).strip()

    # 1.234,56 -> 1234.56
    if "," in s and "." in s:
        s = s.replace(".", "").replace(",", ".")
    elif "," in s:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None
