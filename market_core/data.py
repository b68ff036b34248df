from __future__ import annotations

import csv
import logging
import re
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from market_core.schema import DATASETS, DIMENSIONS, MEASURES, RECORD_COLUMNS, TEXT_FIELDS, YEAR

logger = logging.getLogger(__name__)

FILE_SUFFIXES = (".csv", ".json", ".xlsx")
NA_TOKENS = {"", "nan", "none", "null", "undefined", "<na>", "n/a"}
NA_DISPLAY = "N/A"


# ---------------- Cleaning ----------------
def coerce_str_safe(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            series = df[col].astype("string").str.strip()
            series = series.mask(series.str.lower().isin({"", "nan", "none", "<na>"}))
            df[col] = series
    return df


def numericize(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def ensure_year_col(df: pd.DataFrame, year_col: str = YEAR) -> pd.DataFrame:
    if year_col in df.columns:
        df[year_col] = pd.to_numeric(df[year_col], errors="coerce").round().astype("Int64")
    return df


def prepare_frame(raw: pd.DataFrame) -> pd.DataFrame:
    """Rename source keys, add missing declared columns and coerce dtypes."""
    df = raw.rename(columns=RECORD_COLUMNS)
    df = df.loc[:, ~df.columns.duplicated()].copy()
    for col in DIMENSIONS + MEASURES + TEXT_FIELDS:
        if col not in df.columns:
            df[col] = pd.NA
    df = coerce_str_safe(df, [c for c in DIMENSIONS if c != YEAR])
    df = coerce_str_safe(df, TEXT_FIELDS)
    df = ensure_year_col(df)
    df = numericize(df, MEASURES)
    if df["estimated_volume_units"].isna().all():
        df["estimated_volume_units"] = df["estimated_volume_requirement"].astype(object).map(parse_volume_range).astype(float)
    return df.reset_index(drop=True)


def clean_key(value: object, *, reject_numeric: bool = False) -> Optional[Any]:
    """Return a usable grouping key, or None for null/blank/placeholder values."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return None
    if not isinstance(value, str):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value.item() if hasattr(value, "item") else value
    s = value.strip()
    if s.lower() in NA_TOKENS:
        return None
    if reject_numeric and s.isdigit():
        return None
    return s


def truncate_label(text: str, max_len: Optional[int]) -> str:
    if max_len is None or len(text) <= max_len:
        return text
    return text[: max(0, max_len - 3)] + "..."


_DIGIT_GROUP = re.compile(r"\d[\d,]*")


def parse_volume_range(text: object) -> int:
    """Representative volume of a free-text range like "6,000-10,000 units/year".

    Two numbers -> their mean (half-up), one -> itself, none -> 0.
    """
    if text is None or not isinstance(text, str):
        return 0
    numbers = [int(g.replace(",", "")) for g in _DIGIT_GROUP.findall(text) if g.replace(",", "")]
    if not numbers:
        return 0
    if len(numbers) == 1:
        return numbers[0]
    return int(round_half_up((numbers[0] + numbers[1]) / 2))


def normalize_lead_potential(label: object) -> Optional[str]:
    if label is None or not isinstance(label, str):
        return None
    s = label.strip()
    if not s:
        return None
    lowered = s.lower()
    for token, canonical in (("hot", "Hot"), ("warm", "Warm"), ("cold", "Cold")):
        if token in lowered:
            return canonical
    return s


def unknown_if_blank(label: object) -> str:
    key = clean_key(label)
    return "Unknown" if key is None else str(key)


NORMALIZERS: Dict[str, Callable[[object], Optional[Any]]] = {
    "lead_potential": normalize_lead_potential,
    "unknown_if_blank": unknown_if_blank,
}


# ---------------- Record store ----------------
@dataclass(frozen=True, eq=False)
class RecordStore:
    """Immutable collection of records for one dataset, owned by the view that loaded it."""

    dataset: str
    _frame: pd.DataFrame = field(repr=False)
    source: Optional[str] = None
    # Keys as they appeared in the source records, in first-seen order.
    source_columns: Tuple[str, ...] = ()

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, dataset: str = "market", source: Optional[str] = None) -> "RecordStore":
        columns = tuple(dict.fromkeys(str(c) for c in frame.columns))
        return cls(dataset=dataset, _frame=prepare_frame(frame), source=source, source_columns=columns)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]], dataset: str = "market") -> "RecordStore":
        return cls.from_frame(pd.DataFrame.from_records(list(records)), dataset=dataset)

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def __len__(self) -> int:
        return len(self._frame)

    def to_source(self, df: pd.DataFrame) -> pd.DataFrame:
        """Rows of `df` restricted to the source keys, under their source names."""
        return to_source_columns(df, self.source_columns)


def to_source_columns(df: pd.DataFrame, source_columns: Iterable[str]) -> pd.DataFrame:
    picked: Dict[str, str] = {}
    for key in source_columns:
        col = RECORD_COLUMNS.get(key, key)
        if col in df.columns and col not in picked:
            picked[col] = key
    return df.loc[:, list(picked)].rename(columns=picked)


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict(orient="records")


# ---------------- Loaders ----------------
def find_dataset_file(dataset: str, data_dir: Path) -> Path:
    if dataset not in DATASETS:
        raise ValueError(f"Unknown dataset: {dataset!r}")
    for suffix in FILE_SUFFIXES:
        path = Path(data_dir) / f"{dataset}{suffix}"
        if path.exists():
            return path
    raise FileNotFoundError(f"No {dataset} data file ({', '.join(FILE_SUFFIXES)}) in {data_dir}")


def read_records_file(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix == ".json":
        return pd.read_json(path, orient="records")
    if suffix == ".xlsx":
        return pd.read_excel(path)
    raise ValueError(f"Unsupported record file: {path.name}")


def file_signature(path: Path) -> Tuple[str, float]:
    return str(path), path.stat().st_mtime


@lru_cache(maxsize=8)
def _load_store_cached(dataset: str, signature: Tuple[str, float]) -> RecordStore:
    path = Path(signature[0])
    raw = read_records_file(path)
    store = RecordStore.from_frame(raw, dataset=dataset, source=path.name)
    logger.info("Loaded %d %s records from %s", len(store), dataset, path.name)
    return store


def load_record_store(dataset: str, data_dir: Path, *, delay_ms: int = 0) -> RecordStore:
    """Load (or reuse) the immutable store for a dataset file.

    Stores are keyed on the file path and mtime, so an edited file yields a new
    store; nothing is ever invalidated by hand.
    """
    path = find_dataset_file(dataset, data_dir)
    signature = file_signature(path)
    if delay_ms and _load_store_cached.cache_info().currsize == 0:
        time.sleep(delay_ms / 1000.0)
    return _load_store_cached(dataset, signature)


# ---------------- Export ----------------
def _integral_to_int(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in out.columns:
        series = out[col]
        if pd.api.types.is_float_dtype(series):
            values = series.dropna()
            if (values % 1 == 0).all():
                out[col] = series.round().astype("Int64")
    return out


def records_to_csv(data: pd.DataFrame | Iterable[Mapping[str, Any]]) -> str:
    """Flatten records to CSV: union of keys as header, every value quoted, absent -> empty."""
    df = data if isinstance(data, pd.DataFrame) else pd.DataFrame.from_records(list(data))
    if df.empty and not len(df.columns):
        return ""
    return _integral_to_int(df).to_csv(index=False, quoting=csv.QUOTE_ALL, na_rep="", lineterminator="\n")


# ---------------- Formatting ----------------
def round_half_up(value: object, ndigits: int = 0) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    q = Decimal(10) ** -ndigits
    return float(Decimal(str(value)).quantize(q, rounding=ROUND_HALF_UP))


def format_with_commas(value: object, decimals: int = 2) -> str:
    if value is None or pd.isna(value):
        return NA_DISPLAY
    return f"{round_half_up(value, decimals):,.{decimals}f}"


def format_millions(value: object, *, divisor: float = 1000.0, decimals: int = 2, suffix: str = "M") -> str:
    # Source measures are in thousands; divisor=1000 shows millions.
    if value is None or pd.isna(value):
        return NA_DISPLAY
    return f"{format_with_commas(float(value) / divisor, decimals)}{suffix}"


def format_percent(value: object, decimals: int = 1) -> str:
    if value is None or pd.isna(value):
        return NA_DISPLAY
    return f"{round_half_up(value, decimals):.{decimals}f}%"


def format_currency(value: object, decimals: int = 0) -> str:
    if value is None or pd.isna(value):
        return NA_DISPLAY
    return f"${format_with_commas(value, decimals)}"


def format_range(low: object, high: object, decimals: int = 0) -> str:
    if low is None or high is None or pd.isna(low) or pd.isna(high):
        return NA_DISPLAY
    return f"{format_currency(low, decimals)} - {format_currency(high, decimals)}"


def format_count(value: object) -> str:
    if value is None or pd.isna(value):
        return NA_DISPLAY
    return f"{int(round_half_up(value)):,}"


def format_kpis(values: Mapping[str, Any], formats: Mapping[str, Callable[[Any], str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for name, value in values.items():
        if value is None:
            out[name] = NA_DISPLAY
        elif name in formats:
            out[name] = formats[name](value)
        else:
            out[name] = str(value)
    return out
