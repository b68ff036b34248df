from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import pandas as pd

from market_core.aggregate import Measure, Normalizer, group_totals

logger = logging.getLogger(__name__)

REDUCTIONS = (
    "sum",
    "mean",
    "count",
    "count_matching",
    "share_matching",
    "min",
    "max",
    "argmax",
    "argmin",
    "top_by_sum",
    "top_by_mean",
    "sum_per_group",
    "range",
)

MeasureLike = Union[Measure, str, Tuple[str, ...], None]


@dataclass(frozen=True)
class Kpi:
    """One scalar reduction over the filtered frame.

    `dimension` is the label/grouping column for argmax/argmin/top_*/
    sum_per_group and the matched column for count_matching/share_matching.
    `pattern` is a case-insensitive substring (count_matching); `value` an
    exact category (share_matching).
    """

    name: str
    reduction: str
    measure: MeasureLike = None
    dimension: Optional[str] = None
    pattern: Optional[str] = None
    value: Optional[str] = None
    normalize: Normalizer = None

    def __post_init__(self) -> None:
        if self.reduction not in REDUCTIONS:
            raise ValueError(f"Unknown KPI reduction: {self.reduction!r}")


KpiSpec = Sequence[Kpi]


def _column_text(df: pd.DataFrame, column: Optional[str]) -> pd.Series:
    if not column or column not in df.columns:
        return pd.Series([""] * len(df), index=df.index, dtype=object)
    return df[column].astype("string").fillna("").astype(object)


def _top(totals: Dict[Any, float], largest: bool = True) -> Optional[Any]:
    if not totals:
        return None
    items = sorted(totals.items(), key=lambda kv: kv[1], reverse=largest)
    return items[0][0]


def _label_at(df: pd.DataFrame, values: pd.Series, dimension: Optional[str], largest: bool) -> Optional[Any]:
    if values.empty:
        return None
    idx = values.idxmax() if largest else values.idxmin()
    if not dimension or dimension not in df.columns:
        return None
    label = df.at[idx, dimension]
    return None if pd.isna(label) else label


def compute_kpi(df: pd.DataFrame, kpi: Kpi) -> Optional[Any]:
    """Unrounded value of one KPI; None when the frame is empty or nothing qualifies."""
    if df.empty:
        return None
    r = kpi.reduction
    if r == "count":
        return int(len(df))
    if r == "count_matching":
        pattern = (kpi.pattern or "").lower()
        return int(_column_text(df, kpi.dimension).str.lower().str.contains(pattern, regex=False).sum())
    if r == "share_matching":
        hits = (_column_text(df, kpi.dimension) == (kpi.value or "")).sum()
        return 100.0 * float(hits) / len(df)
    if kpi.measure is None:
        raise ValueError(f"KPI {kpi.name!r} ({r}) needs a measure")
    measure = Measure.of(kpi.measure)
    values = measure.values(df)
    if r == "sum":
        return float(values.sum())
    if r == "mean":
        return float(values.mean())
    if r == "min":
        return float(values.min())
    if r == "max":
        return float(values.max())
    if r == "range":
        return (float(values.min()), float(values.max()))
    if r in ("argmax", "argmin"):
        return _label_at(df, values, kpi.dimension, largest=(r == "argmax"))

    if not kpi.dimension:
        raise ValueError(f"KPI {kpi.name!r} ({r}) needs a dimension")
    if r == "top_by_sum":
        return _top(group_totals(df, kpi.dimension, measure, "sum", normalize=kpi.normalize))
    if r == "top_by_mean":
        return _top(group_totals(df, kpi.dimension, measure, "average", normalize=kpi.normalize))
    # sum_per_group
    groups = group_totals(df, kpi.dimension, measure, "sum", normalize=kpi.normalize)
    if not groups:
        return None
    return float(values.sum()) / len(groups)


def summarize(df: pd.DataFrame, spec: KpiSpec) -> Dict[str, Optional[Any]]:
    """Compute every KPI in `spec`; all values are None for an empty frame."""
    result = {kpi.name: compute_kpi(df, kpi) for kpi in spec}
    logger.debug("summarize %d rows -> %s", len(df), result)
    return result
