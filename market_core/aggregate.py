"""Grouping and reduction of filtered frames into chart-ready series.

Every function reads only the frame it is given (already filtered) and
returns plain lists/dicts. Invalid grouping keys (null, blank, "undefined",
numeric region names) are dropped before grouping; missing measures count
as 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from market_core.data import NORMALIZERS, clean_key, frame_to_records, truncate_label
from market_core.filters import EvaluationMode, FilterSpec
from market_core.schema import YEAR, check_dimension, check_measure

logger = logging.getLogger(__name__)

MODES = ("sum", "average", "count")
# Numeric labels in these dimensions come from corrupted rows, not real categories.
NUMERIC_INVALID_KEYS = frozenset({"region"})

Normalizer = Union[str, Callable[[object], Optional[Any]], None]


@dataclass(frozen=True)
class Measure:
    """Ordered fallback chain of measure columns.

    A row reads the first column that is present and non-zero, else 0.
    """

    fields: Tuple[str, ...]
    scale: float = 1.0
    label: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("Measure needs at least one field")
        for f in self.fields:
            check_measure(f)

    @classmethod
    def of(cls, spec: Union["Measure", str, Sequence[str]]) -> "Measure":
        if isinstance(spec, Measure):
            return spec
        if isinstance(spec, str):
            return cls((spec,))
        return cls(tuple(spec))

    @property
    def name(self) -> str:
        return self.label or self.fields[0]

    def values(self, df: pd.DataFrame) -> pd.Series:
        out = pd.Series(0.0, index=df.index)
        pending = np.ones(len(df), dtype=bool)
        for f in self.fields:
            if f not in df.columns:
                continue
            col = pd.to_numeric(df[f], errors="coerce").astype(float)
            use = pending & col.notna().to_numpy() & (col.fillna(0.0) != 0).to_numpy()
            out[use] = col[use]
            pending &= ~use
        return out * self.scale


VALUE_MEASURE = Measure(("market_value_usd",), scale=1 / 1000, label="market_size_usd_mn")
VOLUME_MEASURE = Measure(("volume_units",), label="market_volume_units")


def measure_for(evaluation: EvaluationMode) -> Measure:
    return VOLUME_MEASURE if evaluation == EvaluationMode.BY_VOLUME else VALUE_MEASURE


def _resolve_normalizer(normalize: Normalizer) -> Optional[Callable[[object], Optional[Any]]]:
    if normalize is None or callable(normalize):
        return normalize
    return NORMALIZERS[normalize]


def group_keys(df: pd.DataFrame, key: str, normalize: Normalizer = None) -> pd.Series:
    """Cleaned (and optionally normalized) grouping keys; None marks an excluded row."""
    check_dimension(key)
    fn = _resolve_normalizer(normalize)
    reject_numeric = key in NUMERIC_INVALID_KEYS
    if key not in df.columns:
        return pd.Series([None] * len(df), index=df.index, dtype=object)

    def convert(value: object) -> Optional[Any]:
        if fn is not None:
            value = fn(value)
        return clean_key(value, reject_numeric=reject_numeric)

    return df[key].astype(object).map(convert)


def _check_mode(mode: str) -> str:
    if mode not in MODES:
        raise ValueError(f"Unknown aggregation mode: {mode!r} (expected one of {', '.join(MODES)})")
    return mode


def _reduce(grouped: Any, mode: str) -> pd.Series:
    if mode == "count":
        return grouped.size()
    if mode == "average":
        return grouped.mean()
    return grouped.sum()


def _keyed_frame(df: pd.DataFrame, keys: Mapping[str, pd.Series], measure: Measure) -> pd.DataFrame:
    frame = pd.DataFrame({name: series.to_numpy(dtype=object) for name, series in keys.items()}, index=df.index)
    frame["value"] = measure.values(df).to_numpy(dtype=float)
    return frame.dropna(subset=list(keys))


@dataclass(frozen=True)
class PivotSeries:
    """Wide series: one row per period, one numeric column per segment."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    segments: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"rows": self.rows, "segments": self.segments}


def aggregate(
    df: pd.DataFrame,
    group_by: Union[str, Sequence[str]],
    measure: Union[Measure, str, Sequence[str]],
    mode: str = "sum",
    *,
    segments: Optional[Sequence[Any]] = None,
    normalize: Normalizer = None,
) -> Union[Dict[Any, float], PivotSeries]:
    """Group the filtered frame by one key (mapping) or two keys (pivot grid)."""
    _check_mode(mode)
    measure = Measure.of(measure)
    if isinstance(group_by, str):
        return group_totals(df, group_by, measure, mode, normalize=normalize)
    keys = list(group_by)
    if len(keys) != 2:
        raise ValueError(f"group_by takes one or two dimensions, got {len(keys)}")
    return pivot(df, keys[0], keys[1], measure, mode, segments=segments, normalize=normalize)


def group_totals(
    df: pd.DataFrame,
    group_by: str,
    measure: Union[Measure, str, Sequence[str]],
    mode: str = "sum",
    *,
    normalize: Normalizer = None,
) -> Dict[Any, float]:
    _check_mode(mode)
    measure = Measure.of(measure)
    keys = group_keys(df, group_by, normalize)
    if df.empty:
        return {}
    frame = _keyed_frame(df, {"key": keys}, measure)
    if frame.empty:
        return {}
    reduced = _reduce(frame.groupby("key", sort=False)["value"], mode)
    return {k: float(v) for k, v in reduced.items()}


def pivot(
    df: pd.DataFrame,
    period_key: str,
    segment_key: str,
    measure: Union[Measure, str, Sequence[str]],
    mode: str = "sum",
    *,
    segments: Optional[Sequence[Any]] = None,
    periods: Optional[Sequence[Any]] = None,
    normalize: Normalizer = None,
) -> PivotSeries:
    """Zero-filled period x segment grid.

    `segments`, when non-empty, pins the column set (sorted) regardless of
    which columns have data. `periods` pins the row set the same way.
    """
    _check_mode(mode)
    measure = Measure.of(measure)
    check_dimension(period_key)
    period_keys = group_keys(df, period_key)
    segment_keys = group_keys(df, segment_key, normalize)

    if periods is None:
        periods = sorted({p for p in period_keys if p is not None})
    pinned = sorted({s for s in (clean_key(x) for x in (segments or ())) if s is not None}, key=str)
    if pinned:
        cols = pinned
    else:
        cols = sorted({s for s in segment_keys if s is not None}, key=str)
    if not periods:
        return PivotSeries(rows=[], segments=cols)

    frame = _keyed_frame(df, {"period": period_keys, "segment": segment_keys}, measure)
    table: Dict[Tuple[Any, Any], float] = {}
    if not frame.empty:
        reduced = _reduce(frame.groupby(["period", "segment"], sort=False)["value"], mode)
        table = {k: float(v) for k, v in reduced.items()}

    rows: List[Dict[str, Any]] = []
    for p in periods:
        row: Dict[str, Any] = {period_key: p}
        for s in cols:
            row[s] = table.get((p, s), 0.0)
        rows.append(row)
    return PivotSeries(rows=rows, segments=cols)


def stacked_share(
    df: pd.DataFrame,
    segment_key: str,
    measure: Union[Measure, str, Sequence[str]],
    *,
    segments: Optional[Sequence[Any]] = None,
    period_key: str = YEAR,
    periods: Optional[Sequence[Any]] = None,
) -> PivotSeries:
    """Pivot grid without segments that are zero in every row."""
    grid = pivot(df, period_key, segment_key, measure, segments=segments, periods=periods)
    active = [s for s in grid.segments if any(row.get(s, 0.0) != 0 for row in grid.rows)]
    rows = [{k: v for k, v in row.items() if k == period_key or k in active} for row in grid.rows]
    return PivotSeries(rows=rows, segments=active)


def channel_subtype_share(
    df: pd.DataFrame,
    measure: Union[Measure, str, Sequence[str]],
    channel_type: str,
    *,
    period_key: str = YEAR,
) -> PivotSeries:
    """Stacked share of distribution channels within one channel type.

    Rows cover every period of the whole filtered frame, not only the periods
    that have sales through this channel type.
    """
    periods = sorted({p for p in group_keys(df, period_key) if p is not None})
    if "distribution_channel_type" in df.columns:
        scoped = df[(df["distribution_channel_type"] == channel_type).fillna(False).to_numpy(dtype=bool)]
    else:
        scoped = df.iloc[0:0]
    return stacked_share(scoped, "distribution_channel", measure, period_key=period_key, periods=periods)


def series(
    df: pd.DataFrame,
    group_by: str,
    measure: Union[Measure, str, Sequence[str]],
    mode: str = "sum",
    *,
    sort: Optional[str] = "desc",
    limit: Optional[int] = None,
    label_max: Optional[int] = None,
    normalize: Normalizer = None,
    exclude: Iterable[Any] = (),
    categories: Sequence[Any] = (),
    drop_zero: bool = False,
    value_name: str = "value",
) -> List[Dict[str, Any]]:
    """Single-key chart rows `[{group_by: label, value_name: v}]`.

    Year axes are always ascending; other axes follow `sort`. Labels are
    truncated for display only, after grouping on the full value.
    """
    totals = group_totals(df, group_by, measure, mode, normalize=normalize)
    excluded = set(exclude)
    if categories:
        items = [(c, totals.get(c, 0.0)) for c in categories]
    else:
        items = [(k, v) for k, v in totals.items() if k not in excluded]
        if group_by == YEAR:
            items.sort(key=lambda kv: kv[0])
        elif sort == "desc":
            items.sort(key=lambda kv: kv[1], reverse=True)
        elif sort == "asc":
            items.sort(key=lambda kv: kv[1])
    if drop_zero:
        items = [(k, v) for k, v in items if v > 0]
    if limit is not None:
        items = items[:limit]

    rows: List[Dict[str, Any]] = []
    for key, value in items:
        row: Dict[str, Any] = {group_by: key, value_name: value}
        if label_max is not None and isinstance(key, str):
            row[group_by] = truncate_label(key, label_max)
            row["full_label"] = key
        rows.append(row)
    return rows


def share_breakdown(
    df: pd.DataFrame,
    group_by: str,
    measure: Union[Measure, str, Sequence[str]],
    *,
    normalize: Normalizer = None,
    label_max: Optional[int] = None,
    exclude: Iterable[Any] = (),
) -> List[Dict[str, Any]]:
    """Pie rows with `value` and `percent` of the total, descending."""
    rows = series(df, group_by, measure, "sum", sort="desc", normalize=normalize, label_max=label_max, exclude=exclude)
    total = sum(r["value"] for r in rows)
    for r in rows:
        r["percent"] = (100.0 * r["value"] / total) if total > 0 else 0.0
    return rows


def multi_measure_series(
    df: pd.DataFrame,
    group_by: str,
    measures: Mapping[str, Union[Measure, str, Sequence[str]]],
    mode: str = "sum",
) -> List[Dict[str, Any]]:
    """One row per group with one column per named measure (e.g. prevalence and incidence by year)."""
    per_measure = {name: group_totals(df, group_by, m, mode) for name, m in measures.items()}
    keys: List[Any] = []
    for totals in per_measure.values():
        keys.extend(k for k in totals if k not in keys)
    if group_by == YEAR:
        keys.sort()
    return [{group_by: k, **{name: totals.get(k, 0.0) for name, totals in per_measure.items()}} for k in keys]


def region_country_share(
    df: pd.DataFrame,
    measure: Union[Measure, str, Sequence[str]],
    *,
    evaluation: EvaluationMode = EvaluationMode.BY_VALUE,
) -> List[Dict[str, Any]]:
    """Country contribution within each (year, region).

    BY_VALUE rows carry `value` = percentage of the region-year total (0 when
    that total is 0); BY_VOLUME rows carry the raw country value.
    """
    measure = Measure.of(measure)
    if df.empty:
        return []
    keys = {
        "year": group_keys(df, YEAR),
        "region": group_keys(df, "region"),
        "country": group_keys(df, "country"),
    }
    frame = _keyed_frame(df, keys, measure)
    if frame.empty:
        return []
    country_totals = frame.groupby(["year", "region", "country"], sort=False)["value"].sum()
    region_totals = frame.groupby(["year", "region"], sort=False)["value"].sum()

    rows: List[Dict[str, Any]] = []
    for (year, region, country), value in country_totals.items():
        total = float(region_totals[(year, region)])
        value = float(value)
        percentage = (100.0 * value / total) if total > 0 else 0.0
        rows.append(
            {
                "year": year,
                "region": region,
                "country": country,
                "value": value if evaluation == EvaluationMode.BY_VOLUME else percentage,
                "year_region": f"{year} - {region}",
            }
        )
    rows.sort(key=lambda r: (r["year"], str(r["region"]), str(r["country"])))
    return rows


def pair_breakdown(
    df: pd.DataFrame,
    outer: str,
    inner: str,
    measure: Union[Measure, str, Sequence[str]],
    *,
    top: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Long rows `{outer, inner, value}`; `top` keeps the largest outer groups by total."""
    measure = Measure.of(measure)
    if df.empty:
        return []
    frame = _keyed_frame(df, {"outer": group_keys(df, outer), "inner": group_keys(df, inner)}, measure)
    if frame.empty:
        return []
    outer_totals = frame.groupby("outer", sort=False)["value"].sum().sort_values(ascending=False, kind="stable")
    selected = list(outer_totals.index)
    if top is not None:
        selected = selected[:top]
    cells = frame.groupby(["outer", "inner"], sort=False)["value"].sum()
    rows: List[Dict[str, Any]] = []
    for o in selected:
        inner_cells = cells.loc[o]
        for i, value in sorted(inner_cells.items(), key=lambda kv: str(kv[0])):
            rows.append({outer: o, inner: i, "value": float(value)})
    return rows


def sample_points(df: pd.DataFrame, fields: Mapping[str, str], limit: int = 100) -> List[Dict[str, Any]]:
    """First `limit` rows projected to scatter fields (output name -> column)."""
    if df.empty:
        return []
    cols = {name: col for name, col in fields.items() if col in df.columns}
    sample = df.head(limit)[list(cols.values())].rename(columns={v: k for k, v in cols.items()})
    return frame_to_records(sample)


# ---------------- Declarative chart specs ----------------
@dataclass(frozen=True)
class ChartSpec:
    """What a page chart needs: grouping key(s), measure and reduction.

    `measure=None` means the measure selected by the market evaluation mode.
    """

    name: str
    kind: str
    group_by: str = ""
    measure: Union[Measure, str, Tuple[str, ...], None] = None
    mode: str = "sum"
    title: str = ""
    sort: Optional[str] = "desc"
    limit: Optional[int] = None
    label_max: Optional[int] = None
    normalize: Optional[str] = None
    exclude: Tuple[Any, ...] = ()
    categories: Tuple[Any, ...] = ()
    drop_zero: bool = False
    segment_by: Optional[str] = None
    pin_segments: bool = False
    prune_empty: bool = False
    measures: Tuple[Tuple[str, str], ...] = ()
    fields: Tuple[Tuple[str, str], ...] = ()
    value_name: str = "value"


def _chart_measure(chart: ChartSpec, filters: Optional[FilterSpec]) -> Measure:
    if chart.measure is None:
        return measure_for(filters.evaluation if filters is not None else EvaluationMode.BY_VALUE)
    return Measure.of(chart.measure)


def build_chart_series(df: pd.DataFrame, chart: ChartSpec, filters: Optional[FilterSpec] = None) -> Any:
    """Shape the filtered frame for one chart; list of rows or a pivot dict."""
    if chart.kind == "scatter":
        return sample_points(df, dict(chart.fields), limit=chart.limit or 100)
    if chart.kind == "line" and chart.measures:
        return multi_measure_series(df, chart.group_by, dict(chart.measures), chart.mode)

    measure = _chart_measure(chart, filters)
    if chart.kind == "pie":
        return share_breakdown(
            df, chart.group_by, measure, normalize=chart.normalize, label_max=chart.label_max, exclude=chart.exclude
        )
    if chart.kind in ("bar", "line"):
        return series(
            df,
            chart.group_by,
            measure,
            chart.mode,
            sort=chart.sort,
            limit=chart.limit,
            label_max=chart.label_max,
            normalize=chart.normalize,
            exclude=chart.exclude,
            categories=chart.categories,
            drop_zero=chart.drop_zero,
            value_name=chart.value_name,
        )
    if chart.kind == "stacked":
        segment_by = chart.segment_by or ""
        pinned: Sequence[Any] = chart.categories
        if chart.pin_segments and filters is not None:
            pinned = filters.values(segment_by) or pinned
        if chart.prune_empty:
            grid = stacked_share(df, segment_by, measure, segments=pinned, period_key=chart.group_by or YEAR)
        else:
            grid = pivot(df, chart.group_by or YEAR, segment_by, measure, chart.mode, segments=pinned, normalize=chart.normalize)
        return grid.to_dict()
    if chart.kind == "grouped":
        return pair_breakdown(df, chart.group_by, chart.segment_by or "", measure, top=chart.limit)
    if chart.kind == "region_share":
        return region_country_share(
            df, measure, evaluation=filters.evaluation if filters is not None else EvaluationMode.BY_VALUE
        )
    raise ValueError(f"Unknown chart kind: {chart.kind!r}")
