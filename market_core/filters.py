from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from market_core.data import clean_key
from market_core.schema import (
    CHANNELS_BY_TYPE,
    GENDER_ALL,
    RECORD_COLUMNS,
    YEAR,
    check_dimension,
)

logger = logging.getLogger(__name__)

Records = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]

EVALUATION_KEYS = ("evaluation", "market_evaluation", "marketEvaluation")


class EvaluationMode(str, Enum):
    BY_VALUE = "By Value"
    BY_VOLUME = "By Volume"

    @classmethod
    def parse(cls, raw: object) -> "EvaluationMode":
        if isinstance(raw, cls):
            return raw
        if raw is None or str(raw).strip() == "":
            return cls.BY_VALUE
        s = str(raw).strip().lower()
        if s in {"by volume", "volume"}:
            return cls.BY_VOLUME
        if s in {"by value", "value"}:
            return cls.BY_VALUE
        raise ValueError(f"Unknown market evaluation mode: {raw!r}")


@dataclass(frozen=True)
class FilterSpec:
    """Admissible values per dimension; an empty tuple means no constraint."""

    selections: Dict[str, Tuple[Any, ...]] = field(default_factory=dict)
    evaluation: EvaluationMode = EvaluationMode.BY_VALUE

    def __post_init__(self) -> None:
        for dim in self.selections:
            check_dimension(dim)

    def values(self, dimension: str) -> Tuple[Any, ...]:
        return self.selections.get(dimension, ())

    def constrained(self) -> Dict[str, Tuple[Any, ...]]:
        return {dim: vals for dim, vals in self.selections.items() if vals}

    def with_selection(self, dimension: str, values: Iterable[Any]) -> "FilterSpec":
        selections = dict(self.selections)
        selections[check_dimension(dimension)] = _coerce_values(dimension, values)
        return FilterSpec(selections=selections, evaluation=self.evaluation)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {dim: list(vals) for dim, vals in self.selections.items()}
        out["evaluation"] = self.evaluation.value
        return out


def _as_int_list(values: Iterable[object]) -> List[int]:
    out: List[int] = []
    for v in values:
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            continue
    return out


def _coerce_values(dimension: str, values: object) -> Tuple[Any, ...]:
    if values is None:
        return ()
    if isinstance(values, (str, int)):
        values = [values]
    if dimension == YEAR:
        coerced: List[Any] = _as_int_list(values)  # type: ignore[arg-type]
    else:
        coerced = [str(v).strip() for v in values if v is not None and str(v).strip()]  # type: ignore[union-attr]
    return tuple(dict.fromkeys(coerced))


def normalize_filters(raw: Optional[Mapping[str, Any]], *, dimensions: Optional[Iterable[str]] = None) -> FilterSpec:
    """Build a FilterSpec from raw UI/API state.

    Keys may use source (camelCase) or column names. Unknown keys, or keys
    outside `dimensions` when given, raise UnknownDimensionError.
    """
    raw = dict(raw or {})
    evaluation = EvaluationMode.BY_VALUE
    for key in EVALUATION_KEYS:
        if key in raw:
            evaluation = EvaluationMode.parse(raw.pop(key))
    allowed = list(dimensions) if dimensions is not None else None

    selections: Dict[str, Tuple[Any, ...]] = {}
    for key, values in raw.items():
        dim = check_dimension(RECORD_COLUMNS.get(key, key), allowed)
        selections[dim] = _coerce_values(dim, values)
    return FilterSpec(selections=selections, evaluation=evaluation)


def _as_spec(spec: Union[FilterSpec, Mapping[str, Any], None]) -> FilterSpec:
    if isinstance(spec, FilterSpec):
        return spec
    return normalize_filters(spec)


def apply_filters(df: pd.DataFrame, spec: Union[FilterSpec, Mapping[str, Any], None]) -> pd.DataFrame:
    """Conjunctive set-membership filter; returns a new frame in the original order."""
    spec = _as_spec(spec)
    constrained = spec.constrained()
    if df.empty or not constrained:
        return df.copy()
    mask = pd.Series(True, index=df.index)
    for dim, values in constrained.items():
        if dim not in df.columns:
            mask &= False
            continue
        mask &= df[dim].isin(set(values)).to_numpy(dtype=bool)
    out = df[mask].copy()
    logger.debug("apply_filters kept %d of %d rows (%s)", len(out), len(df), ", ".join(constrained))
    return out


def filter_records(records: Iterable[Mapping[str, Any]], spec: Union[FilterSpec, Mapping[str, Any], None]) -> List[Mapping[str, Any]]:
    """Same semantics as apply_filters for plain record dicts keyed by column name."""
    constrained = {dim: set(vals) for dim, vals in _as_spec(spec).constrained().items()}
    return [r for r in records if all(r.get(dim) in vals for dim, vals in constrained.items())]


def unique_values(data: Records, field_name: str) -> List[Any]:
    """Sorted distinct non-empty values of a field (numeric ascending for years)."""
    if isinstance(data, pd.DataFrame):
        if field_name not in data.columns:
            return []
        raw_values: Iterable[Any] = data[field_name].dropna().unique().tolist()
    else:
        raw_values = {r.get(field_name) for r in data}
    keys = {k for k in (clean_key(v) for v in raw_values) if k is not None}
    if field_name == YEAR or all(isinstance(k, (int, float)) for k in keys):
        return sorted(keys)
    return sorted(str(k) for k in keys)


def filter_options(df: pd.DataFrame, dimensions: Sequence[str]) -> Dict[str, List[Any]]:
    options: Dict[str, List[Any]] = {}
    for dim in dimensions:
        values = unique_values(df, check_dimension(dim))
        if dim == "gender":
            values = [v for v in values if v != GENDER_ALL]
        options[dim] = values
    return options


def default_market_filters(df: pd.DataFrame) -> FilterSpec:
    """Selections applied when the market analysis page first loads."""
    years = unique_values(df, YEAR)
    if 2024 in years and 2025 in years:
        default_years = [2024, 2025]
    elif 2025 in years:
        default_years = [2025]
    elif 2024 in years:
        default_years = [2024]
    else:
        default_years = years[-1:]

    countries = unique_values(df, "country")
    if len(countries) >= 2 and "USA" in countries and "Canada" in countries:
        default_countries = ["USA", "Canada"]
    else:
        default_countries = countries[:2]

    selections: Dict[str, Tuple[Any, ...]] = {
        YEAR: tuple(default_years),
        "country": tuple(default_countries),
    }
    for dim in ("product_type", "blade_material", "handle_length", "application", "end_user"):
        selections[dim] = tuple(unique_values(df, dim))
    selections["distribution_channel_type"] = ()
    selections["distribution_channel"] = ()
    return FilterSpec(selections=selections, evaluation=EvaluationMode.BY_VALUE)


def channel_options(df: pd.DataFrame, channel_types: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """Distribution channels present in the data, grouped by channel type."""
    present = set(unique_values(df, "distribution_channel"))
    groups: List[Dict[str, Any]] = []
    for channel_type, channels in CHANNELS_BY_TYPE.items():
        if channel_types and channel_type not in channel_types:
            continue
        items = [ch for ch in channels if ch in present]
        if items:
            groups.append({"group": channel_type, "items": items})
    return groups


def available_channels(df: pd.DataFrame, channel_types: Sequence[str] = ()) -> List[str]:
    scoped = df
    if channel_types and "distribution_channel_type" in df.columns:
        scoped = df[df["distribution_channel_type"].isin(set(channel_types)).to_numpy(dtype=bool)]
    return unique_values(scoped, "distribution_channel")
