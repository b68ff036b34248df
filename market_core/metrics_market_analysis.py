from __future__ import annotations

import logging
from functools import partial
from typing import Any, Dict, Mapping, Optional, Union

import pandas as pd

from market_core.aggregate import ChartSpec, build_chart_series, channel_subtype_share, measure_for
from market_core.charts import chart_for
from market_core.data import RecordStore, format_kpis, format_millions
from market_core.filters import (
    EvaluationMode,
    FilterSpec,
    apply_filters,
    channel_options,
    default_market_filters,
    filter_options,
    normalize_filters,
)
from market_core.kpis import Kpi, summarize
from market_core.schema import CHANNELS_BY_TYPE, YEAR

logger = logging.getLogger(__name__)

PAGE = "market_analysis"
DATASET = "shovel_market"
DIMENSIONS = (
    YEAR,
    "country",
    "product_type",
    "blade_material",
    "handle_length",
    "application",
    "end_user",
    "distribution_channel_type",
    "distribution_channel",
)

# Year pivots whose columns follow the user's selection, zero or not.
PIVOT_DIMENSIONS = ("product_type", "blade_material", "handle_length", "application", "end_user", "country")
# Stacked shares that hide segments with no value in any year.
SHARE_DIMENSIONS = ("blade_material", "handle_length", "application", "end_user", "distribution_channel_type")

CHARTS = (
    tuple(
        ChartSpec(f"{dim}_by_year", "stacked", group_by=YEAR, segment_by=dim, pin_segments=True)
        for dim in PIVOT_DIMENSIONS
    )
    + (ChartSpec("region_country_share", "region_share", title="Country Share by Region"),)
    + tuple(
        ChartSpec(f"{dim}_share", "stacked", group_by=YEAR, segment_by=dim, pin_segments=True, prune_empty=True)
        for dim in SHARE_DIMENSIONS
    )
)

TOTAL_VALUE_FORMATS = {
    EvaluationMode.BY_VALUE: partial(format_millions, divisor=1.0, decimals=1, suffix="M"),
    EvaluationMode.BY_VOLUME: partial(format_millions, divisor=1000.0, decimals=1, suffix="K Units"),
}


def market_filters(raw: Union[FilterSpec, Mapping[str, Any], None]) -> FilterSpec:
    if isinstance(raw, FilterSpec):
        return raw
    return normalize_filters(raw, dimensions=DIMENSIONS)


def market_options(df: pd.DataFrame, filters: Optional[FilterSpec] = None) -> Dict[str, Any]:
    options: Dict[str, Any] = filter_options(df, DIMENSIONS)
    channel_types = filters.values("distribution_channel_type") if filters is not None else ()
    options["distribution_channel"] = channel_options(df, channel_types)
    options["market_evaluation"] = [m.value for m in EvaluationMode]
    return options


def compute_market_analysis(filters: Union[FilterSpec, Mapping[str, Any], None], store: RecordStore) -> Dict[str, Any]:
    """Market analysis page: year pivots, region/country share, channel mix."""
    f = market_filters(filters)
    df = store.frame
    filtered = apply_filters(df, f)
    measure = measure_for(f.evaluation)

    series: Dict[str, Any] = {chart.name: build_chart_series(filtered, chart, f) for chart in CHARTS}
    charts: Dict[str, Any] = {chart.name: chart_for(chart, series[chart.name]) for chart in CHARTS}

    for channel_type in CHANNELS_BY_TYPE:
        if channel_type not in f.values("distribution_channel_type"):
            continue
        name = f"{channel_type.lower()}_channel_share"
        spec = ChartSpec(name, "stacked", group_by=YEAR, segment_by="distribution_channel", title=f"{channel_type} Channels")
        series[name] = channel_subtype_share(filtered, measure, channel_type).to_dict()
        charts[name] = chart_for(spec, series[name])

    kpis = summarize(filtered, [Kpi("total_value", "sum", measure)])
    logger.info("market_analysis: %d of %d rows, evaluation=%s", len(filtered), len(df), f.evaluation.value)
    return {
        "page": PAGE,
        "filters": f.to_dict(),
        "row_count": int(len(filtered)),
        "measure": measure.name,
        "options": market_options(df, f),
        "kpis": kpis,
        "kpis_display": format_kpis(kpis, {"total_value": TOTAL_VALUE_FORMATS[f.evaluation]}),
        "series": series,
        "charts": charts,
    }


def default_filters(store: RecordStore) -> FilterSpec:
    return default_market_filters(store.frame)
