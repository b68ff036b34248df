from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from market_core.aggregate import ChartSpec, build_chart_series
from market_core.charts import chart_for
from market_core.data import (
    RecordStore,
    format_count,
    format_kpis,
    format_with_commas,
    frame_to_records,
    truncate_label,
)
from market_core.filters import FilterSpec, apply_filters, filter_options, normalize_filters, unique_values
from market_core.kpis import Kpi, summarize
from market_core.schema import RECORD_COLUMNS, TEXT_FIELDS, check_dimension

logger = logging.getLogger(__name__)

PAGE = "customer_intelligence"
DATASET = "customer_intelligence"
DIMENSIONS = (
    "region",
    "industry_sector",
    "type_of_shovel_required",
    "quality_preference",
    "price_sensitivity",
    "lead_potential",
)
TABLE_COLUMNS = DIMENSIONS + TEXT_FIELDS
PER_PAGE = 20
INDUSTRY_LABEL_MAX = 50
SHOVEL_LABEL_MAX = 40

CHARTS = (
    ChartSpec("customers_by_region", "bar", group_by="region", measure="estimated_volume_units", mode="count"),
    ChartSpec(
        "customers_by_industry",
        "bar",
        group_by="industry_sector",
        measure="estimated_volume_units",
        mode="count",
        label_max=INDUSTRY_LABEL_MAX,
    ),
    ChartSpec(
        "volume_by_shovel_type",
        "bar",
        group_by="type_of_shovel_required",
        measure="estimated_volume_units",
        label_max=SHOVEL_LABEL_MAX,
    ),
    ChartSpec(
        "lead_potential",
        "bar",
        group_by="lead_potential",
        measure="estimated_volume_units",
        mode="count",
        normalize="lead_potential",
    ),
    ChartSpec(
        "region_industry",
        "stacked",
        group_by="region",
        segment_by="industry_sector",
        measure="estimated_volume_units",
        mode="count",
    ),
)

KPIS = (
    Kpi("total_customers", "count"),
    Kpi("hot_leads", "count_matching", dimension="lead_potential", pattern="hot"),
    Kpi("warm_leads", "count_matching", dimension="lead_potential", pattern="warm"),
    Kpi("avg_volume", "mean", "estimated_volume_units"),
)

KPI_FORMATS = {
    "total_customers": format_count,
    "hot_leads": format_count,
    "warm_leads": format_count,
    "avg_volume": lambda v: format_with_commas(v, 0),
}


def paginate(
    df: pd.DataFrame,
    page: int = 1,
    per_page: int = PER_PAGE,
    sort_by: Optional[str] = None,
    descending: bool = False,
) -> Dict[str, Any]:
    """One page of table rows, optionally sorted by a column's text (missing sorts as "")."""
    if per_page < 1:
        raise ValueError("per_page must be at least 1")
    total_rows = int(len(df))
    total_pages = max(1, math.ceil(total_rows / per_page))
    page = min(max(1, int(page)), total_pages)

    frame = df
    if sort_by:
        sort_by = RECORD_COLUMNS.get(sort_by, sort_by)
        if sort_by not in TEXT_FIELDS:
            check_dimension(sort_by, TABLE_COLUMNS)
        frame = df.sort_values(
            sort_by,
            key=lambda s: s.astype("string").fillna("").str.lower(),
            ascending=not descending,
            kind="stable",
        )

    start = (page - 1) * per_page
    cols = [c for c in TABLE_COLUMNS if c in frame.columns]
    rows = frame_to_records(frame.iloc[start : start + per_page][cols])
    return {
        "rows": rows,
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total_rows": total_rows,
        "sort_by": sort_by,
        "descending": bool(descending),
    }


def customer_filters(raw: Union[FilterSpec, Mapping[str, Any], None]) -> FilterSpec:
    if isinstance(raw, FilterSpec):
        return raw
    return normalize_filters(raw, dimensions=DIMENSIONS)


def compute_customer_intelligence(
    filters: Union[FilterSpec, Mapping[str, Any], None],
    store: RecordStore,
    *,
    page: int = 1,
    per_page: int = PER_PAGE,
    sort_by: Optional[str] = None,
    descending: bool = False,
) -> Dict[str, Any]:
    f = customer_filters(filters)
    df = store.frame
    filtered = apply_filters(df, f)

    series: Dict[str, Any] = {chart.name: build_chart_series(filtered, chart, f) for chart in CHARTS}
    charts: Dict[str, Any] = {chart.name: chart_for(chart, series[chart.name]) for chart in CHARTS}
    industries: List[str] = [str(v) for v in unique_values(filtered, "industry_sector")]
    series["industry_labels"] = [
        {"industry_sector": name, "label": truncate_label(name, SHOVEL_LABEL_MAX)} for name in industries
    ]

    kpis = summarize(filtered, KPIS)
    logger.info("customer_intelligence: %d of %d customers", len(filtered), len(df))
    return {
        "page": PAGE,
        "filters": f.to_dict(),
        "row_count": int(len(filtered)),
        "options": filter_options(df, DIMENSIONS),
        "kpis": kpis,
        "kpis_display": format_kpis(kpis, KPI_FORMATS),
        "series": series,
        "charts": charts,
        "table": paginate(filtered, page, per_page, sort_by, descending),
    }