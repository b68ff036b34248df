"""Dashboard pages as data.

Each simple page is a PageConfig: which dataset it reads, which dimensions
it filters on, which KPIs it summarizes and which charts it draws. The two
richer pages (market analysis, customer intelligence) have their own
compute modules and are dispatched from here as well.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import pandas as pd

from market_core.aggregate import ChartSpec, build_chart_series
from market_core.charts import chart_for
from market_core.data import (
    RecordStore,
    format_currency,
    format_kpis,
    format_millions,
    format_percent,
    format_range,
    format_with_commas,
)
from market_core.errors import UnknownPageError
from market_core.filters import FilterSpec, apply_filters, filter_options, normalize_filters
from market_core.kpis import Kpi, summarize
from market_core import metrics_customer_intelligence, metrics_market_analysis

logger = logging.getLogger(__name__)

GEO_DIMENSIONS = ("year", "market", "region", "income_type", "country")

QTY = ("qty", "volume_units")
REVENUE = ("revenue", "market_value_usd")
MARKET_VALUE = ("market_value_usd", "revenue")
QUANTITY = ("volume_units", "qty")


@dataclass(frozen=True)
class PageConfig:
    name: str
    dataset: str
    dimensions: Tuple[str, ...]
    kpis: Tuple[Kpi, ...]
    charts: Tuple[ChartSpec, ...]
    kpi_formats: Mapping[str, Callable[[Any], str]] = field(default_factory=dict)
    # Applied to the filtered frame before charts and KPIs.
    prepare: Optional[Callable[[pd.DataFrame], pd.DataFrame]] = None
    title: str = ""


def _disease_or_market(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out["disease"] = out["disease"].fillna(out["market"])
    return out


millions = partial(format_millions, divisor=1000.0, decimals=2, suffix="M")
plain = partial(format_with_commas, decimals=2)


EPIDEMIOLOGY = PageConfig(
    name="epidemiology",
    title="Epidemiology",
    dataset="market",
    dimensions=("year", "disease", "region", "income_type", "country"),
    kpis=(
        Kpi("total_prevalence", "sum", "prevalence"),
        Kpi("total_incidence", "sum", "incidence"),
        Kpi("top_disease", "top_by_sum", "prevalence", dimension="disease"),
        Kpi("avg_incidence_rate", "mean", "incidence"),
    ),
    charts=(
        ChartSpec("prevalence_by_disease", "bar", group_by="disease", measure="prevalence"),
        ChartSpec("incidence_by_region", "bar", group_by="region", measure="incidence"),
        ChartSpec(
            "trend_by_year",
            "line",
            group_by="year",
            measures=(("prevalence", "prevalence"), ("incidence", "incidence")),
        ),
        ChartSpec("prevalence_share", "pie", group_by="disease", measure="prevalence"),
        ChartSpec("incidence_share", "pie", group_by="disease", measure="incidence"),
    ),
    kpi_formats={
        "total_prevalence": plain,
        "total_incidence": plain,
        "avg_incidence_rate": plain,
    },
)

PRICING = PageConfig(
    name="pricing",
    title="Pricing",
    dataset="market",
    dimensions=GEO_DIMENSIONS + ("brand", "price_class"),
    kpis=(
        Kpi("total_volume", "sum", "volume_units"),
        Kpi("avg_price", "mean", "price"),
        Kpi("top_brand", "top_by_mean", "price", dimension="brand"),
        Kpi("price_range", "range", "price"),
    ),
    charts=(
        ChartSpec("avg_price_by_brand", "bar", group_by="brand", measure="price", mode="average", limit=10),
        ChartSpec(
            "avg_price_by_price_class",
            "bar",
            group_by="price_class",
            measure="price",
            mode="average",
            normalize="unknown_if_blank",
        ),
        ChartSpec("avg_price_by_year", "line", group_by="year", measure="price", mode="average"),
    ),
    kpi_formats={
        "total_volume": millions,
        "avg_price": partial(format_currency, decimals=2),
        "price_range": lambda v: format_range(v[0], v[1], decimals=0),
    },
)

CAGR = PageConfig(
    name="cagr",
    title="CAGR Analysis",
    dataset="market",
    dimensions=GEO_DIMENSIONS + ("segment", "gender"),
    kpis=(
        Kpi("market_size", "sum", "market_value_usd"),
        Kpi("avg_cagr", "mean", "cagr"),
        Kpi("top_segment", "top_by_mean", "cagr", dimension="segment"),
        Kpi("max_cagr", "max", "cagr"),
    ),
    charts=(
        ChartSpec("cagr_by_disease", "bar", group_by="disease", measure="cagr", mode="average"),
        ChartSpec("cagr_by_region", "bar", group_by="region", measure="cagr", mode="average"),
        ChartSpec(
            "volume_vs_cagr",
            "scatter",
            fields=(("volume", "volume_units"), ("cagr", "cagr"), ("market", "market")),
            limit=100,
        ),
    ),
    kpi_formats={
        "market_size": millions,
        "avg_cagr": partial(format_percent, decimals=2),
        "max_cagr": partial(format_percent, decimals=2),
    },
    prepare=_disease_or_market,
)

PROCUREMENT = PageConfig(
    name="procurement",
    title="Procurement",
    dataset="market",
    dimensions=GEO_DIMENSIONS + ("public_private", "brand"),
    kpis=(
        Kpi("total_qty", "sum", QTY),
        Kpi("public_pct", "share_matching", dimension="public_private", value="Public"),
        Kpi("private_pct", "share_matching", dimension="public_private", value="Private"),
        Kpi("top_procurement", "top_by_sum", QTY, dimension="procurement", normalize="unknown_if_blank"),
    ),
    charts=(
        ChartSpec("qty_by_procurement", "bar", group_by="procurement", measure=QTY, normalize="unknown_if_blank"),
        ChartSpec(
            "public_private_qty",
            "bar",
            group_by="public_private",
            measure=QTY,
            categories=("Public", "Private"),
            drop_zero=True,
        ),
        ChartSpec(
            "public_private_by_year",
            "stacked",
            group_by="year",
            segment_by="public_private",
            measure=QTY,
            categories=("Public", "Private"),
        ),
        ChartSpec("qty_share_by_brand", "pie", group_by="brand", measure=QTY),
    ),
    kpi_formats={
        "total_qty": millions,
        "public_pct": format_percent,
        "private_pct": format_percent,
    },
)

BRAND_DEMOGRAPHIC = PageConfig(
    name="brand_demographic",
    title="Brand & Demographics",
    dataset="market",
    dimensions=GEO_DIMENSIONS + ("age_group", "gender", "brand"),
    kpis=(
        Kpi("total_market_value", "sum", "market_value_usd"),
        Kpi("total_revenue", "sum", REVENUE),
        Kpi("top_brand", "top_by_sum", REVENUE, dimension="brand"),
        Kpi("top_age_group", "top_by_sum", REVENUE, dimension="age_group"),
    ),
    charts=(
        ChartSpec("revenue_by_brand", "bar", group_by="brand", measure=REVENUE),
        ChartSpec("revenue_by_gender", "bar", group_by="gender", measure=REVENUE, exclude=("All",)),
        ChartSpec("brand_by_age_group", "grouped", group_by="brand", segment_by="age_group", measure=REVENUE, limit=10),
        ChartSpec("revenue_share_by_brand", "pie", group_by="brand", measure=REVENUE),
    ),
    kpi_formats={
        "total_market_value": millions,
        "total_revenue": millions,
    },
)

FDF = PageConfig(
    name="fdf",
    title="FDF Analysis",
    dataset="market",
    dimensions=GEO_DIMENSIONS + ("brand", "fdf", "roa"),
    kpis=(
        Kpi("total_market_value", "sum", MARKET_VALUE),
        Kpi("total_quantity", "sum", QUANTITY),
        Kpi("revenue_per_fdf", "sum_per_group", MARKET_VALUE, dimension="fdf"),
        Kpi("top_fdf", "top_by_sum", MARKET_VALUE, dimension="fdf"),
    ),
    charts=(
        ChartSpec("revenue_by_fdf", "bar", group_by="fdf", measure=MARKET_VALUE),
        ChartSpec("revenue_by_roa", "bar", group_by="roa", measure=MARKET_VALUE),
        ChartSpec("fdf_by_roa", "grouped", group_by="fdf", segment_by="roa", measure=MARKET_VALUE),
        ChartSpec("revenue_share_by_brand", "pie", group_by="brand", measure=MARKET_VALUE),
    ),
    kpi_formats={
        "total_market_value": millions,
        "total_quantity": millions,
        "revenue_per_fdf": millions,
    },
)

PAGE_CONFIGS: Dict[str, PageConfig] = {
    cfg.name: cfg for cfg in (EPIDEMIOLOGY, PRICING, CAGR, PROCUREMENT, BRAND_DEMOGRAPHIC, FDF)
}

PAGE_DATASETS: Dict[str, str] = {name: cfg.dataset for name, cfg in PAGE_CONFIGS.items()}
PAGE_DATASETS[metrics_market_analysis.PAGE] = metrics_market_analysis.DATASET
PAGE_DATASETS[metrics_customer_intelligence.PAGE] = metrics_customer_intelligence.DATASET

PAGES: Tuple[str, ...] = tuple(PAGE_DATASETS)


def dataset_for(page: str) -> str:
    try:
        return PAGE_DATASETS[page]
    except KeyError:
        raise UnknownPageError(page) from None


def page_dimensions(page: str) -> Tuple[str, ...]:
    if page in PAGE_CONFIGS:
        return PAGE_CONFIGS[page].dimensions
    if page == metrics_market_analysis.PAGE:
        return metrics_market_analysis.DIMENSIONS
    if page == metrics_customer_intelligence.PAGE:
        return metrics_customer_intelligence.DIMENSIONS
    raise UnknownPageError(page)


def page_options(page: str, store: RecordStore) -> Dict[str, Any]:
    """Filter choices for a page, taken from the unfiltered dataset."""
    df = store.frame
    if page == metrics_market_analysis.PAGE:
        return metrics_market_analysis.market_options(df)
    return filter_options(df, page_dimensions(page))


def compute_config_page(
    config: PageConfig,
    filters: Union[FilterSpec, Mapping[str, Any], None],
    store: RecordStore,
) -> Dict[str, Any]:
    f = filters if isinstance(filters, FilterSpec) else normalize_filters(filters, dimensions=config.dimensions)
    df = store.frame
    filtered = apply_filters(df, f)
    if config.prepare is not None:
        filtered = config.prepare(filtered)

    kpis = summarize(filtered, config.kpis)
    series = {chart.name: build_chart_series(filtered, chart, f) for chart in config.charts}
    charts = {chart.name: chart_for(chart, series[chart.name]) for chart in config.charts}
    logger.info("%s: %d of %d rows", config.name, len(filtered), len(df))
    return {
        "page": config.name,
        "title": config.title,
        "filters": f.to_dict(),
        "row_count": int(len(filtered)),
        "options": filter_options(df, config.dimensions),
        "kpis": kpis,
        "kpis_display": format_kpis(kpis, config.kpi_formats),
        "series": series,
        "charts": charts,
    }


def filtered_frame(page: str, filters: Union[FilterSpec, Mapping[str, Any], None], store: RecordStore) -> pd.DataFrame:
    """The records a page would aggregate, for export."""
    if isinstance(filters, FilterSpec):
        f = filters
    else:
        f = normalize_filters(filters, dimensions=page_dimensions(page))
    return apply_filters(store.frame, f)


def compute_page(
    page: str,
    filters: Union[FilterSpec, Mapping[str, Any], None],
    store: RecordStore,
    **params: Any,
) -> Dict[str, Any]:
    """Compute a page payload by name.

    `params` are page-specific options (table paging and sorting for
    customer intelligence).
    """
    expected = dataset_for(page)
    if store.dataset != expected:
        raise ValueError(f"Page {page!r} reads the {expected!r} dataset, got {store.dataset!r}")
    if page == metrics_market_analysis.PAGE:
        return metrics_market_analysis.compute_market_analysis(filters, store)
    if page == metrics_customer_intelligence.PAGE:
        return metrics_customer_intelligence.compute_customer_intelligence(filters, store, **params)
    return compute_config_page(PAGE_CONFIGS[page], filters, store)
