from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from market_api.schemas import MetaPagesResponse, PageFiltersModel, PageInfo
from market_core.config import Settings, configure_logging, get_settings
from market_core.data import RecordStore, load_record_store, records_to_csv
from market_core.errors import UnknownDimensionError, UnknownPageError
from market_core.filters import FilterSpec, normalize_filters
from market_core.metrics_market_analysis import PAGE as MARKET_ANALYSIS, default_filters
from market_core.pages import PAGE_DATASETS, compute_page, dataset_for, filtered_frame, page_dimensions, page_options

configure_logging(get_settings().log_level)

app = FastAPI(title="Market Research Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _load_store(page: str, settings: Settings) -> RecordStore:
    return load_record_store(dataset_for(page), settings.data_dir, delay_ms=settings.load_delay_ms)


def _filters_from_model(page: str, model: PageFiltersModel) -> FilterSpec:
    raw = dict(model.selections)
    raw["evaluation"] = model.evaluation
    return normalize_filters(raw, dimensions=page_dimensions(page))


def _error(exc: Exception, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


@app.get("/meta/pages", response_model=MetaPagesResponse)
def meta_pages():
    pages = [PageInfo(name=name, dataset=dataset) for name, dataset in PAGE_DATASETS.items()]
    return MetaPagesResponse(pages=pages)


@app.get("/meta/options/{page}")
def meta_options(page: str, settings: Settings = Depends(get_settings)):
    try:
        store = _load_store(page, settings)
        payload = {"page": page, "options": page_options(page, store)}
        if page == MARKET_ANALYSIS:
            payload["defaults"] = default_filters(store).to_dict()
        return _json(payload)
    except UnknownPageError as exc:
        return _error(exc, 404)
    except Exception as exc:
        logger.exception("meta_options failed for %s", page)
        return _error(exc, 500)


@app.post("/pages/{page}")
def page_payload(
    page: str,
    filters: PageFiltersModel,
    page_number: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=500),
    sort_by: Optional[str] = Query(default=None),
    descending: bool = Query(default=False),
    settings: Settings = Depends(get_settings),
):
    try:
        store = _load_store(page, settings)
        f = _filters_from_model(page, filters)
        params = {}
        if page == "customer_intelligence":
            params = {"page": page_number, "per_page": per_page, "sort_by": sort_by or None, "descending": descending}
        return _json(compute_page(page, f, store, **params))
    except UnknownPageError as exc:
        return _error(exc, 404)
    except UnknownDimensionError as exc:
        return _error(exc, 422)
    except Exception as exc:
        logger.exception("page %s failed", page)
        return _error(exc, 500)


@app.post("/export/{page}")
def export_page(page: str, filters: PageFiltersModel, settings: Settings = Depends(get_settings)):
    try:
        store = _load_store(page, settings)
        f = _filters_from_model(page, filters)
        export_df = store.to_source(filtered_frame(page, f, store))
    except UnknownPageError as exc:
        return _error(exc, 404)
    except UnknownDimensionError as exc:
        return _error(exc, 422)
    except Exception as exc:
        logger.exception("export %s failed", page)
        return _error(exc, 500)

    csv_bytes = records_to_csv(export_df).encode("utf-8")
    filename = f"{page}.csv"
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
