from __future__ import annotations

import pandas as pd
import pytest

from market_core.aggregate import (
    VALUE_MEASURE,
    VOLUME_MEASURE,
    ChartSpec,
    Measure,
    PivotSeries,
    aggregate,
    build_chart_series,
    channel_subtype_share,
    group_totals,
    measure_for,
    multi_measure_series,
    pair_breakdown,
    pivot,
    region_country_share,
    sample_points,
    series,
    share_breakdown,
    stacked_share,
)
from market_core.data import RecordStore
from market_core.errors import UnknownDimensionError
from market_core.filters import EvaluationMode, apply_filters, normalize_filters


def _frame(records):
    return RecordStore.from_records(records).frame


def test_scenario_group_by_country(scenario_store):
    filtered = apply_filters(scenario_store.frame, {"year": [2024]})
    assert group_totals(filtered, "country", "market_value_usd") == {"USA": 1000.0, "Canada": 2000.0}


def test_scenario_region_country_share(scenario_store):
    filtered = apply_filters(scenario_store.frame, {"year": [2024]})
    rows = region_country_share(filtered, "market_value_usd")
    shares = {r["country"]: r["value"] for r in rows}
    assert shares["USA"] == pytest.approx(100 / 3)
    assert shares["Canada"] == pytest.approx(200 / 3)
    assert all(r["year_region"] == "2024 - NA" for r in rows)


def test_group_sum_conserves_total(market_store):
    df = market_store.frame
    totals = group_totals(df, "brand", "market_value_usd")
    assert sum(totals.values()) == pytest.approx(df["market_value_usd"].sum())


def test_invalid_keys_are_dropped():
    df = _frame(
        [
            {"region": "Europe", "marketValueUsd": 10},
            {"region": "123", "marketValueUsd": 20},
            {"region": "undefined", "marketValueUsd": 30},
            {"region": "  ", "marketValueUsd": 40},
            {"region": None, "marketValueUsd": 50},
        ]
    )
    assert group_totals(df, "region", "market_value_usd") == {"Europe": 10.0}


def test_missing_measure_counts_as_zero_and_average_uses_record_count():
    df = _frame(
        [
            {"brand": "A", "price": 10},
            {"brand": "A", "price": None},
            {"brand": "B", "price": 4},
        ]
    )
    assert group_totals(df, "brand", "price") == {"A": 10.0, "B": 4.0}
    assert group_totals(df, "brand", "price", "average") == {"A": 5.0, "B": 4.0}
    assert group_totals(df, "brand", "price", "count") == {"A": 2.0, "B": 1.0}


def test_unknown_mode_and_dimension_raise(market_store):
    df = market_store.frame
    with pytest.raises(ValueError, match="median"):
        group_totals(df, "brand", "price", "median")
    with pytest.raises(UnknownDimensionError):
        group_totals(df, "flavour", "price")
    with pytest.raises(ValueError):
        Measure.of("weight")


def test_measure_falls_back_past_zero_and_missing():
    df = _frame(
        [
            {"revenue": 900, "marketValueUsd": 1000},
            {"revenue": 0, "marketValueUsd": 2000},
            {"revenue": None, "marketValueUsd": 500},
            {"revenue": None, "marketValueUsd": None},
        ]
    )
    values = Measure.of(("revenue", "market_value_usd")).values(df)
    assert list(values) == [900.0, 2000.0, 500.0, 0.0]


def test_evaluation_mode_selects_measure():
    assert measure_for(EvaluationMode.BY_VALUE) is VALUE_MEASURE
    assert measure_for(EvaluationMode.BY_VOLUME) is VOLUME_MEASURE
    df = _frame([{"marketValueUsd": 2500, "volumeUnits": 7}])
    assert VALUE_MEASURE.values(df).iloc[0] == pytest.approx(2.5)
    assert VOLUME_MEASURE.values(df).iloc[0] == 7.0


def test_aggregate_dispatches_on_key_count(shovel_store):
    df = shovel_store.frame
    assert isinstance(aggregate(df, "country", "volume_units"), dict)
    grid = aggregate(df, ["year", "product_type"], "volume_units")
    assert isinstance(grid, PivotSeries)
    with pytest.raises(ValueError):
        aggregate(df, ["year", "country", "region"], "volume_units")


def test_pivot_zero_fills_and_pins_segments(shovel_store):
    df = apply_filters(shovel_store.frame, {"year": [2024, 2025]})
    grid = pivot(df, "year", "product_type", "volume_units", segments=["Spade", "Edging", "Scoop"])
    assert grid.segments == ["Edging", "Scoop", "Spade"]
    assert grid.rows == [
        {"year": 2024, "Edging": 0.0, "Scoop": 80.0, "Spade": 50.0},
        {"year": 2025, "Edging": 0.0, "Scoop": 0.0, "Spade": 20.0},
    ]


def test_pivot_without_pins_uses_segments_in_data(shovel_store):
    grid = pivot(shovel_store.frame, "year", "country", "volume_units")
    assert grid.segments == ["Canada", "Mexico", "USA"]
    assert [row["year"] for row in grid.rows] == [2023, 2024, 2025]


def test_stacked_share_drops_empty_segments(shovel_store):
    df = apply_filters(shovel_store.frame, {"year": [2024, 2025]})
    grid = stacked_share(df, "blade_material", "volume_units", segments=["Steel", "Aluminum", "Wood"])
    assert grid.segments == ["Aluminum", "Steel"]
    assert grid.rows[0] == {"year": 2024, "Aluminum": 80.0, "Steel": 50.0}
    assert "Wood" not in grid.rows[1]


def test_channel_subtype_share_covers_every_year(shovel_store):
    df = apply_filters(shovel_store.frame, {"year": [2024, 2025]})
    grid = channel_subtype_share(df, "volume_units", "Offline")
    assert grid.segments == ["Hardware Stores"]
    assert grid.rows == [
        {"year": 2024, "Hardware Stores": 50.0},
        {"year": 2025, "Hardware Stores": 0.0},
    ]


def test_series_sorting_limit_and_truncation():
    df = _frame(
        [
            {"year": 2025, "brand": "A very long brand name indeed", "volumeUnits": 5},
            {"year": 2024, "brand": "B", "volumeUnits": 9},
            {"year": 2023, "brand": "C", "volumeUnits": 1},
        ]
    )
    rows = series(df, "brand", "volume_units", limit=2, label_max=10)
    assert [r["value"] for r in rows] == [9.0, 5.0]
    assert rows[1]["brand"] == "A very ..."
    assert rows[1]["full_label"] == "A very long brand name indeed"
    by_year = series(df, "year", "volume_units")
    assert [r["year"] for r in by_year] == [2023, 2024, 2025]


def test_series_categories_exclude_and_drop_zero(market_store):
    df = market_store.frame
    rows = series(df, "public_private", "qty", categories=("Public", "Private", "Mixed"), drop_zero=True)
    assert rows == [{"public_private": "Public", "value": 75.0}, {"public_private": "Private", "value": 75.0}]
    genders = series(df, "gender", "revenue", exclude=("All",))
    assert "All" not in [r["gender"] for r in genders]


def test_share_breakdown_percentages_close(market_store):
    rows = share_breakdown(market_store.frame, "brand", "market_value_usd")
    assert sum(r["percent"] for r in rows) == pytest.approx(100.0)
    assert rows[0]["brand"] == "Beta"


def test_multi_measure_series_by_year(market_store):
    rows = multi_measure_series(market_store.frame, "year", {"prevalence": "prevalence", "incidence": "incidence"})
    assert rows == [
        {"year": 2024, "prevalence": 400.0, "incidence": 50.0},
        {"year": 2025, "prevalence": 250.0, "incidence": 50.0},
    ]


def test_region_share_percentages_close_per_region_year(shovel_store):
    rows = region_country_share(shovel_store.frame, "volume_units")
    by_group = {}
    for r in rows:
        by_group.setdefault((r["year"], r["region"]), []).append(r["value"])
    for values in by_group.values():
        assert sum(values) == pytest.approx(100.0)
    keys = [(r["year"], r["region"], r["country"]) for r in rows]
    assert keys == sorted(keys, key=lambda k: (k[0], k[1], k[2]))


def test_region_share_zero_total_and_volume_mode():
    df = _frame(
        [
            {"year": 2024, "region": "Europe", "country": "France", "volumeUnits": 0},
            {"year": 2024, "region": "Europe", "country": "Spain", "volumeUnits": 0},
        ]
    )
    assert [r["value"] for r in region_country_share(df, "volume_units")] == [0.0, 0.0]
    df2 = _frame([{"year": 2024, "region": "Europe", "country": "France", "volumeUnits": 12}])
    rows = region_country_share(df2, "volume_units", evaluation=EvaluationMode.BY_VOLUME)
    assert rows[0]["value"] == 12.0


def test_pair_breakdown_keeps_top_outer_groups(market_store):
    rows = pair_breakdown(market_store.frame, "brand", "age_group", ("revenue", "market_value_usd"), top=1)
    assert rows == [{"brand": "Beta", "age_group": "35-54", "value": 2000.0}]


def test_sample_points_limit(market_store):
    points = sample_points(market_store.frame, {"volume": "volume_units", "cagr": "cagr"}, limit=2)
    assert points == [{"volume": 200.0, "cagr": 5.0}, {"volume": 400.0, "cagr": 7.0}]


def test_empty_input_is_safe(empty_frame):
    assert group_totals(empty_frame, "country", "market_value_usd") == {}
    assert series(empty_frame, "country", "market_value_usd") == []
    assert share_breakdown(empty_frame, "country", "market_value_usd") == []
    assert multi_measure_series(empty_frame, "year", {"p": "prevalence"}) == []
    assert region_country_share(empty_frame, "market_value_usd") == []
    assert pair_breakdown(empty_frame, "brand", "age_group", "revenue") == []
    assert sample_points(empty_frame, {"v": "volume_units"}) == []
    assert pivot(empty_frame, "year", "country", "market_value_usd").rows == []
    assert stacked_share(empty_frame, "country", "market_value_usd").to_dict() == {"rows": [], "segments": []}
    assert channel_subtype_share(empty_frame, "market_value_usd", "Online").rows == []


def test_build_chart_series_uses_evaluation_measure(shovel_store):
    df = apply_filters(shovel_store.frame, {"year": [2024]})
    chart = ChartSpec("country_by_year", "stacked", group_by="year", segment_by="country", pin_segments=True)
    by_value = build_chart_series(df, chart, normalize_filters({"country": ["USA", "Canada"]}))
    assert by_value["segments"] == ["Canada", "USA"]
    assert by_value["rows"][0]["USA"] == pytest.approx(1.0)
    by_volume = build_chart_series(df, chart, normalize_filters({"evaluation": "By Volume"}))
    assert by_volume["rows"][0]["Canada"] == 80.0


def test_build_chart_series_rejects_unknown_kind(market_store):
    with pytest.raises(ValueError):
        build_chart_series(market_store.frame, ChartSpec("x", "radar", group_by="brand", measure="price"))


def test_frame_input_is_not_mutated(market_store):
    df = market_store.frame
    before = df.copy()
    series(df, "brand", "price", "average", normalize="unknown_if_blank")
    region_country_share(df, "market_value_usd")
    pd.testing.assert_frame_equal(df, before)
