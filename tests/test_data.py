from __future__ import annotations

import csv
import io
import os

import pandas as pd
import pytest

from market_core.aggregate import series
from market_core.data import (
    RecordStore,
    clean_key,
    find_dataset_file,
    format_count,
    format_currency,
    format_kpis,
    format_millions,
    format_percent,
    format_range,
    format_with_commas,
    load_record_store,
    normalize_lead_potential,
    parse_volume_range,
    read_records_file,
    records_to_csv,
    round_half_up,
    to_source_columns,
    truncate_label,
    unknown_if_blank,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("6,000-10,000 units/year", 8000),
        ("500-1,000 units/year", 750),
        ("50-100 units annually", 75),
        ("1,500 units", 1500),
        ("on request", 0),
        ("", 0),
        (None, 0),
    ],
)
def test_parse_volume_range(text, expected):
    assert parse_volume_range(text) == expected


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Hot - scale & centralized sourcing", "Hot"),
        ("HOT (large buyer)", "Hot"),
        ("hot", "Hot"),
        ("Warm lead", "Warm"),
        ("cold", "Cold"),
        ("Unqualified", "Unqualified"),
        ("  ", None),
        (None, None),
    ],
)
def test_normalize_lead_potential(label, expected):
    assert normalize_lead_potential(label) == expected


def test_hot_variants_merge_into_one_group(customer_store):
    rows = series(customer_store.frame, "lead_potential", "estimated_volume_units", "count", normalize="lead_potential")
    assert {r["lead_potential"]: r["value"] for r in rows} == {"Hot": 2.0, "Warm": 1.0, "Cold": 1.0}


def test_clean_key_and_labels():
    assert clean_key(" Europe ") == "Europe"
    assert clean_key("undefined") is None
    assert clean_key(float("nan")) is None
    assert clean_key(pd.NA) is None
    assert clean_key(2024.0) == 2024
    assert clean_key("42", reject_numeric=True) is None
    assert clean_key("42") == "42"
    assert truncate_label("abcdefghij", 8) == "abcde..."
    assert truncate_label("short", 8) == "short"
    assert unknown_if_blank(None) == "Unknown"
    assert unknown_if_blank("Premium") == "Premium"


def test_store_renames_source_keys_and_declares_every_column(market_store):
    df = market_store.frame
    assert "market_value_usd" in df.columns
    assert "marketValueUsd" not in df.columns
    assert "lead_potential" in df.columns
    assert str(df["year"].dtype) == "Int64"
    assert df["industry_sector"].isna().all()


def test_store_frame_is_a_copy(market_store):
    df = market_store.frame
    df.loc[:, "brand"] = "mutated"
    assert "mutated" not in set(market_store.frame["brand"])
    assert len(market_store) == 4


def test_estimated_volume_is_parsed_on_load(customer_store):
    assert list(customer_store.frame["estimated_volume_units"]) == [8000.0, 750.0, 75.0, 0.0]


def test_source_view_drops_derived_and_declared_columns(customer_store, record_keys):
    assert customer_store.source_columns == tuple(record_keys["customer_intelligence"])
    view = customer_store.to_source(customer_store.frame)
    assert list(view.columns) == record_keys["customer_intelligence"]
    assert len(view) == 4
    assert view["leadPotential"].iloc[2] == "warm"


def test_to_source_columns_skips_keys_missing_from_frame():
    df = pd.DataFrame({"market_value_usd": [1.0], "notes": ["x"], "estimated_volume_units": [0.0]})
    view = to_source_columns(df, ["marketValueUsd", "notes", "brand"])
    assert list(view.columns) == ["marketValueUsd", "notes"]


def test_records_to_csv_quotes_everything():
    text = records_to_csv([{"name": 'Big "A"', "value": 10.0}, {"name": "B", "note": "x,y"}])
    lines = text.splitlines()
    assert lines[0] == '"name","value","note"'
    assert lines[1].startswith('"Big ""A""","10"')
    parsed = list(csv.reader(io.StringIO(text)))
    assert parsed == [["name", "value", "note"], ['Big "A"', "10", ""], ["B", "", "x,y"]]


def test_records_to_csv_empty():
    assert records_to_csv([]) == ""
    assert records_to_csv(pd.DataFrame({"a": []})).strip() == '"a"'


def test_load_record_store_reuses_until_file_changes(data_dir):
    first = load_record_store("shovel_market", data_dir)
    again = load_record_store("shovel_market", data_dir)
    assert first is again
    assert len(first) == 4
    assert first.source == "shovel_market.csv"

    path = data_dir / "shovel_market.csv"
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))
    reloaded = load_record_store("shovel_market", data_dir)
    assert reloaded is not first


def test_load_record_store_reads_json_and_numeric_regions(data_dir):
    market = load_record_store("market", data_dir)
    assert set(market.frame["country"]) == {"USA", "Canada", "Germany"}
    customers = load_record_store("customer_intelligence", data_dir).frame
    assert "123" in set(customers["region"].dropna())


def test_missing_or_unknown_dataset(tmp_path):
    with pytest.raises(FileNotFoundError):
        find_dataset_file("market", tmp_path)
    with pytest.raises(ValueError):
        find_dataset_file("weather", tmp_path)
    bad = tmp_path / "market.parquet"
    bad.write_text("")
    with pytest.raises(ValueError):
        read_records_file(bad)


def test_from_frame_and_from_records_agree():
    records = [{"year": 2024, "country": "USA", "marketValueUsd": 1}]
    a = RecordStore.from_records(records).frame
    b = RecordStore.from_frame(pd.DataFrame(records)).frame
    pd.testing.assert_frame_equal(a, b)


def test_formatting_helpers():
    assert round_half_up(2.5) == 3.0
    assert round_half_up(0.125, 2) == 0.13
    assert round_half_up(None) is None
    assert format_with_commas(1234.5) == "1,234.50"
    assert format_with_commas(1234.5, 0) == "1,235"
    assert format_millions(2500) == "2.50M"
    assert format_percent(100 / 3) == "33.3%"
    assert format_currency(1234.4) == "$1,234"
    assert format_range(10, 30, decimals=2) == "$10.00 - $30.00"
    assert format_count(4) == "4"
    assert format_with_commas(None) == "N/A"


def test_format_kpis_marks_missing_values():
    out = format_kpis(
        {"total": 2500.0, "top": "Alpha", "missing": None},
        {"total": format_millions},
    )
    assert out == {"total": "2.50M", "top": "Alpha", "missing": "N/A"}
