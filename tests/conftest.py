from __future__ import annotations

import pandas as pd
import pytest

from market_core.data import RecordStore

SCENARIO_RECORDS = [
    {"year": 2024, "country": "USA", "region": "NA", "marketValueUsd": 1000},
    {"year": 2024, "country": "Canada", "region": "NA", "marketValueUsd": 2000},
    {"year": 2025, "country": "USA", "region": "NA", "marketValueUsd": 500},
]

MARKET_RECORDS = [
    {
        "year": 2024, "country": "USA", "region": "North America", "market": "Vaccines", "segment": "Adult",
        "disease": "Flu", "brand": "Alpha", "gender": "Male", "ageGroup": "18-34", "incomeType": "High",
        "priceClass": "Premium", "publicPrivate": "Public", "fdf": "Tablet", "roa": "Oral", "procurement": "Tender",
        "marketValueUsd": 1000, "volumeUnits": 200, "revenue": 900, "price": 10.0, "cagr": 5.0,
        "prevalence": 300, "incidence": 30, "qty": 50,
    },
    {
        "year": 2024, "country": "Canada", "region": "North America", "market": "Vaccines", "segment": "Pediatric",
        "disease": "Measles", "brand": "Beta", "gender": "Female", "ageGroup": "35-54", "incomeType": "High",
        "priceClass": None, "publicPrivate": "Private", "fdf": "Injection", "roa": "Parenteral", "procurement": None,
        "marketValueUsd": 2000, "volumeUnits": 400, "revenue": 0, "price": 25.0, "cagr": 7.0,
        "prevalence": 100, "incidence": 20, "qty": 0,
    },
    {
        "year": 2025, "country": "USA", "region": "North America", "market": "Oncology", "segment": "Adult",
        "disease": None, "brand": "Alpha", "gender": "All", "ageGroup": "18-34", "incomeType": "Middle",
        "priceClass": "Economy", "publicPrivate": "Public", "fdf": "Tablet", "roa": "Oral", "procurement": "Retail",
        "marketValueUsd": 500, "volumeUnits": 100, "revenue": 600, "price": 30.0, "cagr": 3.0,
        "prevalence": 50, "incidence": 10, "qty": 25,
    },
    {
        "year": 2025, "country": "Germany", "region": "Europe", "market": "Vaccines", "segment": "Adult",
        "disease": "Flu", "brand": "Gamma", "gender": "Female", "ageGroup": "55+", "incomeType": "High",
        "priceClass": "Premium", "publicPrivate": "Private", "fdf": "Injection", "roa": "Oral", "procurement": "Tender",
        "marketValueUsd": 1500, "volumeUnits": 300, "revenue": 1400, "price": 15.0, "cagr": 6.0,
        "prevalence": 200, "incidence": 40, "qty": 75,
    },
]

SHOVEL_RECORDS = [
    {
        "year": 2024, "country": "USA", "region": "North America", "productType": "Spade", "bladeMaterial": "Steel",
        "handleLength": "Long", "application": "Gardening", "endUser": "Residential",
        "distributionChannelType": "Offline", "distributionChannel": "Hardware Stores",
        "marketValueUsd": 1000, "volumeUnits": 50,
    },
    {
        "year": 2024, "country": "Canada", "region": "North America", "productType": "Scoop",
        "bladeMaterial": "Aluminum", "handleLength": "Short", "application": "Construction", "endUser": "Commercial",
        "distributionChannelType": "Online", "distributionChannel": "Ecommerce Website",
        "marketValueUsd": 2000, "volumeUnits": 80,
    },
    {
        "year": 2025, "country": "USA", "region": "North America", "productType": "Spade", "bladeMaterial": "Steel",
        "handleLength": "Long", "application": "Gardening", "endUser": "Residential",
        "distributionChannelType": "Online", "distributionChannel": "Brand's/Company's Own Website",
        "marketValueUsd": 500, "volumeUnits": 20,
    },
    {
        "year": 2023, "country": "Mexico", "region": "Latin America", "productType": "Trenching",
        "bladeMaterial": "Steel", "handleLength": "Medium", "application": "Agriculture", "endUser": "Commercial",
        "distributionChannelType": "Offline", "distributionChannel": "Agricultural Supply Stores",
        "marketValueUsd": 700, "volumeUnits": 30,
    },
]

LONG_INDUSTRY = "Construction & Infrastructure Development Services Provider Group"
LONG_SHOVEL = "Heavy-duty square-point shovels for trenching work"

CUSTOMER_RECORDS = [
    {
        "region": "North America", "industrySector": LONG_INDUSTRY, "typeOfShovelRequired": LONG_SHOVEL,
        "qualityPreference": "High", "priceSensitivity": "Low",
        "leadPotential": "Hot - scale & centralized sourcing", "estimatedVolumeRequirement": "6,000-10,000 units/year",
    },
    {
        "region": "Europe", "industrySector": "Agriculture", "typeOfShovelRequired": "Round point",
        "qualityPreference": "Medium", "priceSensitivity": "High",
        "leadPotential": "HOT (large buyer)", "estimatedVolumeRequirement": "500-1,000 units/year",
    },
    {
        "region": "123", "industrySector": "Agriculture", "typeOfShovelRequired": "Round point",
        "qualityPreference": "Low", "priceSensitivity": "High",
        "leadPotential": "warm", "estimatedVolumeRequirement": "50-100 units annually",
    },
    {
        "region": "Europe", "industrySector": "Landscaping", "typeOfShovelRequired": "Snow",
        "qualityPreference": "High", "priceSensitivity": "Medium",
        "leadPotential": "Cold", "estimatedVolumeRequirement": "on request",
    },
]


@pytest.fixture
def scenario_store() -> RecordStore:
    return RecordStore.from_records(SCENARIO_RECORDS, dataset="market")


@pytest.fixture
def market_store() -> RecordStore:
    return RecordStore.from_records(MARKET_RECORDS, dataset="market")


@pytest.fixture
def shovel_store() -> RecordStore:
    return RecordStore.from_records(SHOVEL_RECORDS, dataset="shovel_market")


@pytest.fixture
def customer_store() -> RecordStore:
    return RecordStore.from_records(CUSTOMER_RECORDS, dataset="customer_intelligence")


@pytest.fixture
def empty_frame() -> pd.DataFrame:
    return RecordStore.from_records([], dataset="market").frame


@pytest.fixture
def record_keys():
    def union(records):
        return list(dict.fromkeys(k for r in records for k in r))

    return {
        "market": union(MARKET_RECORDS),
        "shovel_market": union(SHOVEL_RECORDS),
        "customer_intelligence": union(CUSTOMER_RECORDS),
    }


@pytest.fixture
def data_dir(tmp_path):
    pd.DataFrame(MARKET_RECORDS).to_json(tmp_path / "market.json", orient="records")
    pd.DataFrame(SHOVEL_RECORDS).to_csv(tmp_path / "shovel_market.csv", index=False)
    pd.DataFrame(CUSTOMER_RECORDS).to_csv(tmp_path / "customer_intelligence.csv", index=False)
    return tmp_path
