"""Superset record schema shared by every dataset.

Source records use camelCase keys; frames carry the snake_case names below.
Every declared column exists on every loaded frame (missing -> NA), so the
aggregation code reads declared optional columns instead of probing rows.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from market_core.errors import UnknownDimensionError

YEAR = "year"

DIMENSIONS: Tuple[str, ...] = (
    "year",
    "country",
    "region",
    "market",
    "segment",
    "disease",
    "brand",
    "product_type",
    "blade_material",
    "handle_length",
    "application",
    "end_user",
    "distribution_channel_type",
    "distribution_channel",
    "gender",
    "age_group",
    "income_type",
    "price_class",
    "public_private",
    "fdf",
    "roa",
    "procurement",
    "industry_sector",
    "type_of_shovel_required",
    "quality_preference",
    "price_sensitivity",
    "lead_potential",
)

MEASURES: Tuple[str, ...] = (
    "market_value_usd",
    "volume_units",
    "revenue",
    "price",
    "cagr",
    "prevalence",
    "incidence",
    "qty",
    # Parsed from estimated_volume_requirement on load when the source lacks it.
    "estimated_volume_units",
)

TEXT_FIELDS: Tuple[str, ...] = ("estimated_volume_requirement",)

DIMENSION_SET: FrozenSet[str] = frozenset(DIMENSIONS)
MEASURE_SET: FrozenSet[str] = frozenset(MEASURES)

RECORD_COLUMNS: Dict[str, str] = {
    "year": "year",
    "country": "country",
    "region": "region",
    "market": "market",
    "segment": "segment",
    "disease": "disease",
    "brand": "brand",
    "productType": "product_type",
    "bladeMaterial": "blade_material",
    "handleLength": "handle_length",
    "application": "application",
    "endUser": "end_user",
    "distributionChannelType": "distribution_channel_type",
    "distributionChannel": "distribution_channel",
    "gender": "gender",
    "ageGroup": "age_group",
    "incomeType": "income_type",
    "priceClass": "price_class",
    "publicPrivate": "public_private",
    "fdf": "fdf",
    "roa": "roa",
    "procurement": "procurement",
    "industrySector": "industry_sector",
    "typeOfShovelRequired": "type_of_shovel_required",
    "qualityPreference": "quality_preference",
    "priceSensitivity": "price_sensitivity",
    "leadPotential": "lead_potential",
    "marketValueUsd": "market_value_usd",
    "volumeUnits": "volume_units",
    "revenue": "revenue",
    "price": "price",
    "cagr": "cagr",
    "prevalence": "prevalence",
    "incidence": "incidence",
    "qty": "qty",
    "estimatedVolumeRequirement": "estimated_volume_requirement",
}

# Dataset domains served by the record source.
DATASETS: Tuple[str, ...] = ("market", "shovel_market", "customer_intelligence")

OFFLINE = "Offline"
ONLINE = "Online"
CHANNELS_BY_TYPE: Dict[str, Tuple[str, ...]] = {
    OFFLINE: ("Hardware Stores", "Specialty Garden Centers", "Agricultural Supply Stores"),
    ONLINE: ("Ecommerce Website", "Brand's/Company's Own Website"),
}

# Placeholder category the generator emits for "every gender"; never a real slice.
GENDER_ALL = "All"


def is_dimension(name: str) -> bool:
    return name in DIMENSION_SET


def check_dimension(name: str, allowed: Optional[Iterable[str]] = None) -> str:
    pool = DIMENSION_SET if allowed is None else frozenset(allowed)
    if name not in pool:
        raise UnknownDimensionError(name, pool)
    return name


def check_measure(name: str) -> str:
    if name not in MEASURE_SET:
        raise ValueError(f"Unknown measure: {name!r}")
    return name
