from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from mls_api.exceptions import MappingError
from mls_api.mapping import (
    _MISSING,
    TRANSFORMS,
    FieldMapping,
    MappingTable,
    apply_transform,
    map_record,
    resolve_path,
)

MAPPING_CONFIG = [
    {"source": "ListingKey", "target": "external_id", "required": True},
    {"source": "StandardStatus", "target": "status"},
    {"source": "ListPrice", "target": "price"},
    {"source": "Address.Street", "target": "street_address"},
    {"source": "Address.City", "target": "city"},
    {"source": "City", "target": "city"},
    {"source": "BedroomsTotal", "target": "bedrooms"},
    {"source": "BathroomsTotalDecimal", "target": "bathrooms"},
    {"source": "LivingArea", "target": "square_feet"},
    {"source": "ModificationTimestamp", "target": "source_modified_at"},
    {"source": "Country", "target": "country", "default": "US"},
]


def _table() -> MappingTable:
    return MappingTable.from_config(MAPPING_CONFIG)


def test_map_record_applies_default_transforms_and_keeps_raw_record() -> None:
    record = {
        "ListingKey": " L-100 ",
        "StandardStatus": "ACT",
        "ListPrice": "$1,250,000",
        "Address": {"Street": "  12   Elm St ", "City": "Austin"},
        "BedroomsTotal": "4",
        "BathroomsTotalDecimal": 2.5,
        "LivingArea": "2,310 sqft",
        "ModificationTimestamp": "2026-03-01T08:00:00Z",
        "UnmappedField": "ignored",
    }

    canonical = map_record(record, _table(), "mls-a")

    assert canonical.provider_id == "mls-a"
    assert canonical.external_id == "L-100"
    assert canonical.status == "active"
    assert canonical.price == Decimal("1250000.00")
    assert canonical.street_address == "12 Elm St"
    assert canonical.city == "Austin"
    assert canonical.bedrooms == 4
    assert canonical.bathrooms == Decimal("2.5")
    assert canonical.square_feet == 2310
    assert canonical.source_modified_at == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
    assert canonical.country == "US"
    assert canonical.raw_data == record


def test_later_mappings_fill_in_when_earlier_source_is_absent() -> None:
    canonical = map_record({"ListingKey": "L-1", "City": "Round Rock", "Address": {"City": "  "}}, _table(), "mls-a")

    assert canonical.city == "Round Rock"


@pytest.mark.parametrize(
    ("raw_status", "expected"),
    [
        ("PND", "pending"),
        ("Active Under Contract", "pending"),
        ("closed", "sold"),
        ("WTH", "withdrawn"),
        ("CAN", "withdrawn"),
        ("Expired", "expired"),
    ],
)
def test_status_transform_normalizes_provider_codes(raw_status: str, expected: str) -> None:
    assert TRANSFORMS["status"](raw_status) == expected


def test_unknown_status_is_a_mapping_error() -> None:
    with pytest.raises(MappingError) as error:
        map_record({"ListingKey": "L-1", "StandardStatus": "ZOMBIE"}, _table(), "mls-a")

    assert error.value.field == "status"
    assert error.value.value == "ZOMBIE"


@pytest.mark.parametrize("raw_price", ["-5", "call for price", "$"])
def test_invalid_prices_are_rejected(raw_price: str) -> None:
    with pytest.raises(MappingError) as error:
        map_record({"ListingKey": "L-1", "ListPrice": raw_price}, _table(), "mls-a")

    assert error.value.field == "price"


def test_missing_external_id_fails_the_record() -> None:
    table = MappingTable([FieldMapping(source="ListingKey", target="external_id")])

    with pytest.raises(MappingError) as error:
        map_record({"ListPrice": "1"}, table, "mls-a")

    assert error.value.field == "external_id"


def test_missing_required_field_fails_the_record() -> None:
    table = MappingTable(
        [
            FieldMapping(source="ListingKey", target="external_id"),
            FieldMapping(source="ListPrice", target="price", required=True),
        ]
    )

    with pytest.raises(MappingError, match="ListPrice"):
        map_record({"ListingKey": "L-1"}, table, "mls-a")


def test_empty_provider_id_fails_the_record() -> None:
    with pytest.raises(MappingError) as error:
        map_record({"ListingKey": "L-1"}, _table(), "  ")

    assert error.value.field == "provider_id"


def test_from_config_rejects_unknown_targets_and_transforms() -> None:
    with pytest.raises(ValueError, match="unknown field"):
        MappingTable.from_config([{"source": "X", "target": "not_a_field"}])
    with pytest.raises(ValueError, match="unknown transform"):
        MappingTable.from_config([{"source": "X", "target": "city", "transform": "reverse"}])
    with pytest.raises(ValueError, match="no source"):
        MappingTable.from_config([{"target": "city"}])


def test_resolve_path_walks_nested_dicts_and_lists() -> None:
    record = {"Photos": [{"Url": "https://a"}, {"Url": "https://b"}], "Address": {"City": "Austin"}}

    assert resolve_path(record, "Photos.1.Url") == "https://b"
    assert resolve_path(record, "Address.City") == "Austin"
    assert resolve_path(record, "Photos.5.Url") is _MISSING
    assert resolve_path(record, "Address.City.Zip") is _MISSING


def test_explicit_transforms_cover_scalar_types() -> None:
    assert apply_transform(FieldMapping("x", "year_built", transform="int"), "1998") == 1998
    assert apply_transform(FieldMapping("x", "city", transform="upper"), " austin ") == "AUSTIN"
    assert apply_transform(FieldMapping("x", "listed_at", transform="date"), "2026-03-01T15:45:00Z") == datetime(
        2026, 3, 1, tzinfo=timezone.utc
    )
    assert TRANSFORMS["bool"]("Yes") is True
    assert TRANSFORMS["bool"]("0") is False
    with pytest.raises(MappingError):
        apply_transform(FieldMapping("x", "bedrooms", transform="int"), "2.5")


@pytest.mark.parametrize("raw_value", ["Infinity", "-inf", "NaN", "sNaN", float("inf")])
def test_non_finite_numbers_are_mapping_errors(raw_value: object) -> None:
    with pytest.raises(MappingError) as error:
        map_record({"ListingKey": "L-1", "BathroomsTotalDecimal": raw_value}, _table(), "mls-a")

    assert error.value.field == "bathrooms"
    assert "finite" in error.value.message


@pytest.mark.parametrize(
    ("source", "raw_value", "field"),
    [
        ("BathroomsTotalDecimal", "1e30", "bathrooms"),
        ("BathroomsTotalDecimal", "999.999", "bathrooms"),
        ("ListPrice", "1000000000000", "price"),
        ("BedroomsTotal", "3000000000", "bedrooms"),
        ("LivingArea", "3000000000", "square_feet"),
    ],
)
def test_numbers_beyond_column_range_are_mapping_errors(source: str, raw_value: str, field: str) -> None:
    with pytest.raises(MappingError) as error:
        map_record({"ListingKey": "L-1", source: raw_value}, _table(), "mls-a")

    assert error.value.field == field
    assert "storable range" in error.value.message


def test_numbers_at_column_limits_are_accepted() -> None:
    record = {"ListingKey": "L-1", "BathroomsTotalDecimal": "999.99", "ListPrice": "999999999999.99"}

    canonical = map_record(record, _table(), "mls-a")

    assert canonical.bathrooms == Decimal("999.99")
    assert canonical.price == Decimal("999999999999.99")
