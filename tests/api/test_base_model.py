from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from mls_api.models.canonical import CanonicalProperty
from mls_api.models.media import MediaReference


def test_from_dict_parses_datetime_strings_and_clean_keys() -> None:
    record = CanonicalProperty.from_dict(
        {
            "ProviderId": "mls-a",
            "ExternalId": "L-1",
            "SourceModifiedAt": "2026-01-10T10:20:30Z",
        }
    )

    assert record.provider_id == "mls-a"
    assert record.external_id == "L-1"
    assert record.source_modified_at == datetime(2026, 1, 10, 10, 20, 30, tzinfo=timezone.utc)


def test_from_dict_requires_identity_fields() -> None:
    with pytest.raises(ValueError, match="external_id"):
        CanonicalProperty.from_dict({"provider_id": "mls-a"})


def test_changes_from_ignores_decimal_scale_and_bookkeeping_fields() -> None:
    record = CanonicalProperty(
        provider_id="mls-a",
        external_id="L-1",
        price=Decimal("350000"),
        city="Austin",
        raw_data={"ListPrice": "350000"},
    )
    existing = SimpleNamespace(
        provider_id="mls-a",
        external_id="L-1",
        price=Decimal("350000.00"),
        city="Dallas",
        raw_data={"ListPrice": "1"},
    )

    assert record.changes_from(existing) == {"city": ("Dallas", "Austin")}


def test_mappable_field_names_exclude_provider_and_raw_data() -> None:
    names = CanonicalProperty.mappable_field_names()

    assert "external_id" in names
    assert "price" in names
    assert "provider_id" not in names
    assert "raw_data" not in names


def test_media_reference_from_provider_normalizes_aliases() -> None:
    reference = MediaReference.from_provider(
        {
            "MediaURL": " https://cdn.example.com/a.jpg ",
            "MediaCategory": "Photo",
            "PreferredPhotoOrder": "3",
            "ShortDescription": "Front",
            "MediaModificationTimestamp": "",
        },
        position=9,
    )

    assert reference.url == "https://cdn.example.com/a.jpg"
    assert reference.media_type == "image"
    assert reference.order == 3
    assert reference.caption == "Front"
    assert reference.modified_at is None
    assert reference.is_image


def test_media_reference_falls_back_to_position_and_flags_non_images() -> None:
    reference = MediaReference.from_provider({"uri": "https://example.com/tour", "type": "Virtual Tour", "order": "x"}, 4)

    assert reference.order == 4
    assert reference.media_type == "virtual_tour"
    assert not reference.is_image


def test_media_reference_without_url_is_rejected() -> None:
    with pytest.raises(ValueError, match="url"):
        MediaReference.from_provider({"caption": "no link"})
