from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from mls_api.exceptions import ConnectivityError
from mls_api.providers import FixtureProviderAdapter

RECORDS = [
    {"ListingKey": "L-1", "ModificationTimestamp": "2026-01-01T00:00:00Z"},
    {"ListingKey": "L-2", "ModificationTimestamp": "2026-03-01T00:00:00Z", "Media": ["https://cdn.example.com/2.jpg"]},
    {"ListingKey": "L-3"},
    {
        "ListingKey": "L-4",
        "ModificationTimestamp": "2026-04-01T00:00:00Z",
        "Media": [{"MediaURL": "https://cdn.example.com/4.jpg", "MediaCategory": "Floor Plan"}],
    },
]


def test_incremental_filter_keeps_recent_and_undated_records() -> None:
    adapter = FixtureProviderAdapter("fixture", {"page_size": 10}, records=RECORDS)
    adapter.connect()

    page = adapter.fetch_changed_records(datetime(2026, 2, 1, tzinfo=timezone.utc))

    assert [record["ListingKey"] for record in page.records] == ["L-2", "L-3", "L-4"]
    assert page.exhausted


def test_pages_are_driven_by_offset_cursor() -> None:
    adapter = FixtureProviderAdapter("fixture", {"page_size": 3}, records=RECORDS)
    adapter.connect()

    pages = list(adapter.iter_pages(None))

    assert [len(page.records) for page in pages] == [3, 1]
    assert pages[0].next_cursor == 3


def test_records_load_from_json_file(tmp_path) -> None:
    path = tmp_path / "listings.json"
    path.write_text(json.dumps({"records": RECORDS}))
    adapter = FixtureProviderAdapter("fixture", {"path": str(path)})

    with adapter:
        assert len(adapter.fetch_changed_records(None).records) == 4
        assert adapter.health_check().healthy


def test_missing_file_is_a_connectivity_error(tmp_path) -> None:
    adapter = FixtureProviderAdapter("fixture", {"path": str(tmp_path / "missing.json")})

    with pytest.raises(ConnectivityError, match="Could not read fixture file"):
        adapter.connect()


def test_media_references_accept_strings_and_dicts() -> None:
    adapter = FixtureProviderAdapter("fixture", records=RECORDS)
    adapter.connect()

    assert [reference.url for reference in adapter.fetch_media_references("L-2")] == ["https://cdn.example.com/2.jpg"]
    floor_plan = adapter.fetch_media_references("L-4")[0]
    assert floor_plan.media_type == "floor_plan"
    assert adapter.fetch_media_references("L-3") == []
    assert adapter.fetch_media_references("unknown") == []


def test_media_items_without_a_url_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    record = {
        "ListingKey": "L-9",
        "Media": [{"Caption": "Front"}, {"MediaURL": "https://cdn.example.com/9.jpg"}, 42],
    }
    adapter = FixtureProviderAdapter("fixture", records=[record])
    adapter.connect()

    references = adapter.fetch_media_references("L-9")

    assert [(reference.url, reference.order) for reference in references] == [("https://cdn.example.com/9.jpg", 1)]
    assert "Skipping fixture media item 0 for fixture/L-9" in caplog.text
