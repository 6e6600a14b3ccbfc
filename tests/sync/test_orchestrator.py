from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation

import pytest
from django.db import IntegrityError
from django.utils.timezone import now

from mls_api.config import settings
from mls_api.exceptions import AuthenticationError, ConnectivityError
from mls_api.providers import FixtureProviderAdapter, RecordPage
from mls_data.models import (
    MediaStatus,
    Property,
    PropertyChange,
    PropertyMedia,
    ProviderConfiguration,
    SyncError,
    SyncHistory,
    SyncState,
    SyncStatus,
)
from mls_data.services import admin
from mls_data.services import orchestrator as orchestrator_module
from mls_data.services.locking import acquire_run_lock
from mls_data.services.media_queue import MediaQueue
from mls_data.services.orchestrator import RunState, SyncOrchestrator

pytestmark = pytest.mark.django_db

FIELD_MAPPING = [
    {"source": "ListingKey", "target": "external_id", "required": True},
    {"source": "StandardStatus", "target": "status"},
    {"source": "ListPrice", "target": "price"},
    {"source": "City", "target": "city"},
    {"source": "ModificationTimestamp", "target": "source_modified_at"},
]


def _records(count: int = 3) -> list[dict[str, object]]:
    return [
        {
            "ListingKey": f"L-{index}",
            "StandardStatus": "Active",
            "ListPrice": f"{300000 + index * 1000}",
            "City": "Austin",
            "ModificationTimestamp": "2026-01-01T00:00:00Z",
            "Media": [f"https://cdn.example.com/{index}/a.jpg", f"https://cdn.example.com/{index}/b.jpg"],
        }
        for index in range(1, count + 1)
    ]


def _provider(records: list[dict[str, object]] | None = None, **values: object) -> ProviderConfiguration:
    return ProviderConfiguration.objects.create(
        provider_id="mls-a",
        name="MLS A",
        provider_type="fixture",
        connection={"records": records if records is not None else _records(), "page_size": 2},
        field_mapping=FIELD_MAPPING,
        **values,
    )


class RecordingPipeline:
    def __init__(self, failing_urls: set[str] | None = None) -> None:
        self.failing_urls = failing_urls or set()
        self.processed: list[str] = []

    def process(self, media: PropertyMedia, *, run_id: str | None = None) -> PropertyMedia:
        self.processed.append(media.source_url)
        media.status = MediaStatus.FAILED if media.source_url in self.failing_urls else MediaStatus.UPLOADED
        media.save(update_fields=["status"])
        return media


def _orchestrator(
    provider_config: ProviderConfiguration,
    adapter: FixtureProviderAdapter | None = None,
    pipeline: RecordingPipeline | None = None,
    batch_size: int = 2,
) -> tuple[SyncOrchestrator, RecordingPipeline]:
    adapter = adapter or provider_config.build_adapter()
    pipeline = pipeline or RecordingPipeline()
    media_queue = MediaQueue(adapter, pipeline=pipeline, max_workers=0)  # type: ignore[arg-type]
    return SyncOrchestrator(provider_config, adapter=adapter, media_queue=media_queue, batch_size=batch_size), pipeline


class FailingAdapter(FixtureProviderAdapter):
    def __init__(self, provider_id, error: Exception, **kwargs) -> None:
        super().__init__(provider_id, **kwargs)
        self.error = error

    def fetch_changed_records(self, since, cursor=None) -> RecordPage:
        raise self.error


class CancellingAdapter(FixtureProviderAdapter):
    """Requests cancellation while the first page is being fetched."""

    def fetch_changed_records(self, since, cursor=None) -> RecordPage:
        if cursor is None:
            SyncStatus.objects.filter(provider_id=self.provider_id).update(cancel_requested=True)
        return super().fetch_changed_records(since, cursor)


def test_first_run_is_full_and_creates_every_property(caplog: pytest.LogCaptureFixture) -> None:
    provider_config = _provider()
    orchestrator, pipeline = _orchestrator(provider_config)
    caplog.set_level(logging.INFO)

    result = orchestrator.run()

    assert result.state == RunState.COMPLETED
    assert result.outcome == "success"
    assert result.sync_type == "full"
    assert (result.fetched, result.created, result.updated, result.failed) == (3, 3, 0, 0)
    assert Property.objects.count() == 3
    assert result.media_processed == 6
    assert len(pipeline.processed) == 6

    history = SyncHistory.objects.get()
    assert history.run_id == result.run_id
    assert history.outcome == "success"
    assert history.created_count == 3
    assert history.media_processed_count == 6

    status = SyncStatus.objects.get(provider_id="mls-a")
    assert status.state == SyncState.SUCCESS
    assert status.records_processed == 3

    provider_config.refresh_from_db()
    assert provider_config.last_synced_at == result.started_at
    assert provider_config.last_full_sync_at == result.started_at

    assert "SYNC_RUN start=" in caplog.text
    assert "mode=full" in caplog.text
    assert "SYNC_RUN done provider=mls-a" in caplog.text
    assert '"event": "run_summary"' in caplog.text


def test_rerun_with_unchanged_data_writes_nothing_but_sync_time() -> None:
    provider_config = _provider()
    _orchestrator(provider_config)[0].run()
    first_sync = {row.external_id: row.last_synchronized_at for row in Property.objects.all()}

    orchestrator, pipeline = _orchestrator(provider_config)
    result = orchestrator.run(sync_type="full")

    assert (result.created, result.updated, result.unchanged) == (0, 0, 3)
    assert pipeline.processed == []
    assert Property.objects.count() == 3
    assert PropertyChange.objects.filter(run_id=result.run_id).count() == 0
    for row in Property.objects.all():
        assert row.last_synchronized_at >= first_sync[row.external_id]
    assert SyncHistory.objects.count() == 2


def test_incremental_run_uses_last_synced_at() -> None:
    provider_config = _provider(last_synced_at=now() - timedelta(minutes=5), last_full_sync_at=now())
    orchestrator, _pipeline = _orchestrator(provider_config)

    result = orchestrator.run()

    assert result.sync_type == "incremental"
    # Fixture records were modified long before the last sync.
    assert result.fetched == 0
    assert result.outcome == "success"


def test_mapping_failure_is_isolated_to_the_record() -> None:
    records = _records(3)
    records[1]["ListPrice"] = "-1"
    provider_config = _provider(records)
    orchestrator, _pipeline = _orchestrator(provider_config)

    result = orchestrator.run()

    assert result.outcome == "success"
    assert result.failed == 1
    assert result.created == 2
    assert result.failed_external_ids == ["L-2"]
    assert set(Property.objects.values_list("external_id", flat=True)) == {"L-1", "L-3"}

    error = SyncError.objects.get(category="mapping")
    assert error.external_id == "L-2"
    assert error.field == "price"
    assert error.run_id == result.run_id

    history = SyncHistory.objects.get()
    assert history.failed_count == 1
    assert history.outcome == "success"

    report = admin.get_run_report(result.run_id)
    assert report["succeeded"] == 2
    assert report["failed_records"] == [
        {"external_id": "L-2", "category": "mapping", "field": "price", "reason": error.message}
    ]


def test_run_is_skipped_when_another_run_holds_the_lock(caplog: pytest.LogCaptureFixture) -> None:
    provider_config = _provider()
    assert acquire_run_lock("mls-a", "full") is not None
    orchestrator, _pipeline = _orchestrator(provider_config)
    caplog.set_level(logging.INFO)

    result = orchestrator.run()

    assert result.skipped
    assert result.run_id is None
    assert SyncHistory.objects.count() == 0
    assert Property.objects.count() == 0
    assert "reason=already_running" in caplog.text


@pytest.mark.parametrize(
    ("error", "category"),
    [
        (ConnectivityError("provider unreachable"), "connectivity"),
        (AuthenticationError("Provider rejected credentials (401)"), "authentication"),
        (RuntimeError("unexpected payload"), "unknown"),
    ],
)
def test_run_level_errors_fail_the_run_without_raising(error: Exception, category: str) -> None:
    provider_config = _provider()
    adapter = FailingAdapter("mls-a", error, records=_records())
    orchestrator, _pipeline = _orchestrator(provider_config, adapter=adapter)

    result = orchestrator.run()

    assert result.state == RunState.FAILED
    assert result.outcome == "failed"
    assert result.error_message == str(error)
    assert SyncHistory.objects.get().outcome == "failed"
    assert SyncStatus.objects.get(provider_id="mls-a").state == SyncState.FAILED
    assert SyncError.objects.get().category == category
    provider_config.refresh_from_db()
    assert provider_config.last_synced_at is None
    assert adapter.connected is False


def test_cancel_stops_at_batch_boundary_and_keeps_committed_rows() -> None:
    provider_config = _provider(_records(5))
    adapter = CancellingAdapter("mls-a", {"page_size": 2}, records=_records(5))
    orchestrator, _pipeline = _orchestrator(provider_config, adapter=adapter, batch_size=2)

    result = orchestrator.run()

    assert result.state == RunState.CANCELLED
    assert result.outcome == "cancelled"
    assert result.created == 2
    assert Property.objects.count() == 2
    assert SyncHistory.objects.get().outcome == "cancelled"
    status = SyncStatus.objects.get(provider_id="mls-a")
    assert status.state == SyncState.CANCELLED
    assert status.cancel_requested is False
    provider_config.refresh_from_db()
    assert provider_config.last_synced_at is None
    assert provider_config.last_full_sync_at is None


def test_media_failures_do_not_affect_property_rows() -> None:
    provider_config = _provider(_records(1))
    pipeline = RecordingPipeline(failing_urls={"https://cdn.example.com/1/b.jpg"})
    orchestrator, _pipeline = _orchestrator(provider_config, pipeline=pipeline)

    result = orchestrator.run()

    assert result.outcome == "success"
    assert result.created == 1
    assert (result.media_processed, result.media_failed) == (1, 1)
    assert Property.objects.count() == 1
    assert PropertyMedia.objects.filter(status=MediaStatus.FAILED).count() == 1


def test_manual_trigger_selects_requested_sync_type() -> None:
    provider_config = _provider(last_synced_at=now(), last_full_sync_at=now())
    admin.trigger_sync("mls-a", "full")
    orchestrator, _pipeline = _orchestrator(provider_config)

    result = orchestrator.run(triggered_by="manual")

    assert result.sync_type == "full"
    assert result.created == 3
    status = SyncStatus.objects.get(provider_id="mls-a")
    assert status.trigger_requested is False
    assert SyncHistory.objects.get().triggered_by == "manual"


def test_resolve_sync_type_prefers_explicit_then_full_interval() -> None:
    current_time = datetime(2026, 3, 1, tzinfo=timezone.utc)
    provider_config = _provider(
        last_synced_at=current_time - timedelta(hours=1),
        last_full_sync_at=current_time - timedelta(hours=2),
        full_sync_interval_hours=24,
    )
    orchestrator = SyncOrchestrator(provider_config)

    assert orchestrator.resolve_sync_type(None, current_time) == "incremental"
    assert orchestrator.resolve_sync_type("full", current_time) == "full"
    assert orchestrator.resolve_sync_type(None, current_time + timedelta(days=1)) == "full"

    provider_config.last_synced_at = None
    assert orchestrator.resolve_sync_type(None, current_time) == "full"


@pytest.mark.parametrize("error", [IntegrityError("constraint failed"), InvalidOperation()])
def test_batch_database_error_falls_back_to_single_records(monkeypatch: pytest.MonkeyPatch, error: Exception) -> None:
    provider_config = _provider()
    original_upsert = orchestrator_module.upsert_properties

    def flaky_upsert(records, **kwargs):
        records = list(records)
        if len(records) > 1 or records[0].external_id == "L-2":
            raise error
        return original_upsert(records, **kwargs)

    monkeypatch.setattr(orchestrator_module, "upsert_properties", flaky_upsert)
    orchestrator, _pipeline = _orchestrator(provider_config)

    result = orchestrator.run()

    assert result.outcome == "success"
    assert result.created == 2
    assert result.failed == 1
    assert result.failed_external_ids == ["L-2"]
    assert SyncError.objects.get().external_id == "L-2"


def test_media_is_skipped_when_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    provider_config = _provider(_records(1))
    monkeypatch.setattr(settings.media, "enabled", False)

    result = SyncOrchestrator(provider_config).run()

    assert result.outcome == "success"
    assert result.media_processed == 0
    assert PropertyMedia.objects.count() == 0


@pytest.mark.parametrize("bathrooms", ["1e30", "Infinity", "NaN", "1000"])
def test_unstorable_number_fails_only_its_record(bathrooms: str) -> None:
    records = _records(3)
    for record in records:
        record["BathroomsTotal"] = "2.5"
    records[1]["BathroomsTotal"] = bathrooms
    provider_config = _provider(records)
    provider_config.field_mapping = [*FIELD_MAPPING, {"source": "BathroomsTotal", "target": "bathrooms"}]
    provider_config.save()
    orchestrator, _pipeline = _orchestrator(provider_config)

    result = orchestrator.run()

    assert result.outcome == "success"
    assert result.failed_external_ids == ["L-2"]
    assert set(Property.objects.values_list("external_id", flat=True)) == {"L-1", "L-3"}
    error = SyncError.objects.get()
    assert (error.category, error.field, error.external_id) == ("mapping", "bathrooms", "L-2")
    assert SyncHistory.objects.get().failed_count == 1


def test_unknown_provider_type_fails_the_run_and_releases_the_lock() -> None:
    provider_config = _provider()
    provider_config.provider_type = "ftp"
    provider_config.save()

    result = SyncOrchestrator(provider_config).run()

    assert result.state == RunState.FAILED
    assert "Unknown provider type 'ftp'" in result.error_message
    assert SyncStatus.objects.get(provider_id="mls-a").state == SyncState.FAILED
    history = SyncHistory.objects.get()
    assert (history.run_id, history.outcome) == (result.run_id, "failed")
    assert SyncError.objects.get().category == "unknown"

    assert SyncOrchestrator(provider_config).run().state == RunState.FAILED
    assert SyncHistory.objects.count() == 2


def test_media_item_without_url_is_skipped() -> None:
    records = _records(1)
    records[0]["Media"] = [{"Caption": "no link"}, "https://cdn.example.com/1/a.jpg"]
    provider_config = _provider(records)
    orchestrator, pipeline = _orchestrator(provider_config)

    result = orchestrator.run()

    assert result.outcome == "success"
    assert pipeline.processed == ["https://cdn.example.com/1/a.jpg"]
    assert (result.media_processed, result.media_failed) == (1, 0)


class CrashingPipeline(RecordingPipeline):
    def process(self, media: PropertyMedia, *, run_id: str | None = None) -> PropertyMedia:
        raise RuntimeError("decoder exploded")


def test_unexpected_media_error_is_recorded_and_the_run_continues() -> None:
    provider_config = _provider(_records(2))
    orchestrator, _pipeline = _orchestrator(provider_config, pipeline=CrashingPipeline())

    result = orchestrator.run()

    assert result.outcome == "success"
    assert result.created == 2
    assert result.media_failed == 2
    errors = SyncError.objects.order_by("external_id")
    assert [error.external_id for error in errors] == ["L-1", "L-2"]
    assert {error.context["stage"] for error in errors} == {"job"}
    assert {error.category for error in errors} == {"unknown"}
