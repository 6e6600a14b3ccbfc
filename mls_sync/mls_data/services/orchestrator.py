"""One synchronization run for one provider.

starting -> fetching -> processing -> finalizing -> completed | failed | cancelled

A run that cannot take the provider's lock ends as ``skipped`` without
touching history. Mapping failures are recorded per record and never stop the
run; connectivity, authentication and unexpected errors abort it and are
recorded as a failed run. Exactly one SyncHistory row is written for every run
that held the lock, after the media queue has drained.
"""

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from django.db import DataError, IntegrityError, transaction
from django.utils.timezone import now

from mls_api.config import settings
from mls_api.exceptions import AuthenticationError, ConnectivityError, LockContentionError, MappingError
from mls_api.mapping import MappingTable, map_record, resolve_path
from mls_api.models.canonical import CanonicalProperty
from mls_api.providers import ProviderAdapter
from mls_api.type_defs import ProviderRecord
from mls_data.models import (
    ProviderConfiguration,
    SyncHistory,
    SyncOutcome,
    SyncState,
    SyncType,
    TriggerSource,
)
from mls_data.services import ledger
from mls_data.services.locking import (
    RunLease,
    acquire_run_lock,
    get_status_row,
    is_cancel_requested,
    release_run_lock,
    write_heartbeat,
)
from mls_data.services.media import MediaPipeline
from mls_data.services.media_queue import MediaQueue, MediaStats
from mls_data.services.upsert import UpsertResult, upsert_properties

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS_INTERVAL = 30


class RunState(StrEnum):
    STARTING = "starting"
    FETCHING = "fetching"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


OUTCOME_STATES = {
    SyncOutcome.SUCCESS: (RunState.COMPLETED, SyncState.SUCCESS),
    SyncOutcome.FAILED: (RunState.FAILED, SyncState.FAILED),
    SyncOutcome.CANCELLED: (RunState.CANCELLED, SyncState.CANCELLED),
}


@dataclass
class RunResult:
    provider_id: str
    state: str = RunState.STARTING
    run_id: str | None = None
    sync_type: str | None = None
    triggered_by: str = TriggerSource.COMMAND
    outcome: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    fetched: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    media_processed: int = 0
    media_failed: int = 0
    error_message: str | None = None
    failed_external_ids: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.state == RunState.SKIPPED

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["duration_seconds"] = self.duration_seconds
        return payload


def _log_sync_check(event: str, payload: Mapping[str, object]) -> None:
    logger.info(
        "SYNC_CHECK %s",
        json.dumps({"event": event, **payload}, sort_keys=True, default=str),
    )


class SyncOrchestrator:
    def __init__(
        self,
        provider_config: ProviderConfiguration,
        adapter: ProviderAdapter | None = None,
        media_queue: MediaQueue | None = None,
        batch_size: int | None = None,
        media_pipeline: MediaPipeline | None = None,
    ) -> None:
        self.provider_config = provider_config
        self.provider_id = provider_config.provider_id
        self.adapter = adapter
        self.media_queue = media_queue
        self.media_pipeline = media_pipeline
        self.batch_size = batch_size or settings.sync.batch_size
        self.state = RunState.STARTING
        self._last_heartbeat_at: datetime | None = None

    def resolve_sync_type(self, requested: str | None = None, current_time: datetime | None = None) -> str:
        if requested:
            return SyncType(requested)
        current_time = current_time or now()
        if self.provider_config.full_sync_due(current_time):
            return SyncType.FULL
        return SyncType.INCREMENTAL

    def run(self, sync_type: str | None = None, triggered_by: str = TriggerSource.COMMAND) -> RunResult:
        current_time = now()
        status = get_status_row(self.provider_id)
        requested = sync_type or (status.requested_sync_type if status.trigger_requested else None)
        resolved_type = self.resolve_sync_type(requested, current_time)
        result = RunResult(provider_id=self.provider_id, sync_type=resolved_type, triggered_by=triggered_by)

        lease = acquire_run_lock(self.provider_id, resolved_type, current_time=current_time)
        if lease is None:
            result.state = self.state = RunState.SKIPPED
            return result

        result.run_id = lease.run_id
        result.started_at = lease.started_at
        since = None if resolved_type == SyncType.FULL else self.provider_config.last_synced_at
        logger.info(
            "SYNC_RUN start=%s provider=%s mode=%s run=%s since=%s triggered_by=%s",
            lease.started_at.isoformat(),
            self.provider_id,
            resolved_type,
            lease.run_id,
            since.isoformat() if since else None,
            triggered_by,
        )

        adapter: ProviderAdapter | None = None
        media_queue = self.media_queue
        owns_queue = False
        outcome = SyncOutcome.FAILED
        lost_lock = False
        try:
            adapter = self.adapter or self.provider_config.build_adapter()
            if media_queue is None and settings.media.enabled:
                media_queue = MediaQueue(adapter, pipeline=self.media_pipeline)
                owns_queue = True
            table = self.provider_config.mapping_table()
            adapter.connect()
            cancelled = self._process_pages(adapter, table, since, lease, result, media_queue)
            outcome = SyncOutcome.CANCELLED if cancelled else SyncOutcome.SUCCESS
        except LockContentionError as exc:
            lost_lock = True
            result.error_message = str(exc)
            logger.error("SYNC_RUN lost_lock provider=%s run=%s: %s", self.provider_id, lease.run_id, exc)
            ledger.record_exception(self.provider_id, exc, run_id=lease.run_id)
        except (ConnectivityError, AuthenticationError) as exc:
            result.error_message = str(exc)
            logger.error("SYNC_RUN aborted provider=%s run=%s category=%s: %s", self.provider_id, lease.run_id, exc.category, exc)
            ledger.record_exception(self.provider_id, exc, run_id=lease.run_id)
        except Exception as exc:
            result.error_message = str(exc) or type(exc).__name__
            logger.exception("SYNC_RUN crashed provider=%s run=%s", self.provider_id, lease.run_id)
            ledger.record_exception(self.provider_id, exc, run_id=lease.run_id)
        finally:
            self.state = RunState.FINALIZING
            if media_queue is not None:
                if outcome != SyncOutcome.SUCCESS:
                    media_queue.cancel_pending()
                media_stats = media_queue.drain()
                if owns_queue:
                    media_queue.shutdown()
            else:
                media_stats = MediaStats()
            if adapter is not None:
                adapter.disconnect()

        result.media_processed = media_stats.processed
        result.media_failed = media_stats.failed
        result.outcome = outcome
        self._finalize(lease, result, outcome, lost_lock=lost_lock)
        return result

    def _process_pages(
        self,
        adapter: ProviderAdapter,
        table: MappingTable,
        since: datetime | None,
        lease: RunLease,
        result: RunResult,
        media_queue: MediaQueue | None,
    ) -> bool:
        """Drive pagination to exhaustion; returns True when a cancel request stopped the run."""

        self.state = RunState.FETCHING
        batch: list[CanonicalProperty] = []
        for page in adapter.iter_pages(since):
            self.state = RunState.PROCESSING
            result.fetched += len(page.records)
            for record in page.records:
                canonical = self._map(record, table, lease, result)
                if canonical is None:
                    continue
                batch.append(canonical)
                if len(batch) >= self.batch_size:
                    self._flush(batch, lease, result, media_queue)
                    batch = []
                    if is_cancel_requested(lease):
                        self._log_cancel(lease, result)
                        return True
            self._maybe_write_heartbeat(lease, result)
            self.state = RunState.FETCHING

        if batch:
            self._flush(batch, lease, result, media_queue)
            if is_cancel_requested(lease):
                self._log_cancel(lease, result)
                return True
        return False

    def _map(self, record: ProviderRecord, table: MappingTable, lease: RunLease, result: RunResult) -> CanonicalProperty | None:
        try:
            return map_record(record, table, self.provider_id)
        except MappingError as exc:
            external_id = self._external_id_hint(record, table)
            result.failed += 1
            if external_id:
                result.failed_external_ids.append(external_id)
            ledger.record_exception(self.provider_id, exc, run_id=lease.run_id, external_id=external_id)
            return None

    @staticmethod
    def _external_id_hint(record: ProviderRecord, table: MappingTable) -> str | None:
        for mapping in table:
            if mapping.target != "external_id":
                continue
            value = resolve_path(record, mapping.source)
            if isinstance(value, (str, int)) and str(value).strip():
                return str(value).strip()
        return None

    def _flush(
        self,
        batch: Sequence[CanonicalProperty],
        lease: RunLease,
        result: RunResult,
        media_queue: MediaQueue | None,
    ) -> None:
        synced_at = now()
        try:
            upserted = upsert_properties(batch, synced_at=synced_at, run_id=lease.run_id)
        except (DataError, IntegrityError, ArithmeticError) as exc:
            logger.warning(
                "Batch upsert of %s records failed for %s (%s); retrying one by one",
                len(batch),
                self.provider_id,
                exc,
            )
            upserted = self._upsert_individually(batch, synced_at, lease, result)

        result.created += len(upserted.created)
        result.updated += len(upserted.updated)
        result.unchanged += upserted.unchanged
        result.processed += upserted.processed

        write_heartbeat(
            lease,
            records_processed=result.processed,
            records_created=result.created,
            records_updated=result.updated,
            records_failed=result.failed,
        )
        self._last_heartbeat_at = now()

        if media_queue is not None:
            for property_row in upserted.changed:
                media_queue.submit(property_row, run_id=lease.run_id)

    def _upsert_individually(
        self,
        batch: Sequence[CanonicalProperty],
        synced_at: datetime,
        lease: RunLease,
        result: RunResult,
    ) -> UpsertResult:
        combined = UpsertResult()
        for record in batch:
            try:
                single = upsert_properties([record], synced_at=synced_at, run_id=lease.run_id)
            except (DataError, IntegrityError, ArithmeticError) as exc:
                result.failed += 1
                result.failed_external_ids.append(record.external_id)
                ledger.record_exception(self.provider_id, exc, run_id=lease.run_id, external_id=record.external_id)
                continue
            combined.created.extend(single.created)
            combined.updated.extend(single.updated)
            combined.unchanged += single.unchanged
            combined.stale += single.stale
        return combined

    def _maybe_write_heartbeat(self, lease: RunLease, result: RunResult) -> None:
        current_time = now()
        if self._last_heartbeat_at is not None and current_time - self._last_heartbeat_at < timedelta(
            seconds=HEARTBEAT_SECONDS_INTERVAL
        ):
            return
        write_heartbeat(lease, records_processed=result.processed, records_failed=result.failed)
        self._last_heartbeat_at = current_time

    def _log_cancel(self, lease: RunLease, result: RunResult) -> None:
        logger.info(
            "SYNC_RUN cancel provider=%s run=%s processed=%s",
            self.provider_id,
            lease.run_id,
            result.processed,
        )

    def _finalize(self, lease: RunLease, result: RunResult, outcome: str, *, lost_lock: bool) -> None:
        run_state, sync_state = OUTCOME_STATES[SyncOutcome(outcome)]
        result.finished_at = now()

        with transaction.atomic():
            SyncHistory.objects.create(
                run_id=lease.run_id,
                provider_id=self.provider_id,
                sync_type=lease.sync_type,
                triggered_by=result.triggered_by,
                started_at=lease.started_at,
                finished_at=result.finished_at,
                duration_seconds=result.duration_seconds,
                fetched_count=result.fetched,
                processed_count=result.processed,
                created_count=result.created,
                updated_count=result.updated,
                unchanged_count=result.unchanged,
                failed_count=result.failed,
                media_processed_count=result.media_processed,
                media_failed_count=result.media_failed,
                outcome=outcome,
                error_message=result.error_message,
            )
            if not lost_lock:
                release_run_lock(
                    lease,
                    sync_state,
                    last_error=result.error_message,
                    records_processed=result.processed,
                    records_created=result.created,
                    records_updated=result.updated,
                    records_failed=result.failed,
                )
            if outcome == SyncOutcome.SUCCESS:
                config_updates: dict[str, object] = {"last_synced_at": lease.started_at}
                if lease.sync_type == SyncType.FULL:
                    config_updates["last_full_sync_at"] = lease.started_at
                ProviderConfiguration.objects.filter(pk=self.provider_config.pk).update(**config_updates)
                for name, value in config_updates.items():
                    setattr(self.provider_config, name, value)

        result.state = self.state = run_state
        elapsed_seconds = int(result.duration_seconds)
        hours, remainder = divmod(elapsed_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        logger.info(
            "SYNC_RUN done provider=%s run=%s outcome=%s start=%s end=%s elapsed_seconds=%s elapsed_hms=%02d:%02d:%02d",
            self.provider_id,
            lease.run_id,
            outcome,
            lease.started_at.isoformat(),
            result.finished_at.isoformat(),
            elapsed_seconds,
            hours,
            minutes,
            seconds,
        )
        _log_sync_check(
            "run_summary",
            {
                "provider": self.provider_id,
                "run_id": lease.run_id,
                "mode": lease.sync_type,
                "outcome": outcome,
                "fetched": result.fetched,
                "created": result.created,
                "updated": result.updated,
                "unchanged": result.unchanged,
                "failed": result.failed,
                "media_processed": result.media_processed,
                "media_failed": result.media_failed,
            },
        )
