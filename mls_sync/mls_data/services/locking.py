"""Per-provider run lock held on the SyncStatus row.

Acquisition is a single conditional UPDATE, so two processes racing for the
same provider cannot both win: the row only flips to ``running`` when it is
not already running, or when the running row's heartbeat has gone stale.
Every later write is scoped to the ``run_id`` that won, which lets a run
notice that a newer process took the lock over.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from django.db import IntegrityError
from django.db.models import Q
from django.utils.timezone import now

from mls_api.config import settings
from mls_api.exceptions import LockContentionError
from mls_data.models import SyncState, SyncStatus

logger = logging.getLogger(__name__)


@dataclass
class RunLease:
    provider_id: str
    run_id: str
    sync_type: str
    started_at: datetime
    took_over_stale: bool = False


def stale_threshold() -> timedelta:
    return timedelta(seconds=settings.sync.stale_run_seconds)


def get_status_row(provider_id: str) -> SyncStatus:
    try:
        status, _created = SyncStatus.objects.get_or_create(provider_id=provider_id)
    except IntegrityError:
        status = SyncStatus.objects.get(provider_id=provider_id)
    return status


def acquire_run_lock(
    provider_id: str,
    sync_type: str,
    *,
    stale_after: timedelta | None = None,
    current_time: datetime | None = None,
) -> RunLease | None:
    current_time = current_time or now()
    cutoff = current_time - (stale_after or stale_threshold())
    previous = get_status_row(provider_id)

    run_id = uuid4().hex
    claimable = (
        ~Q(state=SyncState.RUNNING)
        | Q(last_heartbeat__lt=cutoff)
        | Q(last_heartbeat__isnull=True, started_at__lt=cutoff)
        | Q(last_heartbeat__isnull=True, started_at__isnull=True)
    )
    claimed = (
        SyncStatus.objects.filter(provider_id=provider_id)
        .filter(claimable)
        .update(
            state=SyncState.RUNNING,
            run_id=run_id,
            sync_type=sync_type,
            started_at=current_time,
            finished_at=None,
            last_heartbeat=current_time,
            records_processed=0,
            records_created=0,
            records_updated=0,
            records_failed=0,
            cancel_requested=False,
            trigger_requested=False,
            requested_sync_type=None,
            last_error=None,
            updated_at=current_time,
        )
    )
    if not claimed:
        logger.info("SYNC_RUN skipped provider=%s reason=already_running", provider_id)
        return None

    took_over_stale = previous.state == SyncState.RUNNING
    if took_over_stale:
        logger.warning(
            "SYNC_RUN stale_takeover provider=%s previous_run=%s last_heartbeat=%s",
            provider_id,
            previous.run_id,
            previous.last_heartbeat.isoformat() if previous.last_heartbeat else None,
        )
    return RunLease(
        provider_id=provider_id,
        run_id=run_id,
        sync_type=sync_type,
        started_at=current_time,
        took_over_stale=took_over_stale,
    )


def _owned(lease: RunLease):
    return SyncStatus.objects.filter(provider_id=lease.provider_id, run_id=lease.run_id, state=SyncState.RUNNING)


def write_heartbeat(lease: RunLease, **counters: int) -> None:
    current_time = now()
    updated = _owned(lease).update(last_heartbeat=current_time, updated_at=current_time, **counters)
    if not updated:
        raise LockContentionError(f"Run {lease.run_id} no longer holds the lock for {lease.provider_id}")


def is_cancel_requested(lease: RunLease) -> bool:
    return bool(_owned(lease).values_list("cancel_requested", flat=True).first())


def release_run_lock(lease: RunLease, state: str, *, last_error: str | None = None, **counters: int) -> bool:
    current_time = now()
    released = (
        SyncStatus.objects.filter(provider_id=lease.provider_id, run_id=lease.run_id)
        .update(
            state=state,
            finished_at=current_time,
            last_heartbeat=current_time,
            cancel_requested=False,
            last_error=last_error,
            updated_at=current_time,
            **counters,
        )
    )
    if not released:
        logger.warning("Run %s for %s lost its lock before release", lease.run_id, lease.provider_id)
    return bool(released)
