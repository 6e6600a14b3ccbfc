"""Operator-facing read and control operations.

Everything here returns plain JSON-ready dicts so the management commands can
print results directly. Control operations only set flags; the scheduler and
the running orchestrator act on them.
"""

import logging
from datetime import datetime

from django.core.paginator import Paginator
from django.db.models import Count, Sum
from django.utils.timezone import now

from mls_api.exceptions import ProviderNotFoundError
from mls_api.providers import HealthStatus
from mls_data.models import (
    ErrorCategory,
    Property,
    PropertyChange,
    PropertyMedia,
    ProviderConfiguration,
    SyncError,
    SyncHistory,
    SyncState,
    SyncStatus,
    SyncType,
)
from mls_data.services import ledger
from mls_data.services.locking import get_status_row, stale_threshold
from mls_data.services.media import retryable_media

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 5
MAX_INTERVAL_MINUTES = 1440
MAX_PAGE_SIZE = 200


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def get_provider(provider_id: str) -> ProviderConfiguration:
    try:
        return ProviderConfiguration.objects.get(provider_id=provider_id)
    except ProviderConfiguration.DoesNotExist as exc:
        raise ProviderNotFoundError(f"Unknown provider {provider_id!r}") from exc


def status_payload(provider_config: ProviderConfiguration, status: SyncStatus | None) -> dict[str, object]:
    current_time = now()
    heartbeat_age_seconds = None
    if status is not None and status.last_heartbeat is not None:
        heartbeat_age_seconds = max(0, int((current_time - status.last_heartbeat).total_seconds()))
    return {
        "provider_id": provider_config.provider_id,
        "name": provider_config.name,
        "enabled": provider_config.enabled,
        "sync_interval_minutes": provider_config.sync_interval_minutes,
        "last_synced_at": _isoformat(provider_config.last_synced_at),
        "last_full_sync_at": _isoformat(provider_config.last_full_sync_at),
        "state": status.state if status else SyncState.IDLE,
        "run_id": status.run_id if status else None,
        "sync_type": status.sync_type if status else None,
        "started_at": _isoformat(status.started_at) if status else None,
        "finished_at": _isoformat(status.finished_at) if status else None,
        "last_heartbeat": _isoformat(status.last_heartbeat) if status else None,
        "heartbeat_age_seconds": heartbeat_age_seconds,
        "is_stale": bool(status and status.is_stale(current_time, stale_threshold())),
        "records_processed": status.records_processed if status else 0,
        "records_created": status.records_created if status else 0,
        "records_updated": status.records_updated if status else 0,
        "records_failed": status.records_failed if status else 0,
        "cancel_requested": bool(status and status.cancel_requested),
        "trigger_requested": bool(status and status.trigger_requested),
        "last_error": status.last_error if status else None,
    }


def history_payload(history: SyncHistory) -> dict[str, object]:
    return {
        "run_id": history.run_id,
        "provider_id": history.provider_id,
        "sync_type": history.sync_type,
        "triggered_by": history.triggered_by,
        "started_at": _isoformat(history.started_at),
        "finished_at": _isoformat(history.finished_at),
        "duration_seconds": history.duration_seconds,
        "fetched": history.fetched_count,
        "processed": history.processed_count,
        "created": history.created_count,
        "updated": history.updated_count,
        "unchanged": history.unchanged_count,
        "failed": history.failed_count,
        "media_processed": history.media_processed_count,
        "media_failed": history.media_failed_count,
        "outcome": history.outcome,
        "error_message": history.error_message,
    }


def error_payload(error: SyncError) -> dict[str, object]:
    return {
        "id": error.pk,
        "provider_id": error.provider_id,
        "run_id": error.run_id,
        "external_id": error.external_id,
        "media_id": error.media_id,
        "category": error.category,
        "field": error.field,
        "message": error.message,
        "context": error.context,
        "created_at": _isoformat(error.created_at),
        "resolved": error.resolved,
    }


def trigger_sync(provider_id: str, sync_type: str | None = None) -> dict[str, object]:
    provider_config = get_provider(provider_id)
    status = get_status_row(provider_id)
    SyncStatus.objects.filter(pk=status.pk).update(
        trigger_requested=True,
        requested_sync_type=SyncType(sync_type) if sync_type else None,
        updated_at=now(),
    )
    logger.info("Manual %s sync requested for %s", sync_type or "default", provider_id)
    status.refresh_from_db()
    return status_payload(provider_config, status)


def cancel_sync(provider_id: str) -> dict[str, object]:
    provider_config = get_provider(provider_id)
    updated = SyncStatus.objects.filter(provider_id=provider_id, state=SyncState.RUNNING).update(
        cancel_requested=True,
        updated_at=now(),
    )
    if not updated:
        raise ValueError(f"Provider {provider_id!r} has no running sync to cancel")
    logger.info("Cancellation requested for %s", provider_id)
    return status_payload(provider_config, SyncStatus.objects.get(provider_id=provider_id))


def get_status(provider_id: str | None = None) -> list[dict[str, object]]:
    providers = ProviderConfiguration.objects.all()
    if provider_id:
        providers = [get_provider(provider_id)]
    statuses = {status.provider_id: status for status in SyncStatus.objects.all()}
    return [status_payload(provider_config, statuses.get(provider_config.provider_id)) for provider_config in providers]


def get_history(provider_id: str | None = None, page: int = 1, page_size: int = 20) -> dict[str, object]:
    queryset = SyncHistory.objects.all()
    if provider_id:
        get_provider(provider_id)
        queryset = queryset.filter(provider_id=provider_id)
    paginator = Paginator(queryset, max(1, min(page_size, MAX_PAGE_SIZE)))
    current_page = paginator.get_page(page)
    return {
        "page": current_page.number,
        "page_size": paginator.per_page,
        "total": paginator.count,
        "pages": paginator.num_pages,
        "results": [history_payload(history) for history in current_page.object_list],
    }


def get_unresolved_errors(provider_id: str | None = None, limit: int = 100) -> dict[str, object]:
    if provider_id:
        get_provider(provider_id)
    queryset = ledger.unresolved(provider_id)
    return {
        "total": queryset.count(),
        "by_category": ledger.unresolved_by_category(provider_id),
        "results": [error_payload(error) for error in queryset[:limit]],
    }


def resolve_errors(error_ids: list[int], note: str | None = None) -> int:
    return ledger.resolve(error_ids, note)


def get_statistics() -> dict[str, object]:
    property_counts = {
        row["provider_id"]: row["total"]
        for row in Property.objects.order_by().values("provider_id").annotate(total=Count("id"))
    }
    media_counts = {
        row["status"]: row["total"]
        for row in PropertyMedia.objects.order_by().values("status").annotate(total=Count("id"))
    }
    outcomes = {
        row["outcome"]: row["total"]
        for row in SyncHistory.objects.order_by().values("outcome").annotate(total=Count("id"))
    }
    totals = SyncHistory.objects.aggregate(
        created=Sum("created_count"),
        updated=Sum("updated_count"),
        failed=Sum("failed_count"),
    )
    return {
        "providers": ProviderConfiguration.objects.count(),
        "enabled_providers": ProviderConfiguration.objects.filter(enabled=True).count(),
        "running": SyncStatus.objects.filter(state=SyncState.RUNNING).count(),
        "properties": sum(property_counts.values()),
        "properties_by_provider": property_counts,
        "media_by_status": media_counts,
        "media_awaiting_retry": pending_media_count(),
        "runs_by_outcome": outcomes,
        "records_created": totals["created"] or 0,
        "records_updated": totals["updated"] or 0,
        "records_failed": totals["failed"] or 0,
        "unresolved_errors": ledger.unresolved_by_category(),
    }


def set_enabled(provider_id: str, enabled: bool) -> dict[str, object]:
    provider_config = get_provider(provider_id)
    provider_config.enabled = enabled
    provider_config.save(update_fields=["enabled", "updated_at"])
    logger.info("Provider %s %s", provider_id, "enabled" if enabled else "disabled")
    return status_payload(provider_config, SyncStatus.objects.filter(provider_id=provider_id).first())


def update_interval(provider_id: str, minutes: int) -> dict[str, object]:
    if not MIN_INTERVAL_MINUTES <= minutes <= MAX_INTERVAL_MINUTES:
        raise ValueError(
            f"Sync interval must be between {MIN_INTERVAL_MINUTES} and {MAX_INTERVAL_MINUTES} minutes, got {minutes}"
        )
    provider_config = get_provider(provider_id)
    provider_config.sync_interval_minutes = minutes
    provider_config.save(update_fields=["sync_interval_minutes", "updated_at"])
    logger.info("Provider %s sync interval set to %s minutes", provider_id, minutes)
    return status_payload(provider_config, SyncStatus.objects.filter(provider_id=provider_id).first())


def get_run_report(run_id: str) -> dict[str, object]:
    try:
        history = SyncHistory.objects.get(run_id=run_id)
    except SyncHistory.DoesNotExist as exc:
        raise LookupError(f"Unknown run {run_id!r}") from exc

    errors = list(ledger.errors_for_run(run_id))
    failed_records = [
        {"external_id": error.external_id, "category": error.category, "field": error.field, "reason": error.message}
        for error in errors
        if error.external_id
        and error.media_id is None
        and error.category != ErrorCategory.MEDIA
        and error.context.get("stage") != "references"
    ]
    return {
        **history_payload(history),
        "succeeded": history.succeeded_count,
        "failed_records": failed_records,
        "run_errors": [error_payload(error) for error in errors if not error.external_id],
        "media_errors": len([error for error in errors if error.media_id is not None]),
    }


def get_media(property_id: int) -> list[dict[str, object]]:
    return [
        {
            "id": media.pk,
            "source_url": media.source_url,
            "media_type": media.media_type,
            "display_order": media.display_order,
            "caption": media.caption,
            "status": media.status,
            "variant_urls": media.variant_urls,
            "is_degraded": media.is_degraded,
            "failed_stage": media.failed_stage,
            "error_message": media.error_message,
            "attempts": media.attempts,
            "width": media.width,
            "height": media.height,
        }
        for media in PropertyMedia.objects.filter(property_id=property_id)
    ]


def get_change_timeline(property_id: int) -> list[dict[str, object]]:
    return [
        {
            "run_id": change.run_id,
            "action": change.action,
            "changes": change.changes,
            "created_at": _isoformat(change.created_at),
        }
        for change in PropertyChange.objects.filter(property_id=property_id)
    ]


def health_check(provider_id: str) -> dict[str, object]:
    provider_config = get_provider(provider_id)
    adapter = provider_config.build_adapter()
    try:
        health: HealthStatus = adapter.health_check()
    finally:
        adapter.disconnect()
    return {"provider_id": provider_id, **health.to_dict()}


def pending_media_count(provider_id: str | None = None) -> int:
    return retryable_media(provider_id).count()

