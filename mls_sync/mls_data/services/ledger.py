"""Append-only record of per-item and per-run failures.

Rows are only ever inserted, except for the resolution fields an operator
flips once the underlying problem has been handled.
"""

import logging
from collections.abc import Iterable, Mapping

import requests
from django.db.models import Count, QuerySet
from django.utils.timezone import now

from mls_api.exceptions import MappingError, MlsSyncError
from mls_data.models import ErrorCategory, PropertyMedia, SyncError

logger = logging.getLogger(__name__)


def category_for(exc: BaseException) -> str:
    if isinstance(exc, MlsSyncError):
        return exc.category
    if isinstance(exc, requests.RequestException):
        return ErrorCategory.CONNECTIVITY
    if isinstance(exc, PermissionError):
        return ErrorCategory.AUTHENTICATION
    return ErrorCategory.UNKNOWN


def record_error(
    provider_id: str,
    category: str,
    message: str,
    *,
    run_id: str | None = None,
    external_id: str | None = None,
    field: str | None = None,
    media: PropertyMedia | None = None,
    context: Mapping[str, object] | None = None,
) -> SyncError:
    logger.warning(
        "SYNC_ERROR provider=%s run=%s category=%s external_id=%s field=%s message=%s",
        provider_id,
        run_id,
        category,
        external_id,
        field,
        message,
    )
    return SyncError.objects.create(
        provider_id=provider_id,
        run_id=run_id,
        external_id=external_id,
        field=field,
        media=media,
        category=category,
        message=message,
        context=dict(context or {}),
    )


def record_exception(
    provider_id: str,
    exc: BaseException,
    *,
    run_id: str | None = None,
    external_id: str | None = None,
    media: PropertyMedia | None = None,
    context: Mapping[str, object] | None = None,
) -> SyncError:
    details = dict(context or {})
    details.setdefault("exception", type(exc).__name__)
    field = None
    if isinstance(exc, MappingError):
        field = exc.field
        if exc.value is not None:
            details.setdefault("value", repr(exc.value))
    return record_error(
        provider_id,
        category_for(exc),
        str(exc) or type(exc).__name__,
        run_id=run_id,
        external_id=external_id,
        field=field,
        media=media,
        context=details,
    )


def unresolved(provider_id: str | None = None) -> QuerySet[SyncError]:
    queryset = SyncError.objects.filter(resolved=False)
    if provider_id:
        queryset = queryset.filter(provider_id=provider_id)
    return queryset


def unresolved_by_category(provider_id: str | None = None) -> dict[str, int]:
    rows = unresolved(provider_id).order_by().values("category").annotate(total=Count("id"))
    return {row["category"]: row["total"] for row in rows}


def errors_for_run(run_id: str) -> QuerySet[SyncError]:
    return SyncError.objects.filter(run_id=run_id).order_by("created_at", "id")


def resolve(error_ids: Iterable[int], note: str | None = None) -> int:
    ids = list(error_ids)
    if not ids:
        return 0
    resolved_count = SyncError.objects.filter(id__in=ids, resolved=False).update(
        resolved=True,
        resolved_at=now(),
        resolution_note=note,
    )
    logger.info("Resolved %s sync errors", resolved_count)
    return resolved_count
