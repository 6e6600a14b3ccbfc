"""Batch insert-or-update of canonical properties keyed by (provider_id, external_id).

Each call runs in one transaction, so readers only ever see whole batches.
Records that carry nothing new only have ``last_synchronized_at`` bumped;
they produce no PropertyChange rows and are not handed to the media queue.

A record whose ``source_modified_at`` is older than the stored row's is not
applied. Records without a source timestamp are applied last-write-wins.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from django.db import models, transaction

from mls_api.models.canonical import UNCOMPARED_FIELDS, CanonicalProperty
from mls_api.utils import ensure_aware
from mls_data.models import Property, PropertyChange

logger = logging.getLogger(__name__)

LOOKUP_CHUNK_SIZE = 500
CHANGE_CREATED = "created"
CHANGE_UPDATED = "updated"


@dataclass
class UpsertResult:
    created: list[Property] = field(default_factory=list)
    updated: list[Property] = field(default_factory=list)
    unchanged: int = 0
    stale: int = 0

    @property
    def changed(self) -> list[Property]:
        return [*self.created, *self.updated]

    @property
    def processed(self) -> int:
        return len(self.created) + len(self.updated) + self.unchanged


def _model_fields() -> dict[str, models.Field]:
    return {model_field.name: model_field for model_field in Property._meta.concrete_fields}


def fit_to_columns(record: CanonicalProperty) -> CanonicalProperty:
    """Round decimals and clip strings the way the columns will store them."""

    model_fields = _model_fields()
    fitted: dict[str, object] = {}
    for name in CanonicalProperty.field_names():
        value = getattr(record, name)
        model_field = model_fields.get(name)
        if value is None or model_field is None:
            continue
        if isinstance(model_field, models.DecimalField) and isinstance(value, Decimal):
            quantum = Decimal(1).scaleb(-model_field.decimal_places)
            fitted[name] = value.quantize(quantum, rounding=ROUND_HALF_UP)
        elif isinstance(model_field, models.CharField) and isinstance(value, str) and model_field.max_length:
            fitted[name] = value[: model_field.max_length]
        elif isinstance(model_field, models.DateTimeField) and isinstance(value, datetime):
            fitted[name] = ensure_aware(value)
    return replace(record, **fitted) if fitted else record


def _deduplicate(records: Iterable[CanonicalProperty]) -> dict[tuple[str, str], CanonicalProperty]:
    latest: dict[tuple[str, str], CanonicalProperty] = {}
    for record in records:
        latest[(record.provider_id, record.external_id)] = fit_to_columns(record)
    return latest


def _existing_rows(keys: Sequence[tuple[str, str]]) -> dict[tuple[str, str], Property]:
    by_provider: dict[str, list[str]] = {}
    for provider_id, external_id in keys:
        by_provider.setdefault(provider_id, []).append(external_id)

    existing: dict[tuple[str, str], Property] = {}
    for provider_id, external_ids in by_provider.items():
        for start in range(0, len(external_ids), LOOKUP_CHUNK_SIZE):
            chunk = external_ids[start : start + LOOKUP_CHUNK_SIZE]
            for row in Property.objects.select_for_update().filter(provider_id=provider_id, external_id__in=chunk):
                existing[(row.provider_id, row.external_id)] = row
    return existing


def _is_stale(record: CanonicalProperty, existing: Property) -> bool:
    if record.source_modified_at is None or existing.source_modified_at is None:
        return False
    return ensure_aware(record.source_modified_at) < existing.source_modified_at


def _stored_fields(record: CanonicalProperty) -> dict[str, object]:
    return {name: value for name, value in record.as_model_fields().items() if name not in {"provider_id", "external_id"}}


def _created_changes(record: CanonicalProperty) -> dict[str, list[object]]:
    return {
        name: [None, getattr(record, name)]
        for name in CanonicalProperty.field_names()
        if name not in UNCOMPARED_FIELDS and getattr(record, name) is not None
    }


def upsert_properties(
    records: Iterable[CanonicalProperty],
    *,
    synced_at: datetime,
    run_id: str | None = None,
) -> UpsertResult:
    latest = _deduplicate(records)
    result = UpsertResult()
    if not latest:
        return result

    with transaction.atomic():
        existing = _existing_rows(list(latest))

        to_create: list[Property] = []
        to_update: list[Property] = []
        update_fields: set[str] = set()
        unchanged_ids: list[int] = []
        change_sets: dict[tuple[str, str], dict[str, list[object]]] = {}

        for key, record in latest.items():
            row = existing.get(key)
            if row is None:
                to_create.append(
                    Property(
                        provider_id=record.provider_id,
                        external_id=record.external_id,
                        last_synchronized_at=synced_at,
                        **_stored_fields(record),
                    )
                )
                change_sets[key] = _created_changes(record)
                continue

            if _is_stale(record, row):
                logger.debug(
                    "Ignoring %s:%s, source_modified_at %s is older than stored %s",
                    record.provider_id,
                    record.external_id,
                    record.source_modified_at,
                    row.source_modified_at,
                )
                unchanged_ids.append(row.pk)
                result.stale += 1
                continue

            changes = record.changes_from(row)
            if not changes:
                unchanged_ids.append(row.pk)
                continue

            for name in changes:
                setattr(row, name, getattr(record, name))
            row.raw_data = record.raw_data
            row.last_synchronized_at = synced_at
            row.updated_at = synced_at
            update_fields.update(changes)
            to_update.append(row)
            change_sets[key] = {name: [old, new] for name, (old, new) in changes.items()}

        if to_create:
            Property.objects.bulk_create(to_create)
            # Backends differ on whether bulk_create sets primary keys.
            created_keys = [(row.provider_id, row.external_id) for row in to_create]
            result.created = list(_existing_rows(created_keys).values())

        if to_update:
            Property.objects.bulk_update(
                to_update,
                fields=sorted(update_fields | {"raw_data", "last_synchronized_at", "updated_at"}),
            )
            result.updated = to_update

        if unchanged_ids:
            Property.objects.filter(pk__in=unchanged_ids).update(last_synchronized_at=synced_at)
            result.unchanged = len(unchanged_ids)

        created_pks = {row.pk for row in result.created}
        PropertyChange.objects.bulk_create(
            [
                PropertyChange(
                    property=row,
                    run_id=run_id,
                    action=CHANGE_CREATED if row.pk in created_pks else CHANGE_UPDATED,
                    changes=change_sets[(row.provider_id, row.external_id)],
                )
                for row in result.changed
            ]
        )

    return result
