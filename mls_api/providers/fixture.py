import json
import logging
from datetime import datetime
from pathlib import Path

from mls_api.exceptions import ConnectivityError
from mls_api.mapping import resolve_path
from mls_api.models.media import MediaReference
from mls_api.providers.base import Cursor, ProviderAdapter, RecordPage
from mls_api.type_defs import ProviderRecord, is_provider_record
from mls_api.utils import coerce_datetime, ensure_aware

logger = logging.getLogger(__name__)


class FixtureProviderAdapter(ProviderAdapter):
    """Static records for development and tests.

    Records come from ``connection["records"]`` or a JSON file at
    ``connection["path"]`` (a list, or an object with a ``records`` list).
    Incremental extraction compares ``modified_field`` (default
    ``ModificationTimestamp``) against ``since``; media references are read
    from ``media_field`` (default ``Media``) on the matching record.
    """

    provider_type = "fixture"

    def __init__(self, provider_id, connection=None, credentials=None, records: list[ProviderRecord] | None = None) -> None:
        super().__init__(provider_id, connection, credentials)
        self._inline_records = records
        self.records: list[ProviderRecord] = []

    @property
    def id_field(self) -> str:
        return str(self.connection.get("id_field") or "ListingKey")

    @property
    def modified_field(self) -> str:
        return str(self.connection.get("modified_field") or "ModificationTimestamp")

    @property
    def media_field(self) -> str:
        return str(self.connection.get("media_field") or "Media")

    def _load(self) -> list[ProviderRecord]:
        if self._inline_records is not None:
            return list(self._inline_records)

        inline = self.connection.get("records")
        if isinstance(inline, list):
            return [record for record in inline if is_provider_record(record)]

        path = self.connection.get("path")
        if not path:
            raise ConnectivityError(f"Fixture provider {self.provider_id} has neither records nor path configured")
        try:
            with Path(str(path)).expanduser().open() as file:
                payload = json.load(file)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConnectivityError(f"Could not read fixture file {path}: {exc}") from exc

        if isinstance(payload, dict):
            payload = payload.get("records", [])
        if not isinstance(payload, list):
            raise ConnectivityError(f"Fixture file {path} does not contain a record list")
        return [record for record in payload if is_provider_record(record)]

    def _connect(self) -> None:
        self.records = self._load()
        logger.debug("Loaded %s fixture records for %s", len(self.records), self.provider_id)

    def _disconnect(self) -> None:
        self.records = []

    def _health_detail(self) -> str:
        return f"{len(self.records)} fixture records loaded"

    def _modified_at(self, record: ProviderRecord) -> datetime | None:
        return ensure_aware(coerce_datetime(resolve_path(record, self.modified_field)))

    def fetch_changed_records(self, since: datetime | None, cursor: Cursor = None) -> RecordPage:
        self.require_connection()
        records = self.records
        if since is not None:
            since = ensure_aware(since)
            records = [
                record
                for record in records
                if (modified_at := self._modified_at(record)) is None or modified_at >= since
            ]

        offset = int(cursor or 0)
        page = records[offset : offset + self.page_size]
        next_offset = offset + len(page)
        return RecordPage(records=page, next_cursor=next_offset if next_offset < len(records) else None)

    def fetch_media_references(self, record_id: str) -> list[MediaReference]:
        self.require_connection()
        for record in self.records:
            if str(resolve_path(record, self.id_field)) != str(record_id):
                continue
            items = resolve_path(record, self.media_field)
            if not isinstance(items, list):
                return []
            references: list[MediaReference] = []
            for position, item in enumerate(items):
                if isinstance(item, str):
                    item = {"url": item}
                if not isinstance(item, dict):
                    continue
                try:
                    references.append(MediaReference.from_provider(item, position))
                except ValueError as exc:
                    logger.warning("Skipping fixture media item %s for %s/%s: %s", position, self.provider_id, record_id, exc)
            return references
        return []
