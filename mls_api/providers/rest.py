import logging
from datetime import datetime
from math import ceil

from requests.auth import HTTPBasicAuth

from mls_api.client import Client
from mls_api.exceptions import ConnectivityError
from mls_api.models.media import MediaReference
from mls_api.providers.base import Cursor, ProviderAdapter, RecordPage
from mls_api.type_defs import JsonObject, QueryParams, is_provider_record
from mls_api.utils import format_utc

logger = logging.getLogger(__name__)

RECORD_KEYS = ("data", "records", "results", "value", "listings")


class RestProviderAdapter(ProviderAdapter):
    """JSON web API paginated by page number.

    Connection settings: ``base_url``, ``resource`` (default ``properties``),
    ``records_key``, ``page_size``, ``modified_since_param``, ``health_path``
    and ``requests_per_minute``. Credentials: ``api_key`` (bearer token) or
    ``username``/``password`` (basic auth).
    """

    provider_type = "rest"

    def __init__(self, provider_id, connection=None, credentials=None) -> None:
        super().__init__(provider_id, connection, credentials)
        self.client: Client | None = None

    @property
    def resource(self) -> str:
        return str(self.connection.get("resource") or "properties").strip("/")

    def _build_client(self) -> Client:
        base_url = self.connection.get("base_url")
        if not isinstance(base_url, str) or not base_url:
            raise ConnectivityError(f"Provider {self.provider_id} has no base_url configured")

        headers: dict[str, str] = {}
        auth = None
        api_key = self.credentials.get("api_key")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        elif self.credentials.get("username"):
            auth = HTTPBasicAuth(str(self.credentials["username"]), str(self.credentials.get("password", "")))

        requests_per_minute = self.connection.get("requests_per_minute")
        return Client(
            base_url,
            headers=headers,
            auth=auth,
            requests_per_minute=int(requests_per_minute) if requests_per_minute else None,
        )

    def _connect(self) -> None:
        self.client = self._build_client()
        try:
            # A one-record request validates the credentials up front.
            self.client.fetch_json(self.resource, params={"page": 1, "per_page": 1})
        except Exception:
            self.client.close()
            self.client = None
            raise

    def _disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None

    def _health_detail(self) -> str:
        health_path = str(self.connection.get("health_path") or self.resource)
        self._client().fetch_json(health_path, params={"page": 1, "per_page": 1})
        return "Connection healthy"

    def _client(self) -> Client:
        self.require_connection()
        if self.client is None:
            raise ConnectivityError(f"Provider {self.provider_id} has no open session")
        return self.client

    def _extract_records(self, payload: JsonObject) -> list[dict[str, object]]:
        configured_key = self.connection.get("records_key")
        keys = (configured_key,) if isinstance(configured_key, str) else RECORD_KEYS
        for key in keys:
            records = payload.get(key)
            if isinstance(records, list):
                return [record for record in records if is_provider_record(record)]
        raise ConnectivityError(f"Provider {self.provider_id} response has no record list (looked for {', '.join(keys)})")

    @staticmethod
    def _total_pages(payload: JsonObject) -> int | None:
        meta = payload.get("meta")
        if not isinstance(meta, dict):
            return None
        total_pages = meta.get("total_pages")
        if isinstance(total_pages, int):
            return total_pages
        total_entries = meta.get("total_entries") or meta.get("total")
        per_page = meta.get("per_page")
        if isinstance(total_entries, int) and isinstance(per_page, int) and per_page > 0:
            return ceil(total_entries / per_page)
        return None

    def fetch_changed_records(self, since: datetime | None, cursor: Cursor = None) -> RecordPage:
        client = self._client()
        page = int(cursor or 1)
        params: QueryParams = {"page": page, "per_page": self.page_size}
        if since is not None:
            params[str(self.connection.get("modified_since_param") or "modified_since")] = format_utc(since)

        payload = client.fetch_json(self.resource, params=params)
        records = self._extract_records(payload)

        total_pages = self._total_pages(payload)
        if total_pages is not None:
            has_more = page < total_pages
        else:
            has_more = len(records) >= self.page_size

        logger.debug("Fetched page %s of %s from %s (%s records)", page, total_pages or "?", self.provider_id, len(records))
        return RecordPage(records=records, next_cursor=page + 1 if has_more and records else None)

    def fetch_media_references(self, record_id: str) -> list[MediaReference]:
        payload = self._client().fetch_json(f"{self.resource}/{record_id}/media")
        items = payload.get("media")
        if not isinstance(items, list):
            items = payload.get("data", [])
        if not isinstance(items, list):
            return []

        references: list[MediaReference] = []
        for position, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            try:
                references.append(MediaReference.from_provider(item, position))
            except ValueError as exc:
                logger.warning("Skipping media item %s for %s/%s: %s", position, self.provider_id, record_id, exc)
        return references
