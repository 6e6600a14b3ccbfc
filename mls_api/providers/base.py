import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mls_api.exceptions import ConnectivityError, MlsSyncError
from mls_api.models.media import MediaReference
from mls_api.type_defs import ProviderRecord

logger = logging.getLogger(__name__)

Cursor = str | int | None


@dataclass
class RecordPage:
    records: list[ProviderRecord]
    next_cursor: Cursor = None

    @property
    def exhausted(self) -> bool:
        return self.next_cursor is None


@dataclass
class HealthStatus:
    healthy: bool
    message: str
    latency_ms: float | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, object]:
        return {
            "healthy": self.healthy,
            "message": self.message,
            "latency_ms": self.latency_ms,
            "checked_at": self.checked_at.isoformat(),
        }


class ProviderAdapter(ABC):
    """Uniform contract over one external listing source.

    ``connect`` is idempotent and ``disconnect`` is always safe. Records come
    back in provider-native shape; the field mapper turns them into canonical
    properties. Pagination is driven by the caller through ``next_cursor`` so
    an interrupted extraction can resume from the last cursor it saw.
    """

    provider_type: str = ""

    def __init__(
        self,
        provider_id: str,
        connection: Mapping[str, object] | None = None,
        credentials: Mapping[str, object] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.connection = dict(connection or {})
        self.credentials = dict(credentials or {})
        self.connected = False

    def __enter__(self) -> "ProviderAdapter":
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    def connect(self) -> None:
        if self.connected:
            return
        self._connect()
        self.connected = True
        logger.info("Connected to %s provider %s", self.provider_type or "unknown", self.provider_id)

    def disconnect(self) -> None:
        if not self.connected:
            return
        try:
            self._disconnect()
        except MlsSyncError as exc:
            logger.warning("Error disconnecting from provider %s: %s", self.provider_id, exc)
        finally:
            self.connected = False

    def require_connection(self) -> None:
        if not self.connected:
            raise ConnectivityError(f"Provider {self.provider_id} is not connected. Call connect() first.")

    def iter_pages(self, since: datetime | None, cursor: Cursor = None) -> Iterator[RecordPage]:
        while True:
            page = self.fetch_changed_records(since, cursor)
            yield page
            if page.exhausted:
                return
            if page.next_cursor == cursor:
                raise ConnectivityError(f"Provider {self.provider_id} returned a repeating cursor {cursor!r}")
            cursor = page.next_cursor

    def health_check(self) -> HealthStatus:
        started = time.monotonic()
        try:
            self.connect()
            message = self._health_detail()
        except Exception as exc:
            logger.warning("Health check failed for provider %s: %s", self.provider_id, exc)
            return HealthStatus(healthy=False, message=f"Health check failed: {exc}")
        latency_ms = round((time.monotonic() - started) * 1000, 1)
        return HealthStatus(healthy=True, message=message, latency_ms=latency_ms)

    @property
    def page_size(self) -> int:
        value = self.connection.get("page_size", 250)
        return int(value) if isinstance(value, (int, str)) else 250

    @abstractmethod
    def _connect(self) -> None: ...

    def _disconnect(self) -> None:
        return None

    @abstractmethod
    def _health_detail(self) -> str: ...

    @abstractmethod
    def fetch_changed_records(self, since: datetime | None, cursor: Cursor = None) -> RecordPage: ...

    @abstractmethod
    def fetch_media_references(self, record_id: str) -> list[MediaReference]: ...
