"""RETS 1.x adapter.

Login returns the capability URLs (Search, GetMetadata, Logout ...) inside the
``RETS-RESPONSE`` element. Searches use DMQL2 queries with ``COMPACT-DECODED``
output, which is a ``COLUMNS`` row plus one ``DATA`` row per record, each
split on the advertised ``DELIMITER`` (a tab unless the server says otherwise).
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urljoin

from requests.auth import HTTPDigestAuth

from mls_api.client import Client
from mls_api.exceptions import AuthenticationError, ConnectivityError
from mls_api.models.media import MediaReference
from mls_api.providers.base import Cursor, ProviderAdapter, RecordPage
from mls_api.type_defs import QueryParams
from mls_api.utils import format_utc

logger = logging.getLogger(__name__)

RETS_VERSION = "RETS/1.7.2"
REPLY_SUCCESS = 0
REPLY_NO_RECORDS = 20201
REPLY_AUTH_CODES = frozenset({20036, 20037, 20041})
DEFAULT_FULL_QUERY = "(ListingStatus=|Active,Pending,Sold,Withdrawn,Expired)"
CAPABILITY_NAMES = frozenset({"Login", "Logout", "Search", "GetMetadata", "GetObject", "Action", "ChangePassword"})


@dataclass
class CompactResult:
    reply_code: int
    reply_text: str
    records: list[dict[str, str]]
    count: int | None = None
    max_rows: bool = False


def parse_capabilities(body: str, login_url: str) -> dict[str, str]:
    root = _parse_xml(body)
    reply_code = int(root.attrib.get("ReplyCode", "0"))
    if reply_code != REPLY_SUCCESS:
        raise AuthenticationError(f"RETS login failed ({reply_code}): {root.attrib.get('ReplyText', '')}")

    response = root.find("RETS-RESPONSE")
    text = response.text if response is not None and response.text else root.text or ""
    capabilities: dict[str, str] = {}
    for line in text.splitlines():
        name, separator, value = line.partition("=")
        if not separator:
            continue
        name = name.strip()
        value = value.strip()
        if name and value:
            capabilities[name] = urljoin(login_url, value) if name in CAPABILITY_NAMES else value
    return capabilities


def parse_compact(body: str) -> CompactResult:
    root = _parse_xml(body)
    reply_code = int(root.attrib.get("ReplyCode", "0"))
    reply_text = root.attrib.get("ReplyText", "")
    if reply_code not in {REPLY_SUCCESS, REPLY_NO_RECORDS}:
        if reply_code in REPLY_AUTH_CODES:
            raise AuthenticationError(f"RETS search rejected ({reply_code}): {reply_text}")
        raise ConnectivityError(f"RETS search failed ({reply_code}): {reply_text}")

    count_element = root.find("COUNT")
    count = int(count_element.attrib["Records"]) if count_element is not None and "Records" in count_element.attrib else None
    result = CompactResult(
        reply_code=reply_code,
        reply_text=reply_text,
        records=[],
        count=count,
        max_rows=root.find("MAXROWS") is not None,
    )
    if reply_code == REPLY_NO_RECORDS:
        return result

    delimiter = "\t"
    delimiter_element = root.find("DELIMITER")
    if delimiter_element is not None and delimiter_element.attrib.get("value"):
        delimiter = chr(int(delimiter_element.attrib["value"], 16))

    columns_element = root.find("COLUMNS")
    if columns_element is None or not columns_element.text:
        return result
    columns = _split_compact(columns_element.text, delimiter)

    for data_element in root.findall("DATA"):
        values = _split_compact(data_element.text or "", delimiter)
        result.records.append(dict(zip(columns, values + [""] * (len(columns) - len(values)))))
    return result


def _split_compact(text: str, delimiter: str) -> list[str]:
    # Compact rows start and end with the delimiter.
    parts = text.split(delimiter)
    if parts and parts[0] == "":
        parts = parts[1:]
    if parts and parts[-1] == "":
        parts = parts[:-1]
    return parts


def _parse_xml(body: str) -> ET.Element:
    try:
        return ET.fromstring(body.strip())
    except ET.ParseError as exc:
        raise ConnectivityError(f"Malformed RETS response: {exc}") from exc


class RetsProviderAdapter(ProviderAdapter):
    provider_type = "rets"

    def __init__(self, provider_id, connection=None, credentials=None) -> None:
        super().__init__(provider_id, connection, credentials)
        self.client: Client | None = None
        self.capabilities: dict[str, str] = {}

    def _setting(self, key: str, default: str) -> str:
        value = self.connection.get(key)
        return str(value) if value else default

    @property
    def login_url(self) -> str:
        login_url = self.connection.get("login_url")
        if not isinstance(login_url, str) or not login_url:
            raise ConnectivityError(f"Provider {self.provider_id} has no login_url configured")
        return login_url

    def _connect(self) -> None:
        login_url = self.login_url
        username = str(self.credentials.get("username", ""))
        password = str(self.credentials.get("password", ""))
        headers = {"accept": "*/*", "RETS-Version": self._setting("rets_version", RETS_VERSION)}
        user_agent = self.credentials.get("user_agent")
        if user_agent:
            headers["User-Agent"] = str(user_agent)

        requests_per_minute = self.connection.get("requests_per_minute")
        client = Client(
            login_url,
            headers=headers,
            auth=HTTPDigestAuth(username, password),
            requests_per_minute=int(requests_per_minute) if requests_per_minute else None,
        )
        try:
            body = client.fetch_text(login_url)
            capabilities = parse_capabilities(body, login_url)
        except Exception:
            client.close()
            raise
        if "Search" not in capabilities:
            client.close()
            raise ConnectivityError(f"RETS server for {self.provider_id} did not advertise a Search capability")

        self.client = client
        self.capabilities = capabilities

    def _disconnect(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        logout_url = self.capabilities.get("Logout")
        try:
            if logout_url:
                client.fetch_text(logout_url)
        finally:
            client.close()
            self.capabilities = {}

    def _health_detail(self) -> str:
        metadata_url = self.capabilities.get("GetMetadata")
        if metadata_url:
            self._client().fetch_text(metadata_url, params={"Type": "METADATA-SYSTEM", "ID": "*", "Format": "COMPACT"})
        return "Connection healthy"

    def _client(self) -> Client:
        self.require_connection()
        if self.client is None:
            raise ConnectivityError(f"Provider {self.provider_id} has no open RETS session")
        return self.client

    def build_query(self, since: datetime | None) -> str:
        if since is None:
            return self._setting("full_query", DEFAULT_FULL_QUERY)
        modification_field = self._setting("modification_field", "ModificationTimestamp")
        return f"({modification_field}={format_utc(since, with_offset=False)}+)"

    def search(self, search_type: str, search_class: str, query: str, limit: int, offset: int) -> CompactResult:
        params: QueryParams = {
            "SearchType": search_type,
            "Class": search_class,
            "QueryType": "DMQL2",
            "Query": query,
            "Format": "COMPACT-DECODED",
            "StandardNames": 0,
            "Count": 1,
            "Limit": limit,
            "Offset": offset,
        }
        select = self.connection.get("select")
        if select and search_type == self._setting("resource", "Property"):
            params["Select"] = str(select)
        body = self._client().fetch_text(self.capabilities["Search"], params=params)
        return parse_compact(body)

    def fetch_changed_records(self, since: datetime | None, cursor: Cursor = None) -> RecordPage:
        # RETS offsets are 1-based.
        offset = int(cursor or 1)
        limit = self.page_size
        result = self.search(
            self._setting("resource", "Property"),
            self._setting("class", "Residential"),
            self.build_query(since),
            limit,
            offset,
        )
        records: list[dict[str, object]] = [dict(record) for record in result.records]

        if not records:
            return RecordPage(records=[], next_cursor=None)

        next_offset = offset + len(records)
        if result.count is not None:
            has_more = next_offset <= result.count
        else:
            has_more = result.max_rows or len(records) >= limit
        return RecordPage(records=records, next_cursor=next_offset if has_more else None)

    def fetch_media_references(self, record_id: str) -> list[MediaReference]:
        key_field = self._setting("media_key_field", "ResourceRecordKey")
        result = self.search(
            self._setting("media_resource", "Media"),
            self._setting("media_class", "Media"),
            f"({key_field}={record_id})",
            limit=int(self.connection.get("media_limit", 100)),
            offset=1,
        )
        references: list[MediaReference] = []
        for position, item in enumerate(result.records):
            try:
                references.append(MediaReference.from_provider(item, position))
            except ValueError as exc:
                logger.warning("Skipping RETS media row %s for %s/%s: %s", position, self.provider_id, record_id, exc)
        return sorted(references, key=lambda reference: reference.order)
