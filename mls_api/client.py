import logging
import threading
import time
from http import HTTPStatus
from typing import Any

import requests
from requests.auth import AuthBase
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from mls_api.config import settings
from mls_api.exceptions import AuthenticationError, ConnectivityError
from mls_api.type_defs import JsonObject, QueryParams, is_json_object

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset(
    {
        HTTPStatus.TOO_MANY_REQUESTS.value,
        HTTPStatus.INTERNAL_SERVER_ERROR.value,
        HTTPStatus.BAD_GATEWAY.value,
        HTTPStatus.SERVICE_UNAVAILABLE.value,
        HTTPStatus.GATEWAY_TIMEOUT.value,
    }
)
AUTH_STATUS_CODES = frozenset({HTTPStatus.UNAUTHORIZED.value, HTTPStatus.FORBIDDEN.value})
RESPONSE_PREVIEW_LENGTH = 300


class RetryableResponseError(requests.RequestException):
    pass


def _preview_response_body(response: requests.Response) -> str:
    text = getattr(response, "text", "") or ""
    text = " ".join(text.split())
    if len(text) > RESPONSE_PREVIEW_LENGTH:
        return f"{text[:RESPONSE_PREVIEW_LENGTH]}..."
    return text


class Client(requests.Session):
    """HTTP session shared by the network provider adapters.

    Transient failures (connection errors, timeouts, 429 and 5xx responses) are
    retried with exponential backoff. Authentication failures are raised at
    once as ``AuthenticationError``; anything still failing after the retries
    surfaces as ``ConnectivityError`` from ``fetch_json``/``fetch_text``.
    """

    MAX_RETRIES = settings.sync.max_retries

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        auth: AuthBase | tuple[str, str] | None = None,
        timeout: float | None = None,
        requests_per_minute: int | None = None,
    ):
        super().__init__()

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.sync.request_timeout_seconds
        self.auth = auth
        self.headers.update({"accept": "application/json", "User-Agent": settings.media.user_agent})
        if headers:
            self.headers.update(headers)

        self._min_request_interval = 60.0 / requests_per_minute if requests_per_minute else 0.0
        self._last_request_at = 0.0
        self._rate_limit_lock = threading.Lock()

    def _wait_for_rate_limit(self) -> None:
        if not self._min_request_interval:
            return
        with self._rate_limit_lock:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < self._min_request_interval:
                time.sleep(self._min_request_interval - elapsed)
            self._last_request_at = time.monotonic()

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def request(self, method: str, url: str, *args, **kwargs) -> requests.Response:
        self._wait_for_rate_limit()
        kwargs.setdefault("timeout", self.timeout)
        response = super().request(method, url, *args, **kwargs)

        if response.status_code in AUTH_STATUS_CODES:
            logger.error("Received authorization error from %s: %s", url, _preview_response_body(response))
            raise AuthenticationError(f"Provider rejected credentials ({response.status_code}) for {url}")

        elif response.status_code == HTTPStatus.TOO_MANY_REQUESTS.value:
            logger.info("Rate limit reached. Waiting and retrying...")
            raise RetryableResponseError("Rate limit reached")

        elif response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning("Request failed with status code %s. Retrying...", response.status_code)
            raise RetryableResponseError(
                f"Received retryable status code: {response.status_code}. Response content: {_preview_response_body(response)}"
            )

        return response

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def fetch_text(self, path: str, params: QueryParams | None = None) -> str:
        response = self._checked_get(path, params)
        return response.text

    def fetch_json(self, path: str, params: QueryParams | None = None) -> JsonObject:
        response = self._checked_get(path, params)
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise ConnectivityError(f"Invalid JSON from {self.url_for(path)}: {exc}") from exc
        if not is_json_object(payload):
            raise ConnectivityError(f"Expected a JSON object from {self.url_for(path)}, got {type(payload).__name__}")
        return payload

    def _checked_get(self, path: str, params: QueryParams | None) -> requests.Response:
        url = self.url_for(path)
        try:
            response = self.get(url, params=params)
        except requests.RequestException as exc:
            raise ConnectivityError(f"Request to {url} failed: {exc}") from exc

        if response.status_code != HTTPStatus.OK.value:
            raise ConnectivityError(
                f"Received unexpected status code: {response.status_code} from {url}. "
                f"Response content: {_preview_response_body(response)}"
            )
        return response
