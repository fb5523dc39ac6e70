"""Async client for the Knack records API.

Every request waits on the shared ``UpstreamThrottle`` first so the layer
itself never exceeds the upstream's requests-per-second ceiling. Failures are
translated into the knackshield error taxonomy; retrying is left to callers.
"""

import json
import logging
from typing import Any, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..errors import (
    NetworkError,
    UpstreamError,
    UpstreamNotConfiguredError,
    UpstreamTimeoutError,
    error_for_status,
)
from ..monitoring.metrics import upstream_requests_total
from ..security.rate_limiter import UpstreamThrottle

logger = logging.getLogger(__name__)

QUERY_OPTIONS = ("rows_per_page", "page", "sort_field", "sort_order")


def _parse_retry_after(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0


def build_query(options: Optional[dict[str, Any]] = None) -> dict[str, str]:
    """Translate record query options into Knack query parameters.

    ``filters`` is JSON-encoded; unknown options are ignored.
    """
    options = options or {}
    params = {name: str(options[name]) for name in QUERY_OPTIONS if options.get(name) is not None}
    if options.get("filters"):
        params["filters"] = json.dumps(options["filters"], separators=(",", ":"))
    return params


class KnackClient:
    """Knack REST API client.

    Usage:
        client = KnackClient()
        page = await client.get_records("object_7", {"rows_per_page": 100})
        records = await client.get_all_records("object_7")
        await client.close()
    """

    def __init__(
        self,
        app_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        rows_per_page: Optional[int] = None,
        throttle: Optional[UpstreamThrottle] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize client.

        Args:
            app_id: Knack application id
            api_key: Knack REST API key
            base_url: API root (``https://api.knack.com/v1``)
            timeout: Per-request timeout in seconds
            rows_per_page: Page size used by ``get_all_records``
            throttle: Outbound throttle shared across clients
            transport: Custom httpx transport (tests)
            config: Settings to read defaults from
        """
        config = config or default_settings
        self.app_id = app_id if app_id is not None else config.knack_app_id
        self.api_key = api_key if api_key is not None else config.knack_api_key
        self.base_url = (base_url or config.knack_base_url).rstrip("/")
        self.timeout = timeout or config.upstream_timeout_seconds
        self.rows_per_page = rows_per_page or config.upstream_rows_per_page
        self.throttle = throttle or UpstreamThrottle(config.upstream_requests_per_second)
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    def is_configured(self) -> bool:
        """Check whether credentials are present."""
        return bool(self.app_id and self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "X-Knack-Application-Id": self.app_id,
            "X-Knack-REST-API-Key": self.api_key,
            "Content-Type": "application/json",
        }

    def _records_url(self, object_key: str, record_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/objects/{object_key}/records"
        return f"{url}/{record_id}" if record_id else url

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, str]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Any:
        if not self.is_configured():
            raise UpstreamNotConfiguredError(
                "Knack API not configured. Set KNACK_APP_ID and KNACK_API_KEY."
            )

        await self.throttle.wait()
        try:
            response = await self._client.request(
                method, url, params=params, json=payload, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            upstream_requests_total.inc(method=method, outcome="timeout")
            logger.error(f"Knack API timeout: {method} {url}")
            raise UpstreamTimeoutError(f"Knack API timeout: {method} {url}", timeout=self.timeout) from e
        except httpx.RequestError as e:
            upstream_requests_total.inc(method=method, outcome="network_error")
            logger.error(f"Knack API request error: {method} {url}: {e}")
            raise NetworkError(f"Knack API unavailable: {e}") from e

        if response.status_code >= 400:
            upstream_requests_total.inc(method=method, outcome=str(response.status_code))
            logger.warning(f"Knack API error {response.status_code}: {method} {url}")
            raise error_for_status(
                response.status_code,
                f"Knack API error: {response.status_code} {response.reason_phrase}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        upstream_requests_total.inc(method=method, outcome="success")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Knack API returned invalid JSON: {e}", status=response.status_code) from e

    async def get_records(self, object_key: str, options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Fetch one page of records.

        Args:
            object_key: Knack object key (``object_7``)
            options: ``rows_per_page``, ``page``, ``sort_field``, ``sort_order``, ``filters``

        Returns:
            Response body with ``records``, ``total_pages``, ``current_page``, ``total_records``
        """
        return await self._request("GET", self._records_url(object_key), params=build_query(options))

    async def get_all_records(
        self,
        object_key: str,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Fetch every page of records for an object."""
        query = dict(options or {})
        query.setdefault("rows_per_page", self.rows_per_page)
        records: list[dict[str, Any]] = []
        page = 1

        while True:
            query["page"] = page
            body = await self.get_records(object_key, query)
            records.extend(body.get("records", []))
            total_pages = int(body.get("total_pages") or 1)
            logger.debug(f"Fetched page {page}/{total_pages} of {object_key}")
            if page >= total_pages:
                break
            page += 1

        logger.info(f"Fetched {len(records)} records from {object_key} ({page} pages)")
        return records

    async def create_record(self, object_key: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", self._records_url(object_key), payload=data)

    async def update_record(self, object_key: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", self._records_url(object_key, record_id), payload=data)

    async def delete_record(self, object_key: str, record_id: str) -> dict[str, Any]:
        return await self._request("DELETE", self._records_url(object_key, record_id))

    async def close(self) -> None:
        await self._client.aclose()
