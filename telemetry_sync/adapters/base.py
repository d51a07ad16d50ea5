"""Base client for paginated Microsoft device inventory APIs.

Both supported sources return OData pages: a ``value`` array of device
records plus an ``@odata.nextLink`` URL while more pages remain. The base
class walks those pages until exhausted and keeps request metrics alongside
the records.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from telemetry_sync.logging import get_logger

from .exceptions import (
    InventoryAuthError,
    InventoryConfigurationError,
    InventoryHTTPError,
    InventoryResponseError,
    InventoryThrottledError,
    InventoryTimeoutError,
)

logger = get_logger(__name__, component="inventory")

NEXT_LINK_KEY = "@odata.nextLink"


@dataclass
class FetchResult:
    """Complete inventory plus the request metrics gathered while paging.

    Attributes:
        devices: Device records in the order the API returned them
        api_calls: HTTP calls made, token requests included
        pages: Inventory pages read
        total_request_time_ms: Time spent waiting on page requests
    """

    devices: List[Dict[str, Any]] = field(default_factory=list)
    api_calls: int = 0
    pages: int = 0
    total_request_time_ms: int = 0


class BaseInventoryClient:
    """Fetches a full device inventory from one OData endpoint.

    Subclasses set ``SOURCE_NAME``, ``BASE_URL`` and ``MAX_PAGE_SIZE``.

    Attributes:
        page_size: Records requested per page (``$top``)
        timeout: HTTP request timeout in seconds
        user_agent: User-Agent header for HTTP requests
    """

    SOURCE_NAME = ""
    BASE_URL = ""
    MAX_PAGE_SIZE = 1000

    def __init__(
        self,
        token_provider,
        page_size: Optional[int] = None,
        timeout: int = 60,
        user_agent: str = "TelemetrySync/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client.

        Args:
            token_provider: Object with ``get_token()``, ``invalidate()`` and a
                ``token_requests`` counter
            page_size: Records per page, defaults to ``MAX_PAGE_SIZE``
            timeout: HTTP request timeout in seconds (5-300)
            user_agent: User-Agent header value
            session: Optional requests session

        Raises:
            InventoryConfigurationError: If page size, timeout or user agent is invalid
        """
        page_size = page_size or self.MAX_PAGE_SIZE
        if not 1 <= page_size <= self.MAX_PAGE_SIZE:
            raise InventoryConfigurationError(
                f"{self.SOURCE_NAME} page size must be between 1 and "
                f"{self.MAX_PAGE_SIZE}, got: {page_size}"
            )
        if not 5 <= timeout <= 300:
            raise InventoryConfigurationError(
                f"Timeout must be between 5 and 300 seconds, got: {timeout}"
            )
        if not user_agent or not user_agent.strip():
            raise InventoryConfigurationError("user_agent cannot be empty")

        self.token_provider = token_provider
        self.page_size = page_size
        self.timeout = timeout
        self.user_agent = user_agent.strip()

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent, "Accept": "application/json"})

    def initial_params(self) -> Dict[str, str]:
        """Query parameters of the first page request."""
        return {"$top": str(self.page_size)}

    def fetch_all(self) -> FetchResult:
        """Read every page of the inventory.

        Returns:
            FetchResult with all records and request metrics

        Raises:
            InventoryError: If any page fails; no partial result is returned
        """
        result = FetchResult()
        token_requests_before = self.token_provider.token_requests

        url: Optional[str] = self.BASE_URL
        params: Optional[Dict[str, str]] = self.initial_params()

        logger.info(
            f"Fetching {self.SOURCE_NAME} inventory",
            extra={"event": "inventory.fetch.started", "url": url, "page_size": self.page_size},
        )

        while url:
            records, next_link, elapsed = self._fetch_page(url, params)
            result.devices.extend(records)
            result.pages += 1
            result.total_request_time_ms += elapsed

            logger.debug(
                "Inventory page fetched",
                extra={
                    "event": "inventory.fetch.page",
                    "page": result.pages,
                    "page_records": len(records),
                    "total_records": len(result.devices),
                    "has_more": bool(next_link),
                },
            )

            # nextLink already carries every query parameter
            url, params = next_link, None

        result.api_calls = result.pages + (self.token_provider.token_requests - token_requests_before)

        logger.info(
            f"Fetched {self.SOURCE_NAME} inventory",
            extra={
                "event": "inventory.fetch.completed",
                "device_count": len(result.devices),
                "pages": result.pages,
                "api_calls": result.api_calls,
                "request_time_ms": result.total_request_time_ms,
            },
        )
        return result

    def _fetch_page(
        self, url: str, params: Optional[Dict[str, str]]
    ) -> Tuple[List[Dict[str, Any]], Optional[str], int]:
        started = time.monotonic()
        payload = self._make_request(url, params=params)
        elapsed = int(round((time.monotonic() - started) * 1000))

        if not isinstance(payload, dict):
            raise InventoryResponseError(
                f"Expected JSON object response, got {type(payload).__name__}"
            )
        records = payload.get("value")
        if not isinstance(records, list):
            raise InventoryResponseError(
                f"Expected 'value' field to be array, got {type(records).__name__}"
            )
        next_link = payload.get(NEXT_LINK_KEY) or None
        return records, next_link, elapsed

    def _make_request(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET ``url`` with a bearer token and map failures onto InventoryError.

        Raises:
            InventoryAuthError: On token failure or HTTP 401/403
            InventoryThrottledError: On HTTP 429
            InventoryHTTPError: On any other 4xx/5xx or connection error
            InventoryTimeoutError: On request timeout
            InventoryResponseError: On invalid JSON
        """
        headers = {"Authorization": f"Bearer {self.token_provider.get_token()}"}

        try:
            logger.debug(
                f"HTTP GET request to {url}",
                extra={"event": "inventory.fetch.request", "url": url, "timeout": self.timeout},
            )
            response = self._session.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "inventory.fetch.retryable_error", "error_type": "Timeout", "url": url},
            )
            raise InventoryTimeoutError(
                f"Request to {url} timed out after {self.timeout} seconds", url=url
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Request to {url} failed: {e}",
                extra={"event": "inventory.fetch.error", "error_type": type(e).__name__, "url": url},
            )
            raise InventoryHTTPError(f"Request to {url} failed: {e}", status_code=0, url=url) from e

        if response.status_code >= 400:
            self._raise_for_status(response, url)

        try:
            return response.json()
        except ValueError as e:
            logger.error(
                f"Failed to parse JSON response from {url}",
                extra={"event": "inventory.fetch.error", "error_type": "JSONDecodeError", "url": url},
            )
            raise InventoryResponseError(f"Failed to parse JSON response from {url}: {e}") from e

    def _raise_for_status(self, response: requests.Response, url: str) -> None:
        status = response.status_code
        retryable = status == 429 or status >= 500
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))

        logger.log(
            logging.WARNING if retryable else logging.ERROR,
            f"HTTP {status} error from {self.SOURCE_NAME} API",
            extra={
                "event": "inventory.fetch.retryable_error" if retryable else "inventory.fetch.error",
                "status_code": status,
                "url": url,
                "retry_after_seconds": retry_after,
            },
        )

        if status in (401, 403):
            self.token_provider.invalidate()
            raise InventoryAuthError(
                f"{self.SOURCE_NAME} API rejected the access token (HTTP {status}); "
                "check the app registration permissions",
                status_code=status,
                url=url,
            )
        if status == 429:
            hint = f" Retry after {retry_after:g} seconds." if retry_after is not None else ""
            raise InventoryThrottledError(
                f"{self.SOURCE_NAME} API rate limit exceeded.{hint}",
                url=url,
                retry_after=retry_after,
            )
        if status == 404:
            raise InventoryHTTPError(
                f"{self.SOURCE_NAME} API endpoint not found: {url}", status_code=status, url=url
            )
        raise InventoryHTTPError(f"HTTP {status}: {response.reason}", status_code=status, url=url)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
