"""Exceptions raised by the device inventory clients."""

from typing import Optional


class InventoryError(Exception):
    """Base exception for inventory fetch failures.

    Any of these aborts the whole fetch; the sync pipeline reports the run as
    failed without writing a partial inventory.
    """

    pass


class InventoryHTTPError(InventoryError):
    """The inventory API answered with an error status (or not at all).

    ``status_code`` is 0 when the request never produced a response.
    """

    def __init__(self, message: str, status_code: int, url: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InventoryAuthError(InventoryHTTPError):
    """Token acquisition failed or the API rejected the token (401/403)."""

    pass


class InventoryThrottledError(InventoryHTTPError):
    """The API rate limit was hit (429).

    Attributes:
        retry_after: Seconds suggested by the ``Retry-After`` header, if any
    """

    def __init__(self, message: str, url: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message, status_code=429, url=url)
        self.retry_after = retry_after


class InventoryTimeoutError(InventoryError):
    """A request did not complete within the configured timeout."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class InventoryResponseError(InventoryError):
    """The response was not a JSON page with a ``value`` array."""

    pass


class InventoryConfigurationError(InventoryError):
    """The client cannot be built (missing credentials, bad page size, ...)."""

    pass
