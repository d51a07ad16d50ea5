"""OAuth 2.0 client-credentials tokens for the Microsoft APIs."""

import threading
import time
from typing import Callable, Optional

import requests

from telemetry_sync.config.environment import OAuthCredentials
from telemetry_sync.logging import get_logger

from .exceptions import InventoryAuthError, InventoryConfigurationError

logger = get_logger(__name__, component="auth")

TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"

# Tokens are refreshed this many seconds before they expire.
EXPIRY_BUFFER_SECONDS = 5 * 60


class ClientCredentialsTokenProvider:
    """Fetches and caches an access token for one tenant/app/scope.

    Attributes:
        token_requests: Number of token endpoint calls made so far
    """

    def __init__(
        self,
        credentials: OAuthCredentials,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the provider.

        Args:
            credentials: Tenant, client id, secret and scope
            timeout: Token request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
            clock: Source of the current epoch time, injectable for tests

        Raises:
            InventoryConfigurationError: If any credential value is missing
        """
        if not credentials.is_complete:
            raise InventoryConfigurationError(
                f"Incomplete OAuth credentials for scope {credentials.scope}"
            )
        self.credentials = credentials
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self.token_requests = 0

    @property
    def token_url(self) -> str:
        return TOKEN_URL_TEMPLATE.format(tenant_id=self.credentials.tenant_id)

    def get_token(self) -> str:
        """Return a cached token, requesting a new one when it is about to expire.

        Raises:
            InventoryAuthError: If the token endpoint rejects the request
        """
        with self._lock:
            if self._token is not None and self._clock() < self._expires_at:
                return self._token
            return self._request_token()

    def invalidate(self) -> None:
        """Forget the cached token so the next call requests a fresh one."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _request_token(self) -> str:
        self.token_requests += 1
        url = self.token_url
        try:
            response = self._session.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                    "scope": self.credentials.scope,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise InventoryAuthError(f"Token request failed: {e}", status_code=0, url=url) from e

        if response.status_code >= 400:
            logger.error(
                "Token request rejected",
                extra={
                    "event": "auth.token.rejected",
                    "status_code": response.status_code,
                    "scope": self.credentials.scope,
                },
            )
            raise InventoryAuthError(
                f"Token request rejected with HTTP {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise InventoryAuthError(
                f"Token response missing access_token/expires_in: {e}",
                status_code=response.status_code,
                url=url,
            ) from e

        self._token = token
        self._expires_at = self._clock() + expires_in - EXPIRY_BUFFER_SECONDS
        logger.info(
            "Access token acquired",
            extra={
                "event": "auth.token.acquired",
                "scope": self.credentials.scope,
                "expires_in_minutes": expires_in // 60,
            },
        )
        return token
