"""Base HTTP client with retry logic for the hosted backend."""

import logging
from typing import Optional

import requests

from .. import __version__
from .retry import RetryConfig, retry_with_backoff, RetryExhausted

__all__ = [
    "BaseApiClient",
    "BackendClientError",
    "BackendAuthError",
    "BackendUnavailableError",
]

logger = logging.getLogger(__name__)


class BackendClientError(Exception):
    """Backend request failed."""

    pass


class BackendAuthError(BackendClientError):
    """Authentication error."""

    pass


class BackendUnavailableError(BackendClientError):
    """The backend could not be reached (connection refused, timeout)."""

    pass


class _TransientError(Exception):
    """Internal: Marks an error as transient/retryable."""

    pass


class _ConnectionLost(_TransientError):
    pass


class BaseApiClient:
    """Base HTTP client with retry logic.

    Handles:
    - Session management
    - API key and bearer token headers
    - Retry with exponential backoff
    - Error handling and classification
    """

    DEFAULT_RETRY_CONFIG = RetryConfig(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        exponential_base=2.0,
        jitter=True,
    )

    USER_AGENT = f"FAP-Sync/{__version__}"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        access_token: Optional[str] = None,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Backend project URL
            api_key: Public API key sent with every request
            access_token: User access token (falls back to api_key)
            timeout: Request timeout in seconds
            retry_config: Configuration for retry with exponential backoff
            session: Optional requests session (for dependency injection/testing)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.retry_config = retry_config or self.DEFAULT_RETRY_CONFIG
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self) -> dict:
        """Get request headers with authentication."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.api_key:
            headers["apikey"] = self.api_key
        bearer = self.access_token or self.api_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return ""
        if not isinstance(body, dict):
            return ""
        for field in ("message", "msg", "error_description", "error"):
            if body.get(field):
                return str(body[field])
        return ""

    def _request(
        self,
        method: str,
        path: str,
        data=None,
        params: Optional[dict] = None,
        extra_headers: Optional[dict] = None,
        retry: bool = True,
    ):
        """Make request to the backend.

        Args:
            method: HTTP method
            path: Path relative to base_url (e.g. "rest/v1/ahorros")
            data: JSON body
            params: Query string parameters
            extra_headers: Headers added to the defaults
            retry: Whether to retry on transient failures

        Returns:
            Decoded JSON response ({} for empty bodies)

        Raises:
            BackendAuthError: For 401/403 responses (not retried)
            BackendUnavailableError: If the backend cannot be reached
            BackendClientError: For other errors
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self._get_headers()
        if extra_headers:
            headers.update(extra_headers)
        kwargs: dict = {"timeout": self.timeout, "headers": headers}
        if data is not None:
            kwargs["json"] = data
        if params:
            kwargs["params"] = params

        def do_request():
            try:
                response = self._session.request(method, url, **kwargs)

                if response.status_code == 401:
                    raise BackendAuthError(
                        self._error_detail(response) or "Invalid or expired access token"
                    )
                if response.status_code == 403:
                    raise BackendAuthError(
                        self._error_detail(response) or "Operation not permitted"
                    )

                # Server errors (5xx) are retryable
                if response.status_code >= 500:
                    raise _TransientError(f"Server error: {response.status_code}")

                response.raise_for_status()
                return response.json() if response.content else {}

            except requests.exceptions.ConnectionError:
                raise _ConnectionLost("Cannot connect to backend")
            except requests.exceptions.Timeout:
                raise _ConnectionLost("Request timed out")
            except requests.exceptions.HTTPError as e:
                detail = self._error_detail(e.response)
                raise BackendClientError(
                    f"API error ({e.response.status_code}): {detail or str(e)}"
                ) from e

        if retry:
            try:
                return retry_with_backoff(
                    do_request,
                    config=self.retry_config,
                    retryable_exceptions=(_TransientError,),
                )
            except RetryExhausted as e:
                if isinstance(e.last_error, _ConnectionLost):
                    raise BackendUnavailableError(str(e.last_error)) from e.last_error
                if e.last_error:
                    raise BackendClientError(str(e.last_error)) from e.last_error
                raise BackendClientError("Request failed after retries") from e
        else:
            try:
                return do_request()
            except _ConnectionLost as e:
                raise BackendUnavailableError(str(e)) from e
            except _TransientError as e:
                raise BackendClientError(str(e)) from e

    def set_access_token(self, token: Optional[str]) -> None:
        """Use token as the bearer credential for user-scoped requests."""
        self.access_token = token

    def clear_access_token(self) -> None:
        self.access_token = None

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
