"""Client for the hosted FAP backend (REST tables and password auth)."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import Config
from .http_client import (
    BaseApiClient,
    BackendClientError,
    BackendAuthError,
    BackendUnavailableError,
)
from .retry import RetryConfig

__all__ = [
    "BackendClient",
    "BackendClientError",
    "BackendAuthError",
    "BackendUnavailableError",
    "AuthResult",
    "TABLE_SAVINGS",
    "TABLE_LOANS",
    "TABLE_ATTENDANCE",
    "TABLE_USERS",
]

logger = logging.getLogger(__name__)

TABLE_SAVINGS = "ahorros"
TABLE_LOANS = "prestamos"
TABLE_ATTENDANCE = "asistencia_reuniones"
TABLE_USERS = "usuarios"


@dataclass
class AuthResult:
    """Result of a sign-in or sign-up call."""

    success: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_session(cls, data: dict) -> "AuthResult":
        user = data.get("user") or {}
        return cls(
            success=True,
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            user_id=user.get("id"),
            user_email=user.get("email"),
        )


class BackendClient(BaseApiClient):
    """Reads and writes FAP tables and handles password authentication."""

    @classmethod
    def from_config(
        cls, config: Config, retry_config: Optional[RetryConfig] = None
    ) -> "BackendClient":
        return cls(
            base_url=config.backend.url,
            api_key=config.backend.api_key,
            timeout=config.sync.request_timeout,
            retry_config=retry_config,
        )

    # Tables

    def insert(self, table: str, row: dict) -> list[dict]:
        """Insert one row and return the stored representation.

        Raises:
            BackendAuthError: If the token is rejected
            BackendClientError: For any other failure
        """
        result = self._request(
            "POST",
            f"rest/v1/{table}",
            data=row,
            extra_headers={"Prefer": "return=representation"},
        )
        return result if isinstance(result, list) else [result]

    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        columns: str = "*",
        order: Optional[str] = None,
    ) -> list[dict]:
        """Select rows whose columns equal the given filter values.

        Args:
            table: Table name
            filters: Column -> value equality filters
            columns: Columns to return
            order: Order clause, e.g. "fecha.desc"
        """
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        result = self._request("GET", f"rest/v1/{table}", params=params)
        return result if isinstance(result, list) else []

    # Auth

    def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        """Exchange email and password for a session."""
        try:
            data = self._request(
                "POST",
                "auth/v1/token",
                data={"email": email, "password": password},
                params={"grant_type": "password"},
            )
        except BackendClientError as e:
            logger.warning(f"Sign-in failed for {email}: {e}")
            return AuthResult(success=False, error=str(e))
        return AuthResult.from_session(data)

    def sign_up(
        self, email: str, password: str, metadata: Optional[dict] = None
    ) -> AuthResult:
        """Create an auth user. The session is empty when email confirmation is on."""
        try:
            data = self._request(
                "POST",
                "auth/v1/signup",
                data={"email": email, "password": password, "data": metadata or {}},
            )
        except BackendClientError as e:
            logger.warning(f"Sign-up failed for {email}: {e}")
            return AuthResult(success=False, error=str(e))

        if "user" in data:
            return AuthResult.from_session(data)
        # Confirmation-pending responses return the bare user object
        return AuthResult(success=True, user_id=data.get("id"), user_email=data.get("email"))

    def get_user(self) -> dict:
        """Return the user owning the current access token."""
        return self._request("GET", "auth/v1/user", retry=False)

    def sign_out(self) -> None:
        self._request("POST", "auth/v1/logout", retry=False)

    def is_reachable(self) -> bool:
        """Check if the backend answers its health endpoint."""
        try:
            self._request("GET", "auth/v1/health", retry=False)
            return True
        except BackendClientError:
            return False
