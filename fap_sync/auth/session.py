"""Login, registration and the locally cached user profile."""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from ..config import StorageKeys
from ..sync.backend_client import BackendClient, TABLE_USERS
from ..sync.http_client import BackendAuthError, BackendClientError
from ..sync.kv_store import StorageError
from ..sync.protocols import KeyValueStoreProtocol
from .keychain import KeychainManager, StoredCredentials

__all__ = ["SessionManager", "LoginState", "RegistrationResult", "MINIMUM_AGE"]

logger = logging.getLogger(__name__)

MINIMUM_AGE = 18


@dataclass
class LoginState:
    """Current login state."""

    logged_in: bool = False
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    offline: bool = False  # restored from the keychain without reaching the backend
    error: Optional[str] = None


@dataclass
class RegistrationResult:
    success: bool
    user_id: Optional[str] = None
    error: Optional[str] = None


def age_on(birth_date: date, today: date) -> int:
    """Whole years between birth_date and today."""
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


class SessionManager:
    """Manages the signed-in member and their cached profile."""

    def __init__(
        self,
        backend: BackendClient,
        store: KeyValueStoreProtocol,
        keychain: Optional[KeychainManager] = None,
        keys: Optional[StorageKeys] = None,
        today: Callable[[], date] = date.today,
    ):
        self.backend = backend
        self.store = store
        self.keychain = keychain or KeychainManager()
        self.keys = keys or StorageKeys()
        self.today = today
        self.state = LoginState()

    @property
    def user_id(self) -> Optional[str]:
        return self.state.user_id if self.state.logged_in else None

    def is_logged_in(self) -> bool:
        return self.state.logged_in

    # Cached profile

    def save_user_data(self, user_data: dict) -> None:
        try:
            self.store.set_item(self.keys.user_data, json.dumps(user_data))
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Error saving user data: {e}")

    def get_user_data(self) -> Optional[dict]:
        try:
            data = self.store.get_item(self.keys.user_data)
            return json.loads(data) if data else None
        except (StorageError, ValueError) as e:
            logger.error(f"Error getting user data: {e}")
            return None

    def clear_user_data(self) -> None:
        try:
            self.store.remove_item(self.keys.user_data)
        except StorageError as e:
            logger.error(f"Error clearing user data: {e}")

    # Login / logout

    def login(self, email: str, password: str) -> LoginState:
        """Sign in with email and password and remember the session."""
        email = email.strip()
        if not email or not password.strip():
            return LoginState(error="Email and password are required")

        result = self.backend.sign_in_with_password(email, password)
        if not result.success:
            return LoginState(error=result.error)

        credentials = StoredCredentials(
            access_token=result.access_token,
            user_id=result.user_id,
            user_email=result.user_email or email,
            refresh_token=result.refresh_token,
        )
        if not self.keychain.store(credentials):
            logger.warning("Failed to store credentials in keychain")

        self.backend.set_access_token(result.access_token)
        self.save_user_data(self._fetch_profile(credentials))

        self.state = LoginState(
            logged_in=True, user_id=credentials.user_id, user_email=credentials.user_email
        )
        logger.info(f"Login successful for {credentials.user_email}")
        return self.state

    def try_auto_login(self) -> LoginState:
        """Restore the session stored in the keychain.

        A rejected token clears the session. If the backend cannot be reached
        the stored session is trusted so records can still be queued offline.
        """
        credentials = self.keychain.load()
        if not credentials:
            return LoginState()

        self.backend.set_access_token(credentials.access_token)
        try:
            self.backend.get_user()
        except BackendAuthError as e:
            logger.warning(f"Auto-login failed (auth): {e}")
            self.backend.clear_access_token()
            self.keychain.delete()
            self.state = LoginState(error="Stored session is no longer valid")
            return self.state
        except BackendClientError as e:
            logger.warning(f"Cannot verify stored session, continuing offline: {e}")
            self.state = LoginState(
                logged_in=True,
                user_id=credentials.user_id,
                user_email=credentials.user_email,
                offline=True,
            )
            return self.state

        self.state = LoginState(
            logged_in=True, user_id=credentials.user_id, user_email=credentials.user_email
        )
        logger.info(f"Auto-login successful for {credentials.user_email}")
        return self.state

    def logout(self) -> None:
        """Sign out remotely (best effort) and forget everything local."""
        try:
            self.backend.sign_out()
        except BackendClientError as e:
            logger.warning(f"Failed to sign out remotely: {e}")

        self.backend.clear_access_token()
        self.keychain.delete()
        self.clear_user_data()
        self.state = LoginState()
        logger.info("Logged out")

    def expire(self) -> None:
        """Drop a session the backend has rejected.

        The cached profile is kept; queued records sync after the next login.
        """
        self.backend.clear_access_token()
        self.keychain.delete()
        self.state = LoginState(error="Session expired, sign in again")
        logger.info("Session expired")

    def _fetch_profile(self, credentials: StoredCredentials) -> dict:
        """Member profile from the users table, or a minimal one if unavailable."""
        try:
            rows = self.backend.select(TABLE_USERS, {"email": credentials.user_email})
            if rows:
                return rows[0]
        except BackendClientError as e:
            logger.warning(f"Could not load profile for {credentials.user_email}: {e}")
        return {"id": credentials.user_id, "email": credentials.user_email}

    # Registration

    def register(
        self,
        email: str,
        password: str,
        nombre: str,
        fecha_nacimiento: date,
        acepta_terminos: bool,
        rol: str = "cliente",
    ) -> RegistrationResult:
        """Create an auth user and their member profile.

        Members must accept the terms and conditions and be adults.
        """
        if not acepta_terminos:
            return RegistrationResult(
                success=False, error="Terms and conditions must be accepted"
            )
        today = self.today()
        if fecha_nacimiento > today:
            return RegistrationResult(success=False, error="Birth date cannot be in the future")
        if age_on(fecha_nacimiento, today) < MINIMUM_AGE:
            return RegistrationResult(
                success=False, error=f"Members must be at least {MINIMUM_AGE} years old"
            )

        result = self.backend.sign_up(email, password, {"nombre": nombre, "rol": rol})
        if not result.success:
            return RegistrationResult(success=False, error=result.error)

        profile = {
            "nombre": nombre,
            "email": email,
            "rol": rol,
            "fecha_nacimiento": fecha_nacimiento.isoformat(),
            "acepta_terminos": True,
        }
        if result.user_id:
            profile["id"] = result.user_id
        try:
            self.backend.insert(TABLE_USERS, profile)
        except BackendClientError as e:
            logger.error(f"Auth user created but profile insert failed: {e}")
            return RegistrationResult(success=False, user_id=result.user_id, error=str(e))

        logger.info(f"Registered member {email}")
        return RegistrationResult(success=True, user_id=result.user_id)
