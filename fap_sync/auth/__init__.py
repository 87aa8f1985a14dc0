"""Authentication module - keychain-backed member sessions."""

from .keychain import KeychainManager, StoredCredentials
from .session import SessionManager, LoginState, RegistrationResult

__all__ = [
    "KeychainManager",
    "StoredCredentials",
    "SessionManager",
    "LoginState",
    "RegistrationResult",
]
