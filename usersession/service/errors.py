from __future__ import annotations

from typing import Optional


class SessionError(Exception):
    """Base class for session-layer exceptions.

    Each subclass carries a stable ``error_code`` so embedding applications can
    map failures without matching on message text:
    - not_initialized
    - not_logged_in
    - authentication_failed
    - refresh_failed
    - registration_failed
    """

    error_code: str = "session_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class NotInitialized(SessionError):
    """An operation ran before ``initialize(client_identity)``."""
    error_code = "not_initialized"

    def __init__(self, message: str = "Session coordinator is not initialized", **kwargs) -> None:
        super().__init__(message, **kwargs)


class NotLoggedIn(SessionError):
    """No session is cached and none can be obtained."""
    error_code = "not_logged_in"

    def __init__(self, message: str = "Not logged in", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AuthenticationFailed(SessionError):
    """Bad credentials or an invalid/expired id token."""
    error_code = "authentication_failed"


class RefreshFailed(SessionError):
    """The identity service rejected the refresh token."""
    error_code = "refresh_failed"


class RegistrationFailed(SessionError):
    """Duplicate username or invalid registration details."""
    error_code = "registration_failed"


__all__ = [
    "SessionError",
    "NotInitialized",
    "NotLoggedIn",
    "AuthenticationFailed",
    "RefreshFailed",
    "RegistrationFailed",
]
