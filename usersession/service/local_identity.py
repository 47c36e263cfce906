from __future__ import annotations

import asyncio
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from usersession.logging import get_logger
from usersession.service.errors import (
    AuthenticationFailed,
    RefreshFailed,
    RegistrationFailed,
)
from usersession.service.identity import USER_PASS_STRATEGY
from usersession.storage.errors import ConstraintViolation
from usersession.storage.models import (
    LocalAccount,
    Profile,
    RegistrationDetails,
    TokenGrant,
)

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass
class _IssuedToken:
    user_id: str
    expires_at: datetime


class LocalIdentityClient:
    """In-process identity provider for development and tests.

    Implements the same contract as ``HttpIdentityClient``: passwords are
    hashed with argon2id, tokens are opaque random strings, refresh issues a
    new id token (and, with ``rotate_refresh_tokens``, a new refresh token
    while revoking the old one). ``latency`` makes every call yield to the
    event loop for that many seconds, like a network round-trip would.
    """

    def __init__(
        self,
        *,
        token_lifetime_seconds: int = 10 * 60 * 60,
        rotate_refresh_tokens: bool = False,
        latency: float = 0.0,
    ) -> None:
        self.token_lifetime_seconds = token_lifetime_seconds
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.latency = latency
        self._lock = threading.Lock()
        self._accounts: Dict[str, LocalAccount] = {}
        self._usernames: Dict[str, str] = {}
        self._id_tokens: Dict[str, _IssuedToken] = {}
        self._refresh_tokens: Dict[str, str] = {}
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _network(self) -> None:
        await asyncio.sleep(self.latency)

    def _create_account(self, details: RegistrationDetails, password_hash: str) -> LocalAccount:
        key = details.username.lower()
        with self._lock:
            if key in self._usernames:
                raise ConstraintViolation(
                    "username already registered", detail={"username": details.username}
                )
            account = LocalAccount(
                user_id=str(uuid.uuid4()),
                username=details.username,
                email=details.email,
                password_hash=password_hash,
                given_name=details.given_name,
                family_name=details.family_name,
            )
            self._accounts[account.user_id] = account
            self._usernames[key] = account.user_id
        return account

    def _issue(self, user_id: str, refresh_token: Optional[str] = None) -> TokenGrant:
        id_token = secrets.token_urlsafe(32)
        expires_at = self._now() + timedelta(seconds=self.token_lifetime_seconds)
        with self._lock:
            self._id_tokens[id_token] = _IssuedToken(user_id=user_id, expires_at=expires_at)
            if refresh_token is None:
                refresh_token = secrets.token_urlsafe(48)
                self._refresh_tokens[refresh_token] = user_id
        return TokenGrant(
            id_token=id_token,
            refresh_token=refresh_token,
            expires_in=self.token_lifetime_seconds,
        )

    def _account_for_id_token(self, id_token: str) -> LocalAccount:
        with self._lock:
            issued = self._id_tokens.get(id_token)
            account = self._accounts.get(issued.user_id) if issued else None
        if issued is None or account is None:
            raise AuthenticationFailed("Invalid id token")
        if issued.expires_at <= self._now():
            raise AuthenticationFailed("Id token expired")
        return account

    async def register(self, details: RegistrationDetails) -> Profile:
        await self._network()
        if not details.username or not details.username.strip():
            raise RegistrationFailed("Username is required")
        if len(details.password or "") < MIN_PASSWORD_LENGTH:
            raise RegistrationFailed(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if not details.email or "@" not in details.email:
            raise RegistrationFailed("A valid email is required")
        password_hash = self._pwd_hasher.hash(details.password)
        try:
            account = self._create_account(details, password_hash)
        except ConstraintViolation as exc:
            raise RegistrationFailed(
                f"Username {details.username!r} is already taken", detail=exc.detail
            ) from exc
        logger.info("local_account_registered", user_id=account.user_id)
        return account.to_profile()

    async def login(self, strategy: str, credentials: Dict[str, str]) -> TokenGrant:
        await self._network()
        if strategy != USER_PASS_STRATEGY:
            raise AuthenticationFailed(f"Unsupported login strategy: {strategy}")
        username = (credentials.get("username") or "").lower()
        password = credentials.get("password") or ""
        with self._lock:
            user_id = self._usernames.get(username)
            account = self._accounts.get(user_id) if user_id else None
        if account is None:
            raise AuthenticationFailed("Invalid username or password")
        try:
            self._pwd_hasher.verify(account.password_hash, password)
        except (VerifyMismatchError, InvalidHash) as exc:
            raise AuthenticationFailed("Invalid username or password") from exc
        return self._issue(account.user_id)

    async def fetch_profile(self, id_token: str) -> Profile:
        await self._network()
        return self._account_for_id_token(id_token).to_profile()

    async def refresh(self, refresh_token: str) -> TokenGrant:
        await self._network()
        with self._lock:
            user_id = self._refresh_tokens.get(refresh_token)
            if user_id is not None and self.rotate_refresh_tokens:
                self._refresh_tokens.pop(refresh_token)
        if user_id is None or user_id not in self._accounts:
            raise RefreshFailed("Refresh token is invalid or revoked")
        if self.rotate_refresh_tokens:
            return self._issue(user_id)
        return self._issue(user_id, refresh_token=refresh_token)

    async def delete_current_user(self, id_token: str) -> None:
        await self._network()
        account = self._account_for_id_token(id_token)
        with self._lock:
            self._accounts.pop(account.user_id, None)
            self._usernames.pop(account.username.lower(), None)
            self._id_tokens = {
                token: issued
                for token, issued in self._id_tokens.items()
                if issued.user_id != account.user_id
            }
            self._refresh_tokens = {
                token: owner
                for token, owner in self._refresh_tokens.items()
                if owner != account.user_id
            }
        logger.info("local_account_deleted", user_id=account.user_id)

    def revoke_refresh_token(self, refresh_token: str) -> bool:
        with self._lock:
            return self._refresh_tokens.pop(refresh_token, None) is not None


__all__ = ["LocalIdentityClient"]
