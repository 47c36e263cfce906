from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from usersession.logging import get_logger
from usersession.service.errors import (
    AuthenticationFailed,
    NotInitialized,
    NotLoggedIn,
    RegistrationFailed,
    SessionError,
)
from usersession.service.expiry import RefreshPolicy
from usersession.service.identity import USER_PASS_STRATEGY, IdentityClient
from usersession.service.session_cache import SessionCache
from usersession.service.single_flight import SingleFlight
from usersession.storage.credentials import CredentialStore
from usersession.storage.models import RegistrationDetails, Session, TokenGrant, User

logger = get_logger(__name__)


class SessionCoordinator:
    """Login, logout and cached access to the current user.

    ``get_current_user`` answers from memory while the cached session is
    fresh. When it is missing a profile or close to expiry, one refresh or
    profile fetch runs through a ``SingleFlight`` and every concurrent caller
    receives its result.
    """

    def __init__(
        self,
        identity: IdentityClient,
        store: CredentialStore,
        *,
        refresh_threshold_seconds: int = 60 * 60,
        default_lifetime_seconds: int = 10 * 60 * 60,
    ) -> None:
        self.identity = identity
        self.store = store
        self.policy = RefreshPolicy(
            threshold_seconds=refresh_threshold_seconds,
            default_lifetime_seconds=default_lifetime_seconds,
        )
        self.client_identity: Optional[str] = None
        self._cache: Optional[SessionCache] = None
        self._current_user_flight: SingleFlight[User] = SingleFlight("current_user")
        # Bumped whenever login or logout replaces the cached user
        self._generation = 0
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    @property
    def refresh_threshold_seconds(self) -> int:
        return self.policy.threshold_seconds

    @refresh_threshold_seconds.setter
    def refresh_threshold_seconds(self, value: int) -> None:
        self.policy.threshold_seconds = int(value)

    @property
    def initialized(self) -> bool:
        return self._cache is not None

    @property
    def cache(self) -> SessionCache:
        if self._cache is None:
            raise NotInitialized()
        return self._cache

    def initialize(self, client_identity: str) -> None:
        if not client_identity:
            raise ValueError("client_identity is required")
        if self._cache is not None:
            if client_identity == self.client_identity:
                return
            raise ValueError(
                f"coordinator already bound to client identity {self.client_identity!r}"
            )
        cache = SessionCache(self.store, client_identity)
        persisted = cache.load()
        self.client_identity = client_identity
        self._cache = cache
        self.logger.info(
            "session_coordinator_initialized",
            client_identity=client_identity,
            persisted_session=persisted is not None,
        )

    def _accept(self, grant: TokenGrant) -> Session:
        return Session.from_grant(grant, self.client_identity, issued_at=self._now())

    async def register(self, details: RegistrationDetails | Mapping[str, Any]) -> User:
        cache = self.cache
        try:
            if not isinstance(details, RegistrationDetails):
                details = RegistrationDetails(**details)
        except TypeError as exc:
            raise RegistrationFailed("Invalid registration details") from exc
        try:
            profile = await self.identity.register(details)
        except RegistrationFailed:
            raise
        except SessionError as exc:
            raise RegistrationFailed(exc.message, detail=exc.detail) from exc
        except Exception as exc:
            raise RegistrationFailed(f"Registration failed: {exc}") from exc
        self.logger.info(
            "user_registered",
            client_identity=cache.client_identity,
            user_id=profile.user_id,
        )
        return await self.login(
            USER_PASS_STRATEGY,
            {"username": profile.username or details.username, "password": details.password},
        )

    async def login(self, strategy: str, credentials: Dict[str, str]) -> User:
        cache = self.cache
        try:
            grant = await self.identity.login(strategy, credentials)
            session = self._accept(grant)
            profile = await self.identity.fetch_profile(session.id_token)
        except AuthenticationFailed:
            self.logger.warning("login_failed", strategy=strategy)
            raise
        except SessionError as exc:
            self.logger.warning("login_failed", strategy=strategy, error=exc.message)
            raise AuthenticationFailed(exc.message, detail=exc.detail) from exc
        except Exception as exc:
            self.logger.warning("login_failed", strategy=strategy, error=str(exc))
            raise AuthenticationFailed(f"Login failed: {exc}") from exc
        user = User(session=session, profile=profile)
        try:
            cache.set(user)
        except Exception as exc:
            self.logger.error("session_persist_failed", strategy=strategy, error=str(exc))
            raise AuthenticationFailed(f"Could not store session: {exc}") from exc
        self._generation += 1
        self.logger.info("user_logged_in", strategy=strategy, user_id=profile.user_id)
        return user

    async def logout(self) -> None:
        cache = self.cache
        had_session = cache.session is not None
        cache.clear()
        self._generation += 1
        self.logger.info("user_logged_out", had_session=had_session)

    async def ensure_logged_in(self) -> None:
        await self.get_current_user()

    async def get_current_user(self) -> User:
        cache = self.cache
        user = cache.get()
        if user is not None and not self.policy.is_expired(user.session, self._now()):
            return user
        if user is None and cache.persisted_session is None:
            raise NotLoggedIn()
        return await self._current_user_flight.run(self._resolve_current_user)

    async def _resolve_current_user(self) -> User:
        cache = self.cache
        user = cache.get()
        session = user.session if user is not None else cache.persisted_session
        if session is None:
            raise NotLoggedIn()
        profile = user.profile if user is not None else None
        generation = self._generation

        if self.policy.is_expired(session, self._now()):
            previous = session
            session = self._accept(await self.identity.refresh(previous.refresh_token))
            self.logger.info(
                "session_refreshed",
                client_identity=session.client_identity,
                refresh_token_rotated=session.refresh_token != previous.refresh_token,
            )
            if profile is None and generation == self._generation:
                # The old refresh token may be revoked; keep the new pair if the fetch fails
                cache.set_persisted(session)
        if profile is None:
            profile = await self.identity.fetch_profile(session.id_token)
            self.logger.info("profile_fetched", user_id=profile.user_id)

        if generation != self._generation:
            # Login or logout ran meanwhile; its outcome wins over this result
            current = cache.get()
            if current is None:
                raise NotLoggedIn()
            return current

        user = User(session=session, profile=profile)
        cache.set(user)
        return user

    async def get_current_username(self) -> Optional[str]:
        try:
            user = await self.get_current_user()
        except NotLoggedIn:
            return None
        return user.username

    def get_session(self) -> Optional[Session]:
        return self.cache.session

    async def delete_current_user(self) -> None:
        user = await self.get_current_user()
        await self.identity.delete_current_user(user.id_token)
        self.logger.info("user_deleted", user_id=user.user_id)
        await self.logout()


__all__ = ["SessionCoordinator"]
