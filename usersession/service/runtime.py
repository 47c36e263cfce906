from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from usersession.config import (
    CredentialBackend,
    IdentityBackend,
    Settings,
    get_settings,
    reset_settings_cache,
)
from usersession.logging import get_logger
from usersession.service.coordinator import SessionCoordinator
from usersession.service.identity import HttpIdentityClient, IdentityClient
from usersession.service.local_identity import LocalIdentityClient
from usersession.storage.credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)
from usersession.storage.redis_cache import RedisCredentialStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_credential_store(settings: Settings) -> CredentialStore:
    backend = settings.credential_backend
    if backend == CredentialBackend.MEMORY:
        return MemoryCredentialStore()
    if backend == CredentialBackend.REDIS:
        store = RedisCredentialStore(settings.redis_url)
        try:
            store.verify_connection()
        except Exception as exc:
            logger.error(
                "credential_store_unavailable",
                redis_url=_mask_url_password(settings.redis_url),
                error=str(exc),
            )
            raise
        return store
    return FileCredentialStore(settings.state_path)


def build_identity_client(settings: Settings) -> IdentityClient:
    if settings.identity_backend == IdentityBackend.LOCAL:
        return LocalIdentityClient(token_lifetime_seconds=settings.session_lifetime_seconds)
    return HttpIdentityClient(
        settings.identity_base_url,
        settings.client_identity,
        timeout=settings.identity_timeout_seconds,
    )


class Runtime:
    """Holds the process-wide collaborators and default coordinator."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            identity_backend=self.settings.identity_backend.value,
            credential_backend=self.settings.credential_backend.value,
            client_identity=self.settings.client_identity,
        )
        self.credential_store = build_credential_store(self.settings)
        self.identity = build_identity_client(self.settings)
        self.coordinator = self.new_coordinator()
        if self.settings.client_identity:
            self.coordinator.initialize(self.settings.client_identity)

    def new_coordinator(self) -> SessionCoordinator:
        """Build an independent, uninitialized coordinator on the shared collaborators."""
        return SessionCoordinator(
            self.identity,
            self.credential_store,
            refresh_threshold_seconds=self.settings.refresh_threshold_seconds,
            default_lifetime_seconds=self.settings.session_lifetime_seconds,
        )

    def close(self) -> None:
        if isinstance(self.credential_store, RedisCredentialStore):
            self.credential_store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            try:
                runtime.close()
            except Exception as exc:
                logger.warning("runtime_close_failed", error=str(exc))
        runtime = None
    reset_settings_cache()
