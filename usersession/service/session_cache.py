from __future__ import annotations

from typing import Optional

from usersession.logging import get_logger
from usersession.storage.credentials import CredentialStore
from usersession.storage.models import Session, User

logger = get_logger(__name__)


class SessionCache:
    """In-memory current user, mirrored to a durable credential store.

    The store is read once, by ``load``; ``get`` only ever answers from memory.
    A session loaded from the store carries no profile, so it is kept apart as
    ``persisted_session`` until the coordinator hydrates it into a ``User``.
    """

    def __init__(self, store: CredentialStore, client_identity: str) -> None:
        self.store = store
        self.client_identity = client_identity
        self._user: Optional[User] = None
        self._persisted: Optional[Session] = None

    def load(self) -> Optional[Session]:
        session = self.store.load(self.client_identity)
        if session is not None and session.client_identity != self.client_identity:
            logger.warning(
                "persisted_session_identity_mismatch",
                client_identity=self.client_identity,
                stored_identity=session.client_identity,
            )
            session = None
        self._persisted = session
        return session

    def set(self, user: User) -> None:
        self.store.save(self.client_identity, user.session)
        self._user = user
        self._persisted = user.session

    def set_persisted(self, session: Session) -> None:
        """Store a session that has no profile yet; the in-memory user is untouched."""
        self.store.save(self.client_identity, session)
        self._persisted = session

    def get(self) -> Optional[User]:
        return self._user

    def clear(self) -> None:
        self._user = None
        self._persisted = None
        self.store.clear(self.client_identity)

    @property
    def persisted_session(self) -> Optional[Session]:
        return self._persisted

    @property
    def session(self) -> Optional[Session]:
        if self._user is not None:
            return self._user.session
        return self._persisted
