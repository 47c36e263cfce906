from __future__ import annotations

import json
from typing import Any, Optional

from redis import Redis

from usersession.logging import get_logger
from usersession.storage.common import deserialize_session, serialize_session
from usersession.storage.models import Session

logger = get_logger(__name__)


class RedisCredentialStore:
    """Credential store keeping one JSON document per client identity.

    Uses a synchronous client: ``load`` runs inside ``initialize`` which is not
    a coroutine, and saves must complete before the new session is handed out.
    """

    KEY_PREFIX = "usersession:credentials"

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        client: Optional[Any] = None,
    ) -> None:
        self.redis_url = redis_url
        self.client = client or Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, client_identity: str) -> str:
        return f"{self.KEY_PREFIX}:{client_identity}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before handing the store out."""
        self.client.ping()

    def load(self, client_identity: str) -> Optional[Session]:
        raw = self.client.get(self._key(client_identity))
        if not raw:
            return None
        try:
            return deserialize_session(json.loads(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "credential_entry_invalid",
                client_identity=client_identity,
                error=str(exc),
            )
            return None

    def save(self, client_identity: str, session: Session) -> None:
        self.client.set(self._key(client_identity), json.dumps(serialize_session(session)))

    def clear(self, client_identity: str) -> None:
        self.client.delete(self._key(client_identity))

    def close(self) -> None:
        self.client.close()


__all__ = ["RedisCredentialStore"]
