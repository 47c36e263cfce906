"""Serialization shared by the file and Redis credential stores."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from usersession.storage.models import Session


def serialize_datetime(dt: datetime) -> str:
    return dt.isoformat()


def deserialize_datetime(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw)
    # Older records may be naive; they were always written in UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def serialize_session(session: Session) -> Dict[str, Any]:
    return {
        "id_token": session.id_token,
        "refresh_token": session.refresh_token,
        "issued_at": serialize_datetime(session.issued_at),
        "client_identity": session.client_identity,
        "expires_in": session.expires_in,
    }


def deserialize_session(data: Dict[str, Any]) -> Session:
    """Rebuild a session record; raises ``KeyError``/``ValueError`` on bad input."""
    expires_in = data.get("expires_in")
    return Session(
        id_token=str(data["id_token"]),
        refresh_token=str(data["refresh_token"]),
        issued_at=deserialize_datetime(data["issued_at"]),
        client_identity=str(data["client_identity"]),
        expires_in=int(expires_in) if expires_in is not None else None,
    )
