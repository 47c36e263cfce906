from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from usersession.storage.models import Session

# Two years; large enough that every session counts as stale
FORCE_REFRESH_THRESHOLD_SECONDS = 63072000


@dataclass
class RefreshPolicy:
    """Decides when a cached session must be refreshed.

    A session is stale once at most ``threshold_seconds`` of its lifetime
    remain. The lifetime is the one reported by the identity service, or
    ``default_lifetime_seconds`` when it reported none.
    """

    threshold_seconds: int = 60 * 60
    default_lifetime_seconds: int = 10 * 60 * 60

    def lifetime(self, session: Session) -> timedelta:
        seconds = session.expires_in
        if seconds is None:
            seconds = self.default_lifetime_seconds
        return timedelta(seconds=seconds)

    def expires_at(self, session: Session) -> datetime:
        return session.issued_at + self.lifetime(session)

    def remaining(self, session: Session, now: datetime) -> timedelta:
        return self.expires_at(session) - now

    def is_expired(self, session: Session, now: datetime) -> bool:
        return self.remaining(session, now) <= timedelta(seconds=self.threshold_seconds)
