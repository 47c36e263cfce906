from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenGrant:
    """Token pair as issued by the identity service on login or refresh."""

    id_token: str
    refresh_token: str
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class Session:
    id_token: str
    refresh_token: str
    issued_at: datetime
    client_identity: str
    expires_in: Optional[int] = None

    @classmethod
    def from_grant(
        cls,
        grant: TokenGrant,
        client_identity: str,
        *,
        issued_at: datetime | None = None,
    ) -> "Session":
        """Accept a grant, stamping the local acceptance time."""
        return cls(
            id_token=grant.id_token,
            refresh_token=grant.refresh_token,
            issued_at=issued_at or _utcnow(),
            client_identity=client_identity,
            expires_in=grant.expires_in,
        )


@dataclass(frozen=True)
class Profile:
    username: str
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class User:
    """A session joined with the profile it belongs to."""

    session: Session
    profile: Profile

    @property
    def id_token(self) -> str:
        return self.session.id_token

    @property
    def refresh_token(self) -> str:
        return self.session.refresh_token

    @property
    def issued_at(self) -> datetime:
        return self.session.issued_at

    @property
    def client_identity(self) -> str:
        return self.session.client_identity

    @property
    def username(self) -> str:
        return self.profile.username

    @property
    def email(self) -> Optional[str]:
        return self.profile.email

    @property
    def given_name(self) -> Optional[str]:
        return self.profile.given_name

    @property
    def family_name(self) -> Optional[str]:
        return self.profile.family_name

    @property
    def user_id(self) -> Optional[str]:
        return self.profile.user_id


@dataclass
class RegistrationDetails:
    username: str
    password: str
    email: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None


@dataclass
class LocalAccount:
    """Account record held by the in-process identity provider."""

    user_id: str
    username: str
    email: str
    password_hash: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_profile(self) -> Profile:
        return Profile(
            username=self.username,
            email=self.email,
            given_name=self.given_name,
            family_name=self.family_name,
            user_id=self.user_id,
        )
