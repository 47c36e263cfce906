from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from usersession.logging import get_logger
from usersession.service.errors import (
    AuthenticationFailed,
    RefreshFailed,
    RegistrationFailed,
    SessionError,
)
from usersession.storage.models import Profile, RegistrationDetails, TokenGrant

logger = get_logger(__name__)

USER_PASS_STRATEGY = "user-pass"


class IdentityClient(Protocol):
    async def register(self, details: RegistrationDetails) -> Profile: ...

    async def login(self, strategy: str, credentials: Dict[str, str]) -> TokenGrant: ...

    async def fetch_profile(self, id_token: str) -> Profile: ...

    async def refresh(self, refresh_token: str) -> TokenGrant: ...

    async def delete_current_user(self, id_token: str) -> None: ...


class _TokenPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id_token: str = Field(alias="idToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")

    def to_grant(self) -> TokenGrant:
        return TokenGrant(
            id_token=self.id_token,
            refresh_token=self.refresh_token,
            expires_in=self.expires_in,
        )


class _ProfilePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: str = Field(min_length=1)
    email: Optional[str] = None
    given_name: Optional[str] = Field(default=None, alias="givenName")
    family_name: Optional[str] = Field(default=None, alias="familyName")
    user_id: Optional[str] = Field(default=None, alias="userId")

    def to_profile(self) -> Profile:
        return Profile(
            username=self.username,
            email=self.email,
            given_name=self.given_name,
            family_name=self.family_name,
            user_id=self.user_id,
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


class HttpIdentityClient:
    """JSON-over-HTTP adapter for the remote identity service.

    Every failure is raised as the operation's session error type; transport
    errors keep the original exception as ``__cause__``. Nothing is retried.
    """

    def __init__(
        self,
        base_url: str,
        client_identity: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.client_identity = client_identity
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            follow_redirects=False,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[SessionError],
        *,
        json: Optional[dict] = None,
        id_token: Optional[str] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {id_token}"} if id_token else None
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.warning(
                "identity_request_rejected",
                path=path,
                status_code=exc.response.status_code,
                error=message,
            )
            raise error_cls(
                message, detail={"status_code": exc.response.status_code}
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("identity_request_failed", path=path, error=str(exc))
            raise error_cls(f"Identity service unavailable: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("identity_response_parse_error", path=path, error=str(exc))
            raise error_cls("Identity service returned malformed JSON") from exc

    @staticmethod
    def _parse(model: type[BaseModel], payload: Any, error_cls: type[SessionError], path: str):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.error("identity_response_invalid", path=path, error=str(exc))
            raise error_cls("Identity service returned an unexpected payload") from exc

    async def register(self, details: RegistrationDetails) -> Profile:
        payload = await self._request(
            "POST",
            "auth/register",
            RegistrationFailed,
            json={
                "username": details.username,
                "password": details.password,
                "email": details.email,
                "givenName": details.given_name,
                "familyName": details.family_name,
                "clientId": self.client_identity,
            },
        )
        return self._parse(_ProfilePayload, payload, RegistrationFailed, "auth/register").to_profile()

    async def login(self, strategy: str, credentials: Dict[str, str]) -> TokenGrant:
        payload = await self._request(
            "POST",
            "auth/login",
            AuthenticationFailed,
            json={
                "strategy": strategy,
                "username": credentials.get("username"),
                "password": credentials.get("password"),
                "clientId": self.client_identity,
            },
        )
        return self._parse(_TokenPayload, payload, AuthenticationFailed, "auth/login").to_grant()

    async def fetch_profile(self, id_token: str) -> Profile:
        payload = await self._request(
            "GET", "auth/userProfile", AuthenticationFailed, id_token=id_token
        )
        return self._parse(
            _ProfilePayload, payload, AuthenticationFailed, "auth/userProfile"
        ).to_profile()

    async def refresh(self, refresh_token: str) -> TokenGrant:
        payload = await self._request(
            "POST",
            "auth/refreshToken",
            RefreshFailed,
            json={"refreshToken": refresh_token, "clientId": self.client_identity},
        )
        return self._parse(_TokenPayload, payload, RefreshFailed, "auth/refreshToken").to_grant()

    async def delete_current_user(self, id_token: str) -> None:
        await self._request("POST", "auth/deleteUser", AuthenticationFailed, id_token=id_token)


__all__ = ["IdentityClient", "HttpIdentityClient", "USER_PASS_STRATEGY"]
