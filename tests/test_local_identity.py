import pytest

from usersession.service.errors import (
    AuthenticationFailed,
    RefreshFailed,
    RegistrationFailed,
)
from usersession.service.local_identity import LocalIdentityClient
from usersession.storage.models import RegistrationDetails

PASSWORD = "long-enough-password"


def details(username="carol", password=PASSWORD, email="carol@example.com"):
    return RegistrationDetails(
        username=username,
        password=password,
        email=email,
        given_name="Carol",
        family_name="Danvers",
    )


async def _registered(client, username="carol"):
    await client.register(details(username=username))
    return await client.login("user-pass", {"username": username, "password": PASSWORD})


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_returns_profile(self):
        client = LocalIdentityClient()

        profile = await client.register(details())

        assert profile.username == "carol"
        assert profile.given_name == "Carol"
        assert profile.user_id

    @pytest.mark.asyncio
    async def test_duplicate_username_is_case_insensitive(self):
        client = LocalIdentityClient()
        await client.register(details())

        with pytest.raises(RegistrationFailed) as exc_info:
            await client.register(details(username="CAROL"))

        assert exc_info.value.error_code == "registration_failed"
        assert exc_info.value.detail == {"username": "CAROL"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [{"password": "short"}, {"email": "not-an-email"}, {"username": "  "}],
    )
    async def test_invalid_details_rejected(self, overrides):
        client = LocalIdentityClient()

        with pytest.raises(RegistrationFailed):
            await client.register(details(**overrides))


class TestLogin:
    @pytest.mark.asyncio
    async def test_password_is_hashed(self):
        client = LocalIdentityClient()
        await client.register(details())

        account = next(iter(client._accounts.values()))

        assert account.password_hash.startswith("$argon2id$")
        assert PASSWORD not in account.password_hash

    @pytest.mark.asyncio
    async def test_wrong_password_rejected(self):
        client = LocalIdentityClient()
        await client.register(details())

        with pytest.raises(AuthenticationFailed):
            await client.login("user-pass", {"username": "carol", "password": "wrong-password"})

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self):
        client = LocalIdentityClient()

        with pytest.raises(AuthenticationFailed):
            await client.login("user-pass", {"username": "nobody", "password": PASSWORD})

    @pytest.mark.asyncio
    async def test_unsupported_strategy_rejected(self):
        client = LocalIdentityClient()
        await client.register(details())

        with pytest.raises(AuthenticationFailed):
            await client.login("oauth", {"username": "carol", "password": PASSWORD})

    @pytest.mark.asyncio
    async def test_login_issues_tokens_and_profile(self):
        client = LocalIdentityClient(token_lifetime_seconds=120)

        grant = await _registered(client)
        profile = await client.fetch_profile(grant.id_token)

        assert grant.expires_in == 120
        assert grant.id_token != grant.refresh_token
        assert profile.email == "carol@example.com"

    @pytest.mark.asyncio
    async def test_expired_id_token_rejected(self):
        client = LocalIdentityClient(token_lifetime_seconds=0)
        grant = await _registered(client)

        with pytest.raises(AuthenticationFailed):
            await client.fetch_profile(grant.id_token)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_keeps_refresh_token_by_default(self):
        client = LocalIdentityClient()
        grant = await _registered(client)

        refreshed = await client.refresh(grant.refresh_token)

        assert refreshed.id_token != grant.id_token
        assert refreshed.refresh_token == grant.refresh_token

    @pytest.mark.asyncio
    async def test_rotation_revokes_previous_refresh_token(self):
        client = LocalIdentityClient(rotate_refresh_tokens=True)
        grant = await _registered(client)

        refreshed = await client.refresh(grant.refresh_token)

        assert refreshed.refresh_token != grant.refresh_token
        with pytest.raises(RefreshFailed):
            await client.refresh(grant.refresh_token)

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_rejected(self):
        client = LocalIdentityClient()
        grant = await _registered(client)

        assert client.revoke_refresh_token(grant.refresh_token) is True
        assert client.revoke_refresh_token(grant.refresh_token) is False
        with pytest.raises(RefreshFailed):
            await client.refresh(grant.refresh_token)


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_purges_account_and_tokens(self):
        client = LocalIdentityClient()
        grant = await _registered(client)

        await client.delete_current_user(grant.id_token)

        with pytest.raises(AuthenticationFailed):
            await client.fetch_profile(grant.id_token)
        with pytest.raises(RefreshFailed):
            await client.refresh(grant.refresh_token)
        with pytest.raises(AuthenticationFailed):
            await client.login("user-pass", {"username": "carol", "password": PASSWORD})

    @pytest.mark.asyncio
    async def test_username_reusable_after_delete(self):
        client = LocalIdentityClient()
        grant = await _registered(client)
        await client.delete_current_user(grant.id_token)

        profile = await client.register(details())

        assert profile.username == "carol"
