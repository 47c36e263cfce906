from datetime import datetime, timezone

from usersession.service.session_cache import SessionCache
from usersession.storage.credentials import MemoryCredentialStore
from usersession.storage.models import Profile, Session, User

CLIENT_ID = "cache-client"


def make_user(id_token="id-1", refresh_token="refresh-1", username="alice"):
    session = Session(
        id_token=id_token,
        refresh_token=refresh_token,
        issued_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        client_identity=CLIENT_ID,
        expires_in=3600,
    )
    return User(session=session, profile=Profile(username=username, user_id="u-1"))


class _RecordingStore(MemoryCredentialStore):
    def __init__(self):
        super().__init__()
        self.loads = 0

    def load(self, client_identity):
        self.loads += 1
        return super().load(client_identity)


def test_set_then_get_round_trips():
    cache = SessionCache(MemoryCredentialStore(), CLIENT_ID)
    user = make_user()

    cache.set(user)

    assert cache.get() == user
    assert cache.session == user.session


def test_set_persists_session_and_overwrites_previous():
    store = MemoryCredentialStore()
    cache = SessionCache(store, CLIENT_ID)

    cache.set(make_user())
    replacement = make_user(id_token="id-2", refresh_token="refresh-2")
    cache.set(replacement)

    assert cache.get() == replacement
    assert store.load(CLIENT_ID) == replacement.session


def test_get_never_reads_store():
    store = _RecordingStore()
    store.save(CLIENT_ID, make_user().session)
    cache = SessionCache(store, CLIENT_ID)

    assert cache.get() is None
    assert store.loads == 0


def test_load_keeps_persisted_session_without_user():
    store = _RecordingStore()
    user = make_user()
    store.save(CLIENT_ID, user.session)
    cache = SessionCache(store, CLIENT_ID)

    assert cache.load() == user.session
    assert cache.get() is None
    assert cache.persisted_session == user.session
    assert cache.session == user.session
    assert store.loads == 1


def test_load_ignores_session_for_other_identity():
    store = MemoryCredentialStore()
    store.save(CLIENT_ID, make_user().session)
    cache = SessionCache(store, "someone-else")
    store.save("someone-else", make_user().session)

    assert cache.load() is None


def test_clear_wipes_memory_and_store():
    store = MemoryCredentialStore()
    cache = SessionCache(store, CLIENT_ID)
    cache.set(make_user())

    cache.clear()

    assert cache.get() is None
    assert cache.session is None
    assert store.load(CLIENT_ID) is None


def test_clear_on_empty_cache():
    cache = SessionCache(MemoryCredentialStore(), CLIENT_ID)
    cache.clear()
    assert cache.get() is None


def test_set_persisted_replaces_stored_session_only():
    store = MemoryCredentialStore()
    cache = SessionCache(store, CLIENT_ID)
    refreshed = make_user(id_token="id-2", refresh_token="refresh-2").session

    cache.set_persisted(refreshed)

    assert cache.get() is None
    assert cache.persisted_session == refreshed
    assert store.load(CLIENT_ID) == refreshed
