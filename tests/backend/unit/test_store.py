from datetime import datetime, timezone
from uuid import uuid4

import pytest

from banhammer.backend.addresses import parse_host, parse_range
from banhammer.backend.models import Ban, Identity, LiveSession
from banhammer.backend.store import InMemoryBanStore, PostgresBanStore, create_store


def test_create_store_returns_postgres_store_when_database_url_present() -> None:
    store = create_store(database_url="postgresql://local")

    assert isinstance(store, PostgresBanStore)


def test_create_store_returns_in_memory_store_when_database_url_missing() -> None:
    store = create_store(database_url=None)

    assert isinstance(store, InMemoryBanStore)


def test_in_memory_store_creates_identities_once() -> None:
    store = InMemoryBanStore()
    key = uuid4()

    assert store.find_by_key(key) is None
    created = store.create_from_live_session(
        LiveSession(identity_key=key, name="Alex", address=parse_host("203.0.113.5"))
    )
    again = store.create_from_key(key)

    assert again is created
    assert store.find_by_key(key).name == "Alex"


def test_in_memory_store_tracks_active_ban_by_reference() -> None:
    store = InMemoryBanStore()
    identity = store.create_from_key(uuid4())
    first = store.create_ban("spam", None, True, None)
    second = store.create_ban("grief", None, False, parse_range("10.0.0.0/8"))

    assert store.get_active_ban(identity) is None
    store.set_active_ban(identity, first)
    assert store.get_active_ban(identity) == first
    store.set_active_ban(identity, second)
    assert store.get_active_ban(identity) == second
    assert store.get_ban(first.ban_id) == first
    assert first.ban_id != second.ban_id


def test_in_memory_store_rejects_unknown_ban() -> None:
    store = InMemoryBanStore()
    identity = store.create_from_key(uuid4())
    foreign = Ban(ban_id=999, reason="spam", end_time=None, admin=True, target=None, created_at=identity.created_at)

    with pytest.raises(KeyError):
        store.set_active_ban(identity, foreign)


def test_record_session_closes_previous_and_becomes_latest() -> None:
    store = InMemoryBanStore()
    key = uuid4()
    first = store.record_session(LiveSession(identity_key=key, name=None, address=parse_host("198.51.100.1")))
    second = store.record_session(LiveSession(identity_key=key, name=None, address=parse_host("203.0.113.5")))
    identity = store.find_by_key(key)

    latest = store.latest_session(identity)

    assert latest.session_id == second.session_id
    assert str(latest.address) == "203.0.113.5"
    assert latest.ended_at is None
    assert first.session_id != second.session_id


def test_find_sessions_matches_host_and_range_targets() -> None:
    store = InMemoryBanStore()
    inside, outside = uuid4(), uuid4()
    store.record_session(LiveSession(identity_key=inside, name=None, address=parse_host("203.0.113.9")))
    store.record_session(LiveSession(identity_key=outside, name=None, address=parse_host("198.51.100.1")))
    store.end_session(inside)

    by_range = store.find_sessions(parse_range("203.0.113.0/24"))
    by_host = store.find_sessions(parse_host("198.51.100.1"))

    assert [session.identity_key for session in by_range] == [inside]
    assert by_range[0].ended_at is not None
    assert [session.identity_key for session in by_host] == [outside]


class _FakeCursor:
    def __init__(self, rows: list) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self._rows = rows

    def execute(self, sql: str, params: tuple = ()) -> None:
        self.commands.append((sql, params))

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self, rows: list) -> None:
        self.cursor_instance = _FakeCursor(rows)
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _PostgresStoreWithFakeConnection(PostgresBanStore):
    def __init__(self, rows: list | None = None) -> None:
        super().__init__(database_url="postgresql://local")
        self.fake_connection = _FakeConnection(rows or [])

    def _connect(self) -> _FakeConnection:
        return self.fake_connection


def test_postgres_create_ban_stores_target_as_text() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[(42,)])

    ban = store.create_ban("bot net", None, False, parse_range("203.0.113.0/24"))

    assert ban.ban_id == 42
    assert str(ban.target) == "203.0.113.0/24"
    assert store.fake_connection.committed is True
    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "INSERT INTO bans" in sql
    assert params[:4] == ("bot net", None, False, "203.0.113.0/24")


def test_postgres_get_active_ban_parses_target() -> None:
    created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    store = _PostgresStoreWithFakeConnection(rows=[(7, "spam", None, True, "203.0.113.5", created_at)])
    identity = Identity(key=uuid4(), name=None, created_at=created_at)

    ban = store.get_active_ban(identity)

    assert ban is not None
    assert ban.ban_id == 7
    assert ban.admin is True
    assert ban.target == parse_host("203.0.113.5")
    assert "JOIN bans b ON b.id = i.active_ban_id" in store.fake_connection.cursor_instance.commands[0][0]


def test_postgres_find_sessions_uses_inet_containment_for_ranges() -> None:
    key = uuid4()
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)
    store = _PostgresStoreWithFakeConnection(rows=[(3, key, "203.0.113.9", started, None)])

    sessions = store.find_sessions(parse_range("203.0.113.0/24"))

    assert [session.identity_key for session in sessions] == [key]
    assert sessions[0].address == parse_host("203.0.113.9")
    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "<<=" in sql
    assert params == (4, "203.0.113.0/24")


def test_postgres_find_sessions_uses_equality_for_hosts() -> None:
    store = _PostgresStoreWithFakeConnection()

    assert store.find_sessions(parse_host("2001:db8::1")) == []
    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "s.address = %s::inet" in sql
    assert params == ("2001:db8::1",)


def test_postgres_record_session_closes_open_sessions_first() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[(11,)])
    key = uuid4()

    session = store.record_session(LiveSession(identity_key=key, name="Alex", address=parse_host("203.0.113.5")))

    commands = [sql for sql, _ in store.fake_connection.cursor_instance.commands]
    assert session.session_id == 11
    assert "INSERT INTO identities" in commands[0]
    assert "UPDATE sessions SET ended_at" in commands[1]
    assert "INSERT INTO sessions" in commands[2]
    assert store.fake_connection.committed is True
