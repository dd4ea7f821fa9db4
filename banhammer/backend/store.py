"""Persistence interfaces and implementations for identities, sessions and bans."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import itertools
import threading
from typing import Any, Protocol
from uuid import UUID

from banhammer.backend.addresses import Address, HostAddress, matches, parse_address, parse_host
from banhammer.backend.models import Ban, Identity, LiveSession, Session


class IdentityRegistry(Protocol):
    def find_by_key(self, key: UUID) -> Identity | None:
        """Return the identity record for a key, if known."""

    def create_from_key(self, key: UUID) -> Identity:
        """Create a bare identity record from its key alone."""

    def create_from_live_session(self, live: LiveSession) -> Identity:
        """Create an identity record seeded from a connected session."""

    def set_active_ban(self, identity: Identity, ban: Ban) -> None:
        """Point the identity's active ban at ``ban``."""

    def get_active_ban(self, identity: Identity) -> Ban | None:
        """Return the identity's active ban, if any."""


class SessionDirectory(Protocol):
    def latest_session(self, identity: Identity) -> Session | None:
        """Return the most recently started session of an identity."""

    def record_session(self, live: LiveSession) -> Session:
        """Open a new session, closing any session still open for the identity."""

    def end_session(self, identity_key: UUID) -> None:
        """Close the identity's open session."""

    def find_sessions(self, target: Address) -> list[Session]:
        """Return every recorded session whose address matches ``target``."""


class BanRepository(Protocol):
    def create_ban(self, reason: str, end_time: datetime | None, admin: bool, target: Address | None) -> Ban:
        """Persist a new ban and return it with its assigned id."""

    def get_ban(self, ban_id: int) -> Ban | None:
        """Return a persisted ban by id."""


class BanStore(IdentityRegistry, SessionDirectory, BanRepository, Protocol):
    """Everything the issuer needs from persistence, as one backend."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InMemoryBanStore:
    def __post_init__(self) -> None:
        self._identities: dict[UUID, Identity] = {}
        self._active_bans: dict[UUID, int] = {}
        self._bans: dict[int, Ban] = {}
        self._sessions: list[Session] = []
        self._ban_ids = itertools.count(1)
        self._session_ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_by_key(self, key: UUID) -> Identity | None:
        with self._lock:
            return self._identities.get(key)

    def create_from_key(self, key: UUID) -> Identity:
        return self._create_identity(key=key, name=None)

    def create_from_live_session(self, live: LiveSession) -> Identity:
        return self._create_identity(key=live.identity_key, name=live.name)

    def _create_identity(self, key: UUID, name: str | None) -> Identity:
        with self._lock:
            existing = self._identities.get(key)
            if existing is not None:
                return existing
            identity = Identity(key=key, name=name, created_at=_utc_now())
            self._identities[key] = identity
            return identity

    def set_active_ban(self, identity: Identity, ban: Ban) -> None:
        with self._lock:
            if ban.ban_id not in self._bans:
                raise KeyError(f"unknown ban {ban.ban_id}")
            self._identities.setdefault(identity.key, identity)
            self._active_bans[identity.key] = ban.ban_id

    def get_active_ban(self, identity: Identity) -> Ban | None:
        with self._lock:
            ban_id = self._active_bans.get(identity.key)
            if ban_id is None:
                return None
            return self._bans[ban_id]

    def latest_session(self, identity: Identity) -> Session | None:
        with self._lock:
            owned = [session for session in self._sessions if session.identity_key == identity.key]
        if not owned:
            return None
        return max(owned, key=lambda session: (session.started_at, session.session_id))

    def record_session(self, live: LiveSession) -> Session:
        self.create_from_live_session(live)
        self.end_session(live.identity_key)
        with self._lock:
            session = Session(
                session_id=next(self._session_ids),
                identity_key=live.identity_key,
                address=live.address,
                started_at=_utc_now(),
            )
            self._sessions.append(session)
            return session

    def end_session(self, identity_key: UUID) -> None:
        now = _utc_now()
        with self._lock:
            self._sessions = [
                Session(
                    session_id=session.session_id,
                    identity_key=session.identity_key,
                    address=session.address,
                    started_at=session.started_at,
                    ended_at=now,
                )
                if session.identity_key == identity_key and session.ended_at is None
                else session
                for session in self._sessions
            ]

    def find_sessions(self, target: Address) -> list[Session]:
        with self._lock:
            sessions = list(self._sessions)
        return [session for session in sessions if matches(target, session.address)]

    def create_ban(self, reason: str, end_time: datetime | None, admin: bool, target: Address | None) -> Ban:
        with self._lock:
            ban = Ban(
                ban_id=next(self._ban_ids),
                reason=reason,
                end_time=end_time,
                admin=admin,
                target=target,
                created_at=_utc_now(),
            )
            self._bans[ban.ban_id] = ban
            return ban

    def get_ban(self, ban_id: int) -> Ban | None:
        with self._lock:
            return self._bans.get(ban_id)


_BAN_COLUMNS = "b.id, b.reason, b.end_time, b.admin, b.target, b.created_at"
_SESSION_COLUMNS = "s.id, s.identity_key, host(s.address), s.started_at, s.ended_at"


def _ban_from_row(row: tuple) -> Ban:
    ban_id, reason, end_time, admin, target, created_at = row
    return Ban(
        ban_id=int(ban_id),
        reason=reason,
        end_time=end_time,
        admin=bool(admin),
        target=parse_address(target) if target else None,
        created_at=created_at,
    )


def _session_from_row(row: tuple) -> Session:
    session_id, identity_key, address, started_at, ended_at = row
    return Session(
        session_id=int(session_id),
        identity_key=identity_key if isinstance(identity_key, UUID) else UUID(str(identity_key)),
        address=parse_host(str(address)),
        started_at=started_at,
        ended_at=ended_at,
    )


@dataclass
class PostgresBanStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def apply_schema(self, schema_sql: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()

    def find_by_key(self, key: UUID) -> Identity | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT identity_key, name, created_at FROM identities WHERE identity_key = %s",
                    (key,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return Identity(key=key, name=row[1], created_at=row[2])

    def create_from_key(self, key: UUID) -> Identity:
        return self._upsert_identity(key=key, name=None)

    def create_from_live_session(self, live: LiveSession) -> Identity:
        return self._upsert_identity(key=live.identity_key, name=live.name)

    def _upsert_identity(self, key: UUID, name: str | None) -> Identity:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identities (identity_key, name, active_ban_id, created_at)
                    VALUES (%s, %s, NULL, %s)
                    ON CONFLICT (identity_key)
                    DO UPDATE SET name = COALESCE(EXCLUDED.name, identities.name)
                    RETURNING name, created_at
                    """,
                    (key, name, _utc_now()),
                )
                row = cur.fetchone()
            conn.commit()
        return Identity(key=key, name=row[0], created_at=row[1])

    def set_active_ban(self, identity: Identity, ban: Ban) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identities (identity_key, name, active_ban_id, created_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (identity_key)
                    DO UPDATE SET active_ban_id = EXCLUDED.active_ban_id
                    """,
                    (identity.key, identity.name, ban.ban_id, identity.created_at),
                )
            conn.commit()

    def get_active_ban(self, identity: Identity) -> Ban | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_BAN_COLUMNS}
                    FROM identities i
                    JOIN bans b ON b.id = i.active_ban_id
                    WHERE i.identity_key = %s
                    """,
                    (identity.key,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return _ban_from_row(row)

    def latest_session(self, identity: Identity) -> Session | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM sessions s
                    WHERE s.identity_key = %s
                    ORDER BY s.started_at DESC, s.id DESC
                    LIMIT 1
                    """,
                    (identity.key,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return _session_from_row(row)

    def record_session(self, live: LiveSession) -> Session:
        now = _utc_now()
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identities (identity_key, name, active_ban_id, created_at)
                    VALUES (%s, %s, NULL, %s)
                    ON CONFLICT (identity_key)
                    DO UPDATE SET name = COALESCE(EXCLUDED.name, identities.name)
                    """,
                    (live.identity_key, live.name, now),
                )
                cur.execute(
                    "UPDATE sessions SET ended_at = %s WHERE identity_key = %s AND ended_at IS NULL",
                    (now, live.identity_key),
                )
                cur.execute(
                    """
                    INSERT INTO sessions (identity_key, address, started_at, ended_at)
                    VALUES (%s, %s::inet, %s, NULL)
                    RETURNING id
                    """,
                    (live.identity_key, str(live.address), now),
                )
                row = cur.fetchone()
            conn.commit()
        return Session(session_id=int(row[0]), identity_key=live.identity_key, address=live.address, started_at=now)

    def end_session(self, identity_key: UUID) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE sessions SET ended_at = %s WHERE identity_key = %s AND ended_at IS NULL",
                    (_utc_now(), identity_key),
                )
            conn.commit()

    def find_sessions(self, target: Address) -> list[Session]:
        if isinstance(target, HostAddress):
            condition = "s.address = %s::inet"
        else:
            condition = "family(s.address) = %s AND s.address <<= %s::inet"
        params: tuple = (str(target),) if isinstance(target, HostAddress) else (target.version, str(target))
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM sessions s
                    WHERE {condition}
                    ORDER BY s.started_at, s.id
                    """,
                    params,
                )
                rows = cur.fetchall()
        return [_session_from_row(row) for row in rows]

    def create_ban(self, reason: str, end_time: datetime | None, admin: bool, target: Address | None) -> Ban:
        now = _utc_now()
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO bans (reason, end_time, admin, target, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (reason, end_time, admin, str(target) if target is not None else None, now),
                )
                row = cur.fetchone()
            conn.commit()
        return Ban(ban_id=int(row[0]), reason=reason, end_time=end_time, admin=admin, target=target, created_at=now)

    def get_ban(self, ban_id: int) -> Ban | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_BAN_COLUMNS} FROM bans b WHERE b.id = %s", (ban_id,))
                row = cur.fetchone()
        if row is None:
            return None
        return _ban_from_row(row)


def create_store(database_url: str | None) -> BanStore:
    if database_url:
        return PostgresBanStore(database_url=database_url)
    return InMemoryBanStore()
