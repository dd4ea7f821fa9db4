"""Domain models for identities, sessions, bans and ban results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from uuid import UUID

from .addresses import Address, HostAddress

FailureStage = Literal["resolution", "persistence", "enforcement"]


@dataclass(frozen=True)
class Identity:
    key: UUID
    name: str | None
    created_at: datetime


@dataclass(frozen=True)
class LiveSession:
    identity_key: UUID
    name: str | None
    address: HostAddress


@dataclass(frozen=True)
class Session:
    session_id: int
    identity_key: UUID
    address: HostAddress
    started_at: datetime
    ended_at: datetime | None = None


@dataclass(frozen=True)
class Ban:
    ban_id: int
    reason: str
    end_time: datetime | None
    admin: bool
    target: Address | None
    created_at: datetime


@dataclass(frozen=True)
class Kick:
    identity_key: UUID
    message: str


@dataclass(frozen=True)
class BanFailure:
    stage: FailureStage
    detail: str
    identity_key: UUID | None = None


@dataclass
class BanResult:
    """Bans created and identities affected by one issuance call.

    ``error`` is set when the call aborted before touching any identity; the
    result then holds no bans and no players. ``failures`` lists identities
    that could not be fully processed while the rest of the call carried on.
    """

    _bans: list[Ban] = field(default_factory=list, init=False)
    _players: list[Identity] = field(default_factory=list, init=False)
    error: BanFailure | None = None
    failures: list[BanFailure] = field(default_factory=list)

    def add_ban(self, ban: Ban) -> None:
        self._bans.append(ban)

    def add_player(self, identity: Identity) -> None:
        self._players.append(identity)

    def add_failure(self, failure: BanFailure) -> None:
        self.failures.append(failure)

    @property
    def bans(self) -> tuple[Ban, ...]:
        return tuple(self._bans)

    @property
    def players(self) -> tuple[Identity, ...]:
        return tuple(self._players)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def aborted(cls, failure: BanFailure) -> BanResult:
        return cls(error=failure)
