"""Live connection tracking and disconnect enforcement for the host server."""

from __future__ import annotations

import logging
import threading
from typing import Protocol
from uuid import UUID

from .models import Identity, Kick, LiveSession

logger = logging.getLogger(__name__)


class ConnectionEnforcer(Protocol):
    def connected(self) -> list[LiveSession]:
        """Return a snapshot of currently connected identities."""

    def live_session(self, identity_key: UUID) -> LiveSession | None:
        """Return the live session of a connected identity."""

    def is_connected(self, identity: Identity) -> bool:
        """Return whether the identity is currently connected."""

    def disconnect(self, identity: Identity, message: str) -> None:
        """Terminate the identity's connection with a message."""


class LiveConnectionRegistry:
    """Tracks who is online and queues kicks for the host server to carry out."""

    def __init__(self) -> None:
        self._online: dict[UUID, LiveSession] = {}
        self._kicks: list[Kick] = []
        self._lock = threading.Lock()

    def join(self, live: LiveSession) -> None:
        with self._lock:
            self._online[live.identity_key] = live

    def leave(self, identity_key: UUID) -> bool:
        with self._lock:
            return self._online.pop(identity_key, None) is not None

    def connected(self) -> list[LiveSession]:
        with self._lock:
            return list(self._online.values())

    def live_session(self, identity_key: UUID) -> LiveSession | None:
        with self._lock:
            return self._online.get(identity_key)

    def is_connected(self, identity: Identity) -> bool:
        with self._lock:
            return identity.key in self._online

    def disconnect(self, identity: Identity, message: str) -> None:
        with self._lock:
            if self._online.pop(identity.key, None) is None:
                # Left between the snapshot and the kick.
                logger.info("Identity %s already disconnected", identity.key)
                return
            self._kicks.append(Kick(identity_key=identity.key, message=message))

    def drain_kicks(self) -> list[Kick]:
        with self._lock:
            kicks = self._kicks
            self._kicks = []
            return kicks

    def requeue_kicks(self, kicks: list[Kick]) -> None:
        """Put undelivered kicks back ahead of anything queued since the drain."""
        if not kicks:
            return
        with self._lock:
            self._kicks = list(kicks) + self._kicks

    def pending_kicks(self) -> list[Kick]:
        with self._lock:
            return list(self._kicks)
