"""Ban issuance against identities, exact addresses and CIDR ranges."""

from __future__ import annotations

from datetime import datetime
import logging
import threading
from uuid import UUID

from .addresses import Address, HostAddress, RangeAddress, matches, parse_host, parse_range
from .config import BackendSettings
from .connections import ConnectionEnforcer
from .messages import kick_message, resolve_reason
from .models import Ban, BanFailure, BanResult, FailureStage, Identity, LiveSession
from .store import BanRepository, IdentityRegistry, SessionDirectory

logger = logging.getLogger(__name__)


class IdentityLocks:
    """One lock per identity key, guarding its active-ban reference."""

    def __init__(self) -> None:
        self._locks: dict[UUID, threading.Lock] = {}
        self._guard = threading.Lock()

    def for_key(self, key: UUID) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class BanIssuer:
    """Creates bans, applies them to affected identities and kicks connected targets.

    None of the public entry points raise. A failure before the ban record
    exists yields an empty result with ``error`` set; a failure while
    handling one identity is recorded in ``failures`` and the remaining
    identities are still processed.
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        sessions: SessionDirectory,
        bans: BanRepository,
        connections: ConnectionEnforcer,
        settings: BackendSettings | None = None,
        locks: IdentityLocks | None = None,
    ) -> None:
        self._registry = registry
        self._sessions = sessions
        self._bans = bans
        self._connections = connections
        self._settings = settings
        self._locks = locks if locks is not None else IdentityLocks()

    def ban_by_identity(
        self,
        identity_key: UUID,
        message: str | None = None,
        end_time: datetime | None = None,
        admin: bool = False,
    ) -> BanResult:
        reason = self._reason(message, admin)
        stage: FailureStage = "resolution"
        try:
            identity = self._resolve_identity(identity_key)
            stage = "persistence"
            ban = self._bans.create_ban(reason, end_time, admin, None)
            with self._locks.for_key(identity.key):
                # Identity bans always replace whatever ban was active.
                self._registry.set_active_ban(identity, ban)
        except Exception as exc:
            logger.warning("Failed to issue identity ban for %s", identity_key, exc_info=True)
            return BanResult.aborted(BanFailure(stage=stage, detail=str(exc), identity_key=identity_key))

        result = BanResult()
        result.add_ban(ban)
        result.add_player(identity)
        try:
            if self._connections.is_connected(identity):
                self._connections.disconnect(identity, kick_message(reason, end_time))
        except Exception as exc:
            logger.warning("Failed to disconnect %s after identity ban %s", identity.key, ban.ban_id, exc_info=True)
            result.add_failure(BanFailure(stage="enforcement", detail=str(exc), identity_key=identity.key))

        logger.info("Issued identity ban %s against %s", ban.ban_id, identity.key)
        return result

    def ban_by_address(
        self,
        address: HostAddress | str,
        message: str | None = None,
        end_time: datetime | None = None,
        admin: bool = False,
        include_historic: bool = False,
    ) -> BanResult:
        try:
            target = parse_host(address) if isinstance(address, str) else address
            if not isinstance(target, HostAddress):
                raise ValueError(f"expected a host address, got {target}")
        except ValueError as exc:
            logger.warning("Rejected address ban for %r: %s", address, exc)
            return BanResult.aborted(BanFailure(stage="resolution", detail=str(exc)))
        return self._issue_network_ban(
            target=target,
            message=message,
            end_time=end_time,
            admin=admin,
            include_historic=include_historic,
            skip_banned_first=False,
        )

    def ban_by_range(
        self,
        network: RangeAddress | str,
        message: str | None = None,
        end_time: datetime | None = None,
        admin: bool = False,
        include_historic: bool = False,
    ) -> BanResult:
        try:
            target = parse_range(network) if isinstance(network, str) else network
            if not isinstance(target, RangeAddress):
                raise ValueError(f"expected a CIDR range, got {target}")
        except ValueError as exc:
            logger.warning("Rejected range ban for %r: %s", network, exc)
            return BanResult.aborted(BanFailure(stage="resolution", detail=str(exc)))
        return self._issue_network_ban(
            target=target,
            message=message,
            end_time=end_time,
            admin=admin,
            include_historic=include_historic,
            skip_banned_first=True,
        )

    def _issue_network_ban(
        self,
        target: Address,
        message: str | None,
        end_time: datetime | None,
        admin: bool,
        include_historic: bool,
        skip_banned_first: bool,
    ) -> BanResult:
        reason = self._reason(message, admin)
        try:
            ban = self._bans.create_ban(reason, end_time, admin, target)
        except Exception as exc:
            logger.warning("Failed to create %s ban for %s", target.kind, target, exc_info=True)
            return BanResult.aborted(BanFailure(stage="persistence", detail=str(exc)))

        result = BanResult()
        result.add_ban(ban)
        kick_text = kick_message(reason, end_time)

        try:
            online = self._connections.connected()
        except Exception as exc:
            logger.warning("Could not list connected identities for ban %s", ban.ban_id, exc_info=True)
            result.add_failure(BanFailure(stage="resolution", detail=str(exc)))
            online = []

        for live in online:
            self._apply_to_connected(live, ban, target, kick_text, result, skip_banned_first)

        if include_historic:
            self._apply_to_historic(ban, target, kick_text, result)

        logger.info(
            "Issued %s ban %s on %s affecting %d identities (%d failures)",
            target.kind,
            ban.ban_id,
            target,
            len(result.players),
            len(result.failures),
        )
        return result

    def _apply_to_connected(
        self,
        live: LiveSession,
        ban: Ban,
        target: Address,
        kick_text: str,
        result: BanResult,
        skip_banned_first: bool,
    ) -> None:
        stage: FailureStage = "resolution"
        try:
            identity = self._registry.find_by_key(live.identity_key)
            if identity is None:
                identity = self._registry.create_from_live_session(live)
            if skip_banned_first and self._registry.get_active_ban(identity) is not None:
                return

            session = self._sessions.latest_session(identity)
            if session is None:
                raise LookupError(f"connected identity {identity.key} has no recorded session")
            if not matches(target, session.address):
                return

            stage = "persistence"
            if not self._claim(identity, ban):
                return
            result.add_player(identity)

            stage = "enforcement"
            self._connections.disconnect(identity, kick_text)
        except Exception as exc:
            logger.warning("Failed to apply ban %s to %s", ban.ban_id, live.identity_key, exc_info=True)
            result.add_failure(BanFailure(stage=stage, detail=str(exc), identity_key=live.identity_key))

    def _apply_to_historic(self, ban: Ban, target: Address, kick_text: str, result: BanResult) -> None:
        try:
            sessions = self._sessions.find_sessions(target)
        except Exception as exc:
            logger.warning("Could not search past sessions for ban %s", ban.ban_id, exc_info=True)
            result.add_failure(BanFailure(stage="resolution", detail=str(exc)))
            return

        seen = {identity.key for identity in result.players}
        for session in sessions:
            if session.identity_key in seen:
                continue
            seen.add(session.identity_key)

            stage: FailureStage = "resolution"
            try:
                identity = self._registry.find_by_key(session.identity_key)
                if identity is None:
                    identity = self._registry.create_from_key(session.identity_key)

                stage = "persistence"
                if not self._claim(identity, ban):
                    continue
                result.add_player(identity)

                stage = "enforcement"
                if self._connections.is_connected(identity):
                    self._connections.disconnect(identity, kick_text)
            except Exception as exc:
                logger.warning("Failed to apply ban %s to past user %s", ban.ban_id, session.identity_key, exc_info=True)
                result.add_failure(BanFailure(stage=stage, detail=str(exc), identity_key=session.identity_key))

    def _claim(self, identity: Identity, ban: Ban) -> bool:
        """Set ``ban`` as active unless the identity is already banned."""
        with self._locks.for_key(identity.key):
            if self._registry.get_active_ban(identity) is not None:
                return False
            self._registry.set_active_ban(identity, ban)
            return True

    def _resolve_identity(self, identity_key: UUID) -> Identity:
        identity = self._registry.find_by_key(identity_key)
        if identity is not None:
            return identity
        live = self._connections.live_session(identity_key)
        if live is not None:
            return self._registry.create_from_live_session(live)
        return self._registry.create_from_key(identity_key)

    def _reason(self, message: str | None, admin: bool) -> str:
        if self._settings is None:
            return resolve_reason(message, admin)
        return resolve_reason(
            message,
            admin,
            admin_reason=self._settings.admin_reason,
            automatic_reason=self._settings.automatic_reason,
        )
