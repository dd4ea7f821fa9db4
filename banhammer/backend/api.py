"""FastAPI endpoints for connection reporting, ban issuance and kick delivery."""

from __future__ import annotations

from datetime import datetime
import logging
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .addresses import parse_host, parse_range
from .config import BackendSettings, load_settings
from .connections import LiveConnectionRegistry
from .issuer import BanIssuer
from .models import Ban, BanFailure, BanResult, Identity, Kick, LiveSession
from .security import AdminTokenGuard
from .store import BanStore, create_store

logger = logging.getLogger(__name__)


class ConnectRequest(BaseModel):
    identity_key: UUID
    name: str | None = Field(default=None, max_length=64)
    address: str = Field(min_length=1, max_length=64)


class IdentityBanRequest(BaseModel):
    identity_key: UUID
    message: str | None = Field(default=None, max_length=500)
    end_time: datetime | None = None
    admin: bool = True


class AddressBanRequest(BaseModel):
    address: str = Field(min_length=1, max_length=64)
    message: str | None = Field(default=None, max_length=500)
    end_time: datetime | None = None
    admin: bool = True
    include_historic: bool = False


class RangeBanRequest(BaseModel):
    network: str = Field(min_length=1, max_length=64)
    message: str | None = Field(default=None, max_length=500)
    end_time: datetime | None = None
    admin: bool = True
    include_historic: bool = False


class BanView(BaseModel):
    ban_id: int
    reason: str
    end_time: datetime | None
    admin: bool
    target: str | None
    created_at: datetime


class IdentityView(BaseModel):
    identity_key: UUID
    name: str | None


class FailureView(BaseModel):
    stage: str
    detail: str
    identity_key: UUID | None = None


class BanResultResponse(BaseModel):
    bans: list[BanView]
    players: list[IdentityView]
    error: FailureView | None = None
    failures: list[FailureView] = Field(default_factory=list)


class ConnectResponse(BaseModel):
    session_id: int
    active_ban: BanView | None = None


class LeaveResponse(BaseModel):
    was_connected: bool


def _ban_view(ban: Ban) -> BanView:
    return BanView(
        ban_id=ban.ban_id,
        reason=ban.reason,
        end_time=ban.end_time,
        admin=ban.admin,
        target=str(ban.target) if ban.target is not None else None,
        created_at=ban.created_at,
    )


def _identity_view(identity: Identity) -> IdentityView:
    return IdentityView(identity_key=identity.key, name=identity.name)


def _failure_view(failure: BanFailure) -> FailureView:
    return FailureView(stage=failure.stage, detail=failure.detail, identity_key=failure.identity_key)


def _result_response(result: BanResult) -> BanResultResponse:
    return BanResultResponse(
        bans=[_ban_view(ban) for ban in result.bans],
        players=[_identity_view(identity) for identity in result.players],
        error=_failure_view(result.error) if result.error is not None else None,
        failures=[_failure_view(failure) for failure in result.failures],
    )


class KickWebSocketHub:
    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)

    async def send_kick(self, websocket: WebSocket, kick: Kick) -> None:
        await websocket.send_json(
            {"type": "player.kick", "identity_key": str(kick.identity_key), "message": kick.message}
        )

    async def deliver_kick(self, kick: Kick) -> bool:
        """Send the kick to every subscriber; True when at least one took it."""
        delivered = False
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections):
            try:
                await self.send_kick(websocket, kick)
                delivered = True
            except (RuntimeError, WebSocketDisconnect):
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(websocket)
        return delivered


def _record_undelivered(result: BanResult, undelivered: list[Kick]) -> None:
    affected = {identity.key for identity in result.players}
    for kick in undelivered:
        if kick.identity_key in affected:
            result.add_failure(
                BanFailure(
                    stage="enforcement",
                    detail="no kick subscriber accepted the kick; queued for redelivery",
                    identity_key=kick.identity_key,
                )
            )


def create_app(
    store: BanStore | None = None,
    connections: LiveConnectionRegistry | None = None,
    settings: BackendSettings | None = None,
) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()

    app = FastAPI(title="Banhammer API", version="0.1.0")
    ban_store = store if store is not None else create_store(app_settings.database_url)
    registry = connections if connections is not None else LiveConnectionRegistry()
    issuer = BanIssuer(
        registry=ban_store,
        sessions=ban_store,
        bans=ban_store,
        connections=registry,
        settings=app_settings,
    )
    kick_hub = KickWebSocketHub()
    guard = AdminTokenGuard.from_settings(app_settings)

    app.state.issuer = issuer
    app.state.connections = registry
    app.state.kick_hub = kick_hub

    async def publish_kicks() -> list[Kick]:
        undelivered: list[Kick] = []
        for kick in registry.drain_kicks():
            if not await kick_hub.deliver_kick(kick):
                undelivered.append(kick)
        if undelivered:
            logger.warning("%d kicks had no subscriber; keeping them queued", len(undelivered))
            registry.requeue_kicks(undelivered)
        return undelivered

    async def finish_ban(result: BanResult) -> BanResultResponse:
        _record_undelivered(result, await publish_kicks())
        return _result_response(result)

    def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
        if not guard.allows(x_admin_token):
            raise HTTPException(status_code=401, detail="Admin token missing or invalid")

    def get_store() -> BanStore:
        return ban_store

    @app.post("/api/connections", response_model=ConnectResponse, dependencies=[Depends(require_admin)])
    def connect(payload: ConnectRequest, local_store: BanStore = Depends(get_store)) -> ConnectResponse:
        try:
            address = parse_host(payload.address)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        live = LiveSession(identity_key=payload.identity_key, name=payload.name, address=address)
        session = local_store.record_session(live)
        registry.join(live)
        logger.info("Identity %s connected from %s", live.identity_key, live.address)
        identity = local_store.find_by_key(payload.identity_key)
        active_ban = local_store.get_active_ban(identity) if identity is not None else None
        return ConnectResponse(
            session_id=session.session_id,
            active_ban=_ban_view(active_ban) if active_ban is not None else None,
        )

    @app.delete(
        "/api/connections/{identity_key}",
        response_model=LeaveResponse,
        dependencies=[Depends(require_admin)],
    )
    def leave(identity_key: UUID, local_store: BanStore = Depends(get_store)) -> LeaveResponse:
        was_connected = registry.leave(identity_key)
        local_store.end_session(identity_key)
        return LeaveResponse(was_connected=was_connected)

    @app.get("/api/identities/{identity_key}/ban", response_model=BanView, dependencies=[Depends(require_admin)])
    def get_active_ban(identity_key: UUID, local_store: BanStore = Depends(get_store)) -> BanView:
        identity = local_store.find_by_key(identity_key)
        active_ban = local_store.get_active_ban(identity) if identity is not None else None
        if active_ban is None:
            raise HTTPException(status_code=404, detail="Identity unknown or not banned")
        return _ban_view(active_ban)

    @app.post("/api/bans/identity", response_model=BanResultResponse, dependencies=[Depends(require_admin)])
    async def ban_identity(payload: IdentityBanRequest) -> BanResultResponse:
        result = await run_in_threadpool(
            issuer.ban_by_identity,
            payload.identity_key,
            message=payload.message,
            end_time=payload.end_time,
            admin=payload.admin,
        )
        return await finish_ban(result)

    @app.post("/api/bans/address", response_model=BanResultResponse, dependencies=[Depends(require_admin)])
    async def ban_address(payload: AddressBanRequest) -> BanResultResponse:
        try:
            target = parse_host(payload.address)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        result = await run_in_threadpool(
            issuer.ban_by_address,
            target,
            message=payload.message,
            end_time=payload.end_time,
            admin=payload.admin,
            include_historic=payload.include_historic,
        )
        return await finish_ban(result)

    @app.post("/api/bans/range", response_model=BanResultResponse, dependencies=[Depends(require_admin)])
    async def ban_range(payload: RangeBanRequest) -> BanResultResponse:
        try:
            target = parse_range(payload.network)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        result = await run_in_threadpool(
            issuer.ban_by_range,
            target,
            message=payload.message,
            end_time=payload.end_time,
            admin=payload.admin,
            include_historic=payload.include_historic,
        )
        return await finish_ban(result)

    @app.websocket("/ws/kicks")
    async def kicks_ws(websocket: WebSocket) -> None:
        if not guard.allows(websocket.query_params.get("token")):
            await websocket.close(code=1008)
            return

        await kick_hub.connect(websocket)
        # Hand over kicks queued while nobody was subscribed.
        backlog = registry.drain_kicks()
        undelivered: list[Kick] = []
        for kick in backlog:
            try:
                await kick_hub.send_kick(websocket, kick)
            except (RuntimeError, WebSocketDisconnect):
                undelivered.append(kick)
        registry.requeue_kicks(undelivered)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            kick_hub.disconnect(websocket)

    return app


app = create_app()
