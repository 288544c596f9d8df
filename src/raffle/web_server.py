"""FastAPI web server exposing the raffle engine over HTTP and WebSocket."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, conint

from raffle.engine import RaffleEngine
from raffle.errors import (
    InsufficientPayment,
    InvalidParticipant,
    NotOpen,
    PayoutFailed,
    PlayerIndexOutOfRange,
    RaffleError,
    UnknownRequest,
    UpkeepNotNeeded,
)
from raffle.event_manager import ActivityStore
from raffle.operator import UpkeepOperator
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


ERROR_STATUS: Tuple[Tuple[type, int], ...] = (
    (InvalidParticipant, 400),
    (InsufficientPayment, 400),
    (NotOpen, 409),
    (UpkeepNotNeeded, 409),
    (UnknownRequest, 404),
    (PlayerIndexOutOfRange, 404),
    (PayoutFailed, 502),
)


class EnterRequest(BaseModel):
    player: str
    amount_wei: int = Field(ge=0)


class UpkeepRequest(BaseModel):
    now: Optional[int] = None


class FulfillRequest(BaseModel):
    request_id: int
    random_words: Optional[List[conint(ge=0)]] = Field(default=None, min_length=1)
    now: Optional[int] = None


def to_http_exception(exc: RaffleError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"error": type(exc).__name__, "message": str(exc)})
    return HTTPException(status_code=500, detail={"error": type(exc).__name__, "message": str(exc)})


class RaffleWebServer:
    """HTTP and WebSocket gateway for the raffle backend."""

    def __init__(
        self,
        config: Dict[str, Any],
        engine: RaffleEngine,
        store: ActivityStore,
        operator: Optional[UpkeepOperator] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.operator = operator
        self._store = store

        self.app = FastAPI(
            title="Raffle API",
            description="HTTP surface for the raffle engine",
            version="1.0.0",
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self) -> None:  # noqa: C901 - routing setup intentionally verbose
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            operator_state = self.operator.get_status() if self.operator else {}
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": operator_state.get("status", "disabled"),
                    "engine": {"round": self.engine.round_id, "state": self.engine.state.name},
                },
            }

        # ------------------------------------------------------------------
        # Raffle state
        # ------------------------------------------------------------------
        @self.app.get("/api/raffle/status")
        async def get_raffle_status() -> Dict[str, Any]:
            return self.engine.snapshot()

        @self.app.get("/api/raffle/players")
        async def get_players() -> Dict[str, Any]:
            players = self.engine.players
            return {
                "round_id": self.engine.round_id,
                "players": players,
                "total_players": len(players),
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/api/raffle/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            try:
                return {"index": index, "player": self.engine.get_player(index)}
            except RaffleError as exc:
                raise to_http_exception(exc)

        @self.app.get("/api/raffle/upkeep")
        async def check_upkeep(now: Optional[int] = None) -> Dict[str, Any]:
            check = self.engine.check_upkeep(now)
            return {"upkeepNeeded": check.upkeep_needed, "performData": check.perform_data.hex()}

        # ------------------------------------------------------------------
        # Mutations
        # ------------------------------------------------------------------
        @self.app.post("/api/raffle/enter")
        async def enter_raffle(request: EnterRequest) -> Dict[str, Any]:
            try:
                count = self.engine.enter(request.player, request.amount_wei)
            except RaffleError as exc:
                raise to_http_exception(exc)
            return {"status": "entered", "round_id": self.engine.round_id, "player_count": count}

        @self.app.post("/api/raffle/upkeep")
        async def perform_upkeep(request: UpkeepRequest) -> Dict[str, Any]:
            try:
                request_id = self.engine.perform_upkeep(request.now)
            except RaffleError as exc:
                raise to_http_exception(exc)
            return {"status": "calculating", "request_id": request_id}

        @self.app.post("/api/raffle/fulfill")
        async def fulfill(request: FulfillRequest) -> Dict[str, Any]:
            try:
                words = self.engine.coordinator.fulfill_random_words(
                    request.request_id, request.random_words, request.now
                )
            except RaffleError as exc:
                raise to_http_exception(exc)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail={"error": "InvalidRandomWords", "message": str(exc)})
            return {
                "status": "fulfilled",
                "request_id": request.request_id,
                "random_words": words,
                "winner": self.engine.recent_winner,
            }

        # ------------------------------------------------------------------
        # History, feed and balances
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_round_history(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            history = self._store.get_round_history(limit=limit)
            rounds = [self._store.serialize_snapshot(item) for item in reversed(history)]
            return {
                "rounds": rounds,
                "summary": {
                    "total_rounds": len(rounds),
                    "total_volume_wei": sum(r["prizeWei"] for r in rounds),
                },
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/api/activities")
        async def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit)
            return {"activities": [self._store.serialize_feed_item(item) for item in reversed(feed)]}

        @self.app.get("/api/balances/{address}")
        async def get_balance(address: str) -> Dict[str, Any]:
            try:
                balance = self.engine.payment_sink.balance_of(address)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid address")
            return {"address": address, "balanceWei": balance}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                await websocket.send_json({"type": "snapshot", "payload": self._build_initial_snapshot()})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:  # pragma: no cover
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in ("round_update", "history_update", "live_feed"):
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
            logger.debug("Enqueued broadcast for %s", event_type)
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        history = self._store.get_round_history(limit=10)
        feed = self._store.get_live_feed(limit=20)
        return {
            "raffle": self.engine.snapshot(),
            "history": [self._store.serialize_snapshot(item) for item in reversed(history)],
            "live_feed": [self._store.serialize_feed_item(item) for item in reversed(feed)],
            "operator": self.operator.get_status() if self.operator else {},
        }
