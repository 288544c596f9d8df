"""Event delivery and in-memory activity tracking for the raffle backend."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from raffle.models import (
    ENTERED,
    REQUESTED_RANDOMNESS,
    WINNER_PICKED,
    LiveFeedItem,
    RaffleEntered,
    RequestedRaffleWinner,
    RoundSnapshot,
    WinnerPicked,
)
from raffle.utils.common import format_eth, shorten_eth_address
from raffle.utils.logger import get_logger

if TYPE_CHECKING:
    from raffle.engine import RaffleEngine

logger = get_logger(__name__)

Listener = Callable[[Any], None]


@dataclass
class _Registration:
    callback: Listener
    once: bool


class EventEmitter:
    """Synchronous listener registry.

    Listeners run in registration order on the emitting thread, before
    `emit` returns. A listener that raises is logged and skipped; the rest
    still receive the event. `once` listeners are unregistered before their
    single delivery.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[_Registration]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener, *, once: bool = False) -> None:
        with self._lock:
            self._listeners[event_type].append(_Registration(callback, once))
        logger.debug(f"[EventEmitter] Adding listener for event_type={event_type}, callback={callback}, once={once}")

    def on(self, event_type: str, callback: Listener) -> None:
        self.add_listener(event_type, callback)

    def once(self, event_type: str, callback: Listener) -> None:
        self.add_listener(event_type, callback, once=True)

    def off(self, event_type: str, callback: Listener) -> bool:
        """Remove the earliest registration of `callback`. Returns False if none."""
        with self._lock:
            registrations = self._listeners.get(event_type, [])
            for idx, registration in enumerate(registrations):
                if registration.callback == callback:
                    del registrations[idx]
                    return True
        return False

    def listener_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._listeners.get(event_type, []))

    def emit(self, event_type: str, payload: Any) -> None:
        with self._lock:
            registrations = list(self._listeners.get(event_type, []))
            if any(r.once for r in registrations):
                self._listeners[event_type] = [r for r in self._listeners[event_type] if not r.once]

        for registration in registrations:
            try:
                registration.callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)


class ActivityStore:
    """Volatile live feed and round history built from raffle events.

    Store updates are re-emitted as `round_update`, `live_feed` and
    `history_update` for the web server's broadcast loop.
    """

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._emitter = EventEmitter()
        self._feed_capacity = feed_capacity
        self._history_capacity = history_capacity
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[RoundSnapshot] = deque(maxlen=history_capacity)
        self._engine: Optional["RaffleEngine"] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def attach(self, engine: "RaffleEngine") -> None:
        """Subscribe to an engine's events. Attaching twice is a no-op."""
        if self._engine is engine:
            return
        self._engine = engine
        engine.on(ENTERED, self._on_entered)
        engine.on(REQUESTED_RANDOMNESS, self._on_requested)
        engine.on(WINNER_PICKED, self._on_winner_picked)
        logger.info("[ActivityStore] attached to raffle engine")

    def add_listener(self, event_type: str, callback: Listener) -> None:
        self._emitter.on(event_type, callback)

    # ------------------------------------------------------------------
    # Engine event handlers
    # ------------------------------------------------------------------
    def _on_entered(self, event: RaffleEntered) -> None:
        message = f"{shorten_eth_address(event.player)} entered for {format_eth(event.amount)}"
        self.add_live_feed(
            event_type=event.name,
            message=message,
            details={"roundId": event.round_id, "player": event.player, "amount": event.amount},
            event_time=event.timestamp,
        )
        self._emit_round_update()

    def _on_requested(self, event: RequestedRaffleWinner) -> None:
        self.add_live_feed(
            event_type=event.name,
            message=f"Round {event.round_id} closed, randomness request {event.request_id} sent",
            details={"roundId": event.round_id, "requestId": event.request_id},
            event_time=event.timestamp,
        )
        self._emit_round_update()

    def _on_winner_picked(self, event: WinnerPicked) -> None:
        self.add_live_feed(
            event_type=event.name,
            message=(
                f"Round {event.round_id} won by {shorten_eth_address(event.winner)} "
                f"for {format_eth(event.prize)}"
            ),
            details={
                "roundId": event.round_id,
                "winner": event.winner,
                "prize": event.prize,
                "requestId": event.request_id,
            },
            event_time=event.timestamp,
        )
        snapshot = RoundSnapshot(
            round_id=event.round_id,
            winner=event.winner,
            prize=event.prize,
            participant_count=event.player_count,
            request_id=event.request_id,
            finished_at=event.timestamp,
        )
        with self._lock:
            self._history.append(snapshot)
        logger.info(f"[ActivityStore] Added history snapshot: {snapshot}")
        self._emitter.emit("history_update", self._serialize_history())
        self._emit_round_update()

    # ------------------------------------------------------------------
    # Feed and history
    # ------------------------------------------------------------------
    def add_live_feed(
        self,
        *,
        event_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        event_time: int = 0,
    ) -> LiveFeedItem:
        item = LiveFeedItem(
            event_type=event_type,
            message=message,
            details=dict(details or {}),
            event_time=event_time,
        )
        with self._lock:
            self._live_feed.append(item)
        logger.info("[ActivityStore] appended live feed item %s: %s", item.event_type, item.message)
        self._emitter.emit("live_feed", self.serialize_feed_item(item))
        return item

    def get_live_feed(self, limit: Optional[int] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if limit is not None:
            return items[-limit:]
        return items

    def get_round_history(self, limit: Optional[int] = None) -> List[RoundSnapshot]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def clear_all_data(self) -> None:
        with self._lock:
            self._history.clear()
            self._live_feed.clear()
        self._emitter.emit("history_update", self._serialize_history())
        logger.debug("[ActivityStore] clear_all_data called")

    # ------------------------------------------------------------------
    # Runtime resizing helpers
    # ------------------------------------------------------------------
    def set_feed_capacity(self, capacity: int) -> None:
        """Resize the live feed capacity (max entries)."""
        with self._lock:
            if capacity == self._feed_capacity:
                return
            old_items = list(self._live_feed)
            self._live_feed = deque(old_items[-capacity:], maxlen=capacity)
            self._feed_capacity = capacity
        logger.info(f"[ActivityStore] live feed capacity set to {capacity}")

    def set_history_capacity(self, capacity: int) -> None:
        """Resize the round history capacity (max snapshots)."""
        with self._lock:
            if capacity == self._history_capacity:
                return
            old_items = list(self._history)
            self._history = deque(old_items[-capacity:], maxlen=capacity)
            self._history_capacity = capacity
        logger.info(f"[ActivityStore] history capacity set to {capacity}")

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def _emit_round_update(self) -> None:
        if self._engine is not None:
            self._emitter.emit("round_update", self._engine.snapshot())

    @staticmethod
    def serialize_feed_item(item: LiveFeedItem) -> dict:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.event_time,
        }

    @staticmethod
    def serialize_snapshot(snapshot: RoundSnapshot) -> dict:
        return {
            "roundId": snapshot.round_id,
            "winner": snapshot.winner,
            "prizeWei": snapshot.prize,
            "participantCount": snapshot.participant_count,
            "requestId": snapshot.request_id,
            "finishedAt": snapshot.finished_at,
        }

    def _serialize_history(self) -> dict:
        rounds = [self.serialize_snapshot(s) for s in self.get_round_history()]
        rounds.sort(key=lambda x: x["roundId"], reverse=True)
        return {"rounds": rounds}
