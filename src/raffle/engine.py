"""
Raffle Engine - entry validation, upkeep gating and winner payout

One engine instance owns one raffle. Rounds cycle OPEN -> CALCULATING -> OPEN:
`enter` collects fees while OPEN, `perform_upkeep` closes the round and asks the
coordinator for randomness, and `fulfill_random_words` picks the winner, pays the
whole balance and reopens.

Winner selection is `random_value % len(players)`. With a 256-bit random value
the modulo bias is negligible for any realistic player count; it is an
approximation, not a cryptographic guarantee.
"""

from __future__ import annotations

import time
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence, Union

from raffle.coordinator import RandomnessCoordinator
from raffle.errors import (
    InsufficientPayment,
    InvalidParticipant,
    NotOpen,
    PayoutFailed,
    PlayerIndexOutOfRange,
    UnknownRequest,
    UpkeepNotNeeded,
)
from raffle.event_manager import EventEmitter, Listener
from raffle.models import (
    RaffleEntered,
    RaffleState,
    RequestedRaffleWinner,
    UpkeepCheck,
    WinnerPicked,
)
from raffle.payments import PaymentLedger
from raffle.utils.common import format_eth, normalize_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class RaffleEngine:
    """Single-owner raffle state machine.

    All mutating calls run under one re-entrant lock, and events are emitted
    while it is held: listeners see the fully applied transition and may call
    the read accessors.
    """

    def __init__(
        self,
        entrance_fee: int,
        interval: int,
        *,
        coordinator: Optional[RandomnessCoordinator] = None,
        payment_sink: Optional[PaymentLedger] = None,
        emitter: Optional[EventEmitter] = None,
        now: Optional[int] = None,
    ):
        if entrance_fee < 0:
            raise ValueError("entrance_fee must be non-negative")
        if interval < 0:
            raise ValueError("interval must be non-negative")

        self._entrance_fee = int(entrance_fee)
        self._interval = int(interval)
        self.coordinator = coordinator if coordinator is not None else RandomnessCoordinator()
        self.payment_sink = payment_sink if payment_sink is not None else PaymentLedger()
        self._emitter = emitter if emitter is not None else EventEmitter()

        self._lock = RLock()
        self._state = RaffleState.OPEN
        self._players: List[str] = []
        self._balance = 0
        self._last_timestamp = self._now(now)
        self._pending_request_id: Optional[int] = None
        self._recent_winner: Optional[str] = None
        self._round_id = 1

        logger.info(
            f"Raffle engine initialized: entrance fee {format_eth(self._entrance_fee)}, "
            f"interval {self._interval}s"
        )

    @staticmethod
    def _now(now: Optional[int]) -> int:
        return int(time.time()) if now is None else int(now)

    # =============== EVENTS ===============

    def on(self, event_type: str, callback: Listener) -> None:
        self._emitter.on(event_type, callback)

    def once(self, event_type: str, callback: Listener) -> None:
        self._emitter.once(event_type, callback)

    def off(self, event_type: str, callback: Listener) -> bool:
        return self._emitter.off(event_type, callback)

    # =============== ENTRIES ===============

    def enter(self, participant: str, amount_paid: int, now: Optional[int] = None) -> int:
        """Add a paid entry to the current round. Returns the new player count."""
        try:
            player = normalize_address(participant)
        except ValueError:
            raise InvalidParticipant(participant) from None
        if not isinstance(amount_paid, int) or amount_paid < 0:
            raise ValueError(f"amount_paid must be a non-negative integer, got {amount_paid!r}")

        with self._lock:
            if self._state != RaffleState.OPEN:
                raise NotOpen(self._state)
            if amount_paid < self._entrance_fee:
                raise InsufficientPayment(amount_paid, self._entrance_fee)

            self._players.append(player)
            self._balance += amount_paid
            player_count = len(self._players)

            logger.info(f"Player {player} entered round {self._round_id} with {format_eth(amount_paid)}")
            self._emitter.emit(
                RaffleEntered.name,
                RaffleEntered(
                    player=player,
                    amount=amount_paid,
                    round_id=self._round_id,
                    timestamp=self._now(now),
                ),
            )
            return player_count

    # =============== UPKEEP ===============

    def check_upkeep(self, now: Optional[int] = None) -> UpkeepCheck:
        with self._lock:
            return UpkeepCheck(upkeep_needed=self._is_upkeep_needed(self._now(now)))

    def check_upkeep_eligible(self, now: Optional[int] = None) -> bool:
        return self.check_upkeep(now).upkeep_needed

    def _is_upkeep_needed(self, now: int) -> bool:
        is_open = self._state == RaffleState.OPEN
        time_passed = now - self._last_timestamp >= self._interval
        has_players = len(self._players) > 0
        has_balance = self._balance > 0
        return is_open and time_passed and has_players and has_balance

    def perform_upkeep(self, now: Optional[int] = None) -> int:
        """Close the round and request randomness. Returns the request id."""
        now = self._now(now)
        with self._lock:
            if not self._is_upkeep_needed(now):
                raise UpkeepNotNeeded(self._balance, len(self._players), self._state)

            request_id = self.coordinator.request_random_words(self)

            self._state = RaffleState.CALCULATING
            self._pending_request_id = request_id

            logger.info(
                f"Round {self._round_id} calculating: {len(self._players)} players, "
                f"pot {format_eth(self._balance)}, request {request_id}"
            )
            self._emitter.emit(
                RequestedRaffleWinner.name,
                RequestedRaffleWinner(request_id=request_id, round_id=self._round_id, timestamp=now),
            )
            return request_id

    # =============== RESOLUTION ===============

    def fulfill_random_words(
        self,
        request_id: int,
        random_words: Union[int, Sequence[int]],
        now: Optional[int] = None,
    ) -> str:
        """Pick and pay the winner for the pending request. Returns the winner."""
        now = self._now(now)
        if isinstance(random_words, int):
            random_value = random_words
        elif len(random_words) == 0:
            raise ValueError("random_words must not be empty")
        else:
            random_value = random_words[0]
        if random_value < 0:
            raise ValueError("random value must be non-negative")

        with self._lock:
            if self._pending_request_id is None or request_id != self._pending_request_id:
                raise UnknownRequest(request_id)

            player_count = len(self._players)
            winner = self._players[random_value % player_count]
            prize = self._balance

            # Payout is the commit point: nothing changes unless it succeeds.
            try:
                self.payment_sink.send(winner, prize)
            except PayoutFailed:
                logger.error(f"Payout to {winner} failed; round {self._round_id} stays calculating")
                raise
            except Exception as exc:
                logger.error(f"Payout to {winner} failed: {exc}")
                raise PayoutFailed(winner, prize, exc) from exc

            round_id = self._round_id
            self._recent_winner = winner
            self._players = []
            self._balance = 0
            self._state = RaffleState.OPEN
            self._last_timestamp = now
            self._pending_request_id = None
            self._round_id += 1
            self.coordinator.forget(request_id)

            logger.info(f"Round {round_id} completed. Winner: {winner}, prize {format_eth(prize)}")
            self._emitter.emit(
                WinnerPicked.name,
                WinnerPicked(
                    winner=winner,
                    prize=prize,
                    request_id=request_id,
                    random_value=random_value,
                    round_id=round_id,
                    player_count=player_count,
                    timestamp=now,
                ),
            )
            return winner

    # =============== STATUS AND INFORMATION METHODS ===============

    @property
    def entrance_fee(self) -> int:
        return self._entrance_fee

    @property
    def interval(self) -> int:
        return self._interval

    @property
    def state(self) -> RaffleState:
        with self._lock:
            return self._state

    @property
    def players(self) -> List[str]:
        with self._lock:
            return list(self._players)

    @property
    def balance(self) -> int:
        with self._lock:
            return self._balance

    @property
    def recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    @property
    def last_timestamp(self) -> int:
        with self._lock:
            return self._last_timestamp

    @property
    def pending_request_id(self) -> Optional[int]:
        with self._lock:
            return self._pending_request_id

    @property
    def round_id(self) -> int:
        with self._lock:
            return self._round_id

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._players):
                raise PlayerIndexOutOfRange(index, len(self._players))
            return self._players[index]

    def get_number_of_players(self) -> int:
        with self._lock:
            return len(self._players)

    def snapshot(self, now: Optional[int] = None) -> Dict[str, Any]:
        """Serializable view of the current round."""
        now = self._now(now)
        with self._lock:
            return {
                "roundId": self._round_id,
                "state": self._state.value,
                "stateLabel": self._state.name,
                "entranceFeeWei": self._entrance_fee,
                "interval": self._interval,
                "players": list(self._players),
                "playerCount": len(self._players),
                "balanceWei": self._balance,
                "lastTimestamp": self._last_timestamp,
                "recentWinner": self._recent_winner,
                "pendingRequestId": self._pending_request_id,
                "upkeepNeeded": self._is_upkeep_needed(now),
            }
