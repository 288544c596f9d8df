"""Core data models for the raffle engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional


class RaffleState(IntEnum):
    """Raffle lifecycle states."""

    OPEN = 0
    CALCULATING = 1


# Event names delivered to listeners.
ENTERED = "Entered"
REQUESTED_RANDOMNESS = "RequestedRandomness"
WINNER_PICKED = "WinnerPicked"

RAFFLE_EVENTS = (ENTERED, REQUESTED_RANDOMNESS, WINNER_PICKED)


@dataclass(frozen=True)
class RaffleEntered:
    """A paid entry was appended to the current round."""

    player: str
    amount: int
    round_id: int
    timestamp: int

    name = ENTERED


@dataclass(frozen=True)
class RequestedRaffleWinner:
    """Upkeep moved the raffle to CALCULATING and asked for randomness."""

    request_id: int
    round_id: int
    timestamp: int

    name = REQUESTED_RANDOMNESS


@dataclass(frozen=True)
class WinnerPicked:
    """A round was resolved and the pot paid to the winner."""

    winner: str
    prize: int
    request_id: int
    random_value: int
    round_id: int
    player_count: int
    timestamp: int

    name = WINNER_PICKED


@dataclass(frozen=True)
class UpkeepCheck:
    """Result of `RaffleEngine.check_upkeep`."""

    upkeep_needed: bool
    perform_data: bytes = b""

    def __bool__(self) -> bool:
        return self.upkeep_needed


@dataclass
class RoundSnapshot:
    """Historical record of a resolved round."""

    round_id: int
    winner: str
    prize: int
    participant_count: int
    request_id: int
    finished_at: int


@dataclass
class LiveFeedItem:
    """Entry pushed to the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any]
    event_time: int
    created_at: datetime = field(default_factory=datetime.utcnow)

    def get_item_id(self) -> str:
        round_id = self.details.get("roundId", 0)
        return f"{round_id}-{self.event_time}-{self.event_type}"


@dataclass
class OperatorStatus:
    """Operational metrics for the upkeep operator loop."""

    is_running: bool = False
    last_check: Optional[datetime] = None
    last_upkeep_request_id: Optional[int] = None
    upkeeps_performed: int = 0
    requests_fulfilled: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    def record_check(self) -> None:
        self.last_check = datetime.utcnow()

    def reset_failures(self) -> None:
        self.consecutive_failures = 0
        self.last_error = None

    def record_failure(self, exc: Exception) -> None:
        self.consecutive_failures += 1
        self.last_error = str(exc)
