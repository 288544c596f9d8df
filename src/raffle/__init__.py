"""In-process raffle engine with upkeep-triggered randomness and winner payout."""

from raffle.coordinator import RandomnessCoordinator
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
from raffle.event_manager import ActivityStore, EventEmitter
from raffle.models import (
    ENTERED,
    REQUESTED_RANDOMNESS,
    WINNER_PICKED,
    RaffleEntered,
    RaffleState,
    RequestedRaffleWinner,
    UpkeepCheck,
    WinnerPicked,
)
from raffle.payments import PaymentLedger

__all__ = [
    "ActivityStore",
    "ENTERED",
    "EventEmitter",
    "InsufficientPayment",
    "InvalidParticipant",
    "NotOpen",
    "PaymentLedger",
    "PayoutFailed",
    "PlayerIndexOutOfRange",
    "REQUESTED_RANDOMNESS",
    "RaffleEngine",
    "RaffleEntered",
    "RaffleError",
    "RaffleState",
    "RandomnessCoordinator",
    "RequestedRaffleWinner",
    "UnknownRequest",
    "UpkeepCheck",
    "UpkeepNotNeeded",
    "WINNER_PICKED",
    "WinnerPicked",
]
