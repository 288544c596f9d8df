"""Errors raised by the raffle engine and its collaborators.

Every error is raised before any state is mutated, or (for PayoutFailed)
after the engine has rolled the resolution back, so a failed call never
leaves the raffle half-updated.
"""

from __future__ import annotations

from typing import Optional


class RaffleError(Exception):
    """Base class for raffle failures."""


class InvalidParticipant(RaffleError, ValueError):
    def __init__(self, participant):
        super().__init__(f"Invalid participant address: {participant!r}")
        self.participant = participant


class InsufficientPayment(RaffleError):
    def __init__(self, amount_paid: int, entrance_fee: int):
        super().__init__(f"Not enough ETH entered: paid {amount_paid}, entrance fee is {entrance_fee}")
        self.amount_paid = amount_paid
        self.entrance_fee = entrance_fee


class NotOpen(RaffleError):
    def __init__(self, state):
        super().__init__(f"Raffle not open (state={state.name})")
        self.state = state


class UpkeepNotNeeded(RaffleError):
    def __init__(self, balance: int, player_count: int, state):
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={player_count}, state={state.name})"
        )
        self.balance = balance
        self.player_count = player_count
        self.state = state


class UnknownRequest(RaffleError):
    def __init__(self, request_id: int, reason: str = "nonexistent request"):
        super().__init__(f"{reason}: {request_id}")
        self.request_id = request_id


class PayoutFailed(RaffleError):
    def __init__(self, recipient: str, amount: int, cause: Optional[BaseException] = None):
        message = f"Transfer of {amount} to {recipient} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.recipient = recipient
        self.amount = amount


class PlayerIndexOutOfRange(RaffleError, IndexError):
    def __init__(self, index: int, player_count: int):
        super().__init__(f"Player index {index} out of range ({player_count} players)")
        self.index = index
        self.player_count = player_count
