"""
Payment Ledger - in-memory balances used as the raffle's payout sink
"""

from threading import Lock
from typing import Dict, Set

from raffle.errors import PayoutFailed
from raffle.utils.common import format_eth, normalize_address
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class PaymentLedger:
    """Tracks wei balances per address and accepts payout transfers.

    Addresses registered with `reject_payments_to` behave like a recipient
    contract without a payable fallback: any transfer to them fails.
    """

    def __init__(self):
        self._lock = Lock()
        self._balances: Dict[str, int] = {}
        self._rejecting: Set[str] = set()
        self.total_paid_out = 0

    def fund(self, address: str, amount: int) -> int:
        if amount < 0:
            raise ValueError("Funding amount must be non-negative")
        address = normalize_address(address)
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount
            return self._balances[address]

    def balance_of(self, address: str) -> int:
        address = normalize_address(address)
        with self._lock:
            return self._balances.get(address, 0)

    def reject_payments_to(self, address: str) -> None:
        with self._lock:
            self._rejecting.add(normalize_address(address))

    def accept_payments_to(self, address: str) -> None:
        with self._lock:
            self._rejecting.discard(normalize_address(address))

    def send(self, recipient: str, amount: int) -> None:
        """Credit `amount` to `recipient` or raise PayoutFailed."""
        recipient = normalize_address(recipient)
        with self._lock:
            if recipient in self._rejecting:
                logger.warning(f"Payout of {format_eth(amount)} rejected by {recipient}")
                raise PayoutFailed(recipient, amount)
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            self.total_paid_out += amount
        logger.info(f"Paid {format_eth(amount)} to {recipient}")

    def get_status(self) -> Dict[str, int]:
        with self._lock:
            return {
                "accounts": len(self._balances),
                "total_paid_out": self.total_paid_out,
            }
