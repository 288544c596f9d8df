"""Shared pytest fixtures for the raffle test suite."""

import pytest
from eth_account import Account

from raffle.coordinator import RandomnessCoordinator
from raffle.engine import RaffleEngine
from raffle.event_manager import ActivityStore
from raffle.payments import PaymentLedger

ENTRANCE_FEE = 10**16  # 0.01 ETH
INTERVAL = 60
START = 1_700_000_000


@pytest.fixture
def entrance_fee():
    return ENTRANCE_FEE


@pytest.fixture
def interval():
    return INTERVAL


@pytest.fixture
def start():
    return START


@pytest.fixture
def accounts():
    """Five fresh entrant addresses."""
    return [Account.create().address for _ in range(5)]


@pytest.fixture
def account(accounts):
    return accounts[0]


@pytest.fixture
def coordinator():
    return RandomnessCoordinator()


@pytest.fixture
def ledger():
    return PaymentLedger()


@pytest.fixture
def raffle(coordinator, ledger):
    """Fresh engine created at START."""
    return RaffleEngine(
        ENTRANCE_FEE,
        INTERVAL,
        coordinator=coordinator,
        payment_sink=ledger,
        now=START,
    )


@pytest.fixture
def store(raffle):
    activity_store = ActivityStore(feed_capacity=10, history_capacity=5)
    activity_store.attach(raffle)
    return activity_store


@pytest.fixture
def raffle_ready(raffle, account):
    """Engine with one entry and the interval elapsed."""
    raffle.enter(account, ENTRANCE_FEE, now=START + 1)
    return raffle


@pytest.fixture
def raffle_calculating(raffle_ready):
    """Engine in CALCULATING with a pending request."""
    raffle_ready.perform_upkeep(now=START + INTERVAL + 1)
    return raffle_ready
