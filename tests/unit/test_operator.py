import asyncio

from raffle.engine import RaffleEngine
from raffle.models import RaffleState
from raffle.operator import UpkeepOperator

CONFIG = {"operator": {"check_interval_sec": 0.01}}


def test_run_once_does_nothing_when_not_eligible(raffle, start):
    operator = UpkeepOperator(raffle, CONFIG)

    assert operator.run_once(now=start + 1) is None
    assert raffle.state == RaffleState.OPEN
    assert operator.get_status()["upkeeps_performed"] == 0
    assert operator.get_status()["last_check"] is not None


def test_run_once_performs_upkeep(raffle_ready, start, interval):
    operator = UpkeepOperator(raffle_ready, CONFIG)

    request_id = operator.run_once(now=start + interval + 1)

    assert request_id == raffle_ready.pending_request_id
    assert raffle_ready.state == RaffleState.CALCULATING
    status = operator.get_status()
    assert status["upkeeps_performed"] == 1
    assert status["last_upkeep_request_id"] == request_id
    assert status["requests_fulfilled"] == 0


def test_run_once_auto_fulfills(raffle_ready, ledger, account, entrance_fee, start, interval):
    operator = UpkeepOperator(raffle_ready, CONFIG, auto_fulfill=True)

    operator.run_once(now=start + interval + 1)

    assert raffle_ready.state == RaffleState.OPEN
    assert raffle_ready.recent_winner == account
    assert raffle_ready.last_timestamp == start + interval + 1
    assert ledger.balance_of(account) == entrance_fee
    assert operator.get_status()["requests_fulfilled"] == 1


def test_payout_failure_is_counted_not_raised(raffle_ready, ledger, account, start, interval):
    ledger.reject_payments_to(account)
    operator = UpkeepOperator(raffle_ready, CONFIG, auto_fulfill=True)

    operator.run_once(now=start + interval + 1)
    operator.run_once(now=start + interval + 2)

    status = operator.get_status()
    assert status["consecutive_failures"] == 2
    assert "failed" in status["last_error"]
    assert raffle_ready.state == RaffleState.CALCULATING

    ledger.accept_payments_to(account)
    operator.run_once(now=start + interval + 3)
    assert operator.get_status()["consecutive_failures"] == 0
    assert raffle_ready.state == RaffleState.OPEN


def test_start_and_stop_loop(account, entrance_fee):
    engine = RaffleEngine(entrance_fee, 0)
    engine.enter(account, entrance_fee)
    operator = UpkeepOperator(engine, CONFIG, auto_fulfill=True)

    async def scenario():
        await operator.initialize()
        await operator.start()
        await operator.start()
        for _ in range(100):
            if engine.recent_winner is not None:
                break
            await asyncio.sleep(0.01)
        assert operator.get_status()["status"] == "running"
        await operator.stop()

    asyncio.run(scenario())

    assert engine.recent_winner == account
    assert operator.get_status()["status"] == "stopped"


def test_rejecting_winner_stays_winner_across_retries(
    raffle, ledger, accounts, entrance_fee, start, interval, monkeypatch
):
    for player in accounts[:2]:
        raffle.enter(player, entrance_fee, now=start)
    ledger.reject_payments_to(accounts[0])
    draws = iter(range(100))
    monkeypatch.setattr("raffle.operator.secrets.randbits", lambda bits: next(draws))
    operator = UpkeepOperator(raffle, CONFIG, auto_fulfill=True)

    for tick in range(5):
        operator.run_once(now=start + interval + tick)

    assert raffle.state == RaffleState.CALCULATING
    assert raffle.recent_winner is None
    assert ledger.balance_of(accounts[1]) == 0
    assert operator.get_status()["consecutive_failures"] == 5

    ledger.accept_payments_to(accounts[0])
    operator.run_once(now=start + interval + 10)

    assert raffle.recent_winner == accounts[0]
    assert ledger.balance_of(accounts[0]) == 2 * entrance_fee
    assert raffle.coordinator.pending_requests() == []
