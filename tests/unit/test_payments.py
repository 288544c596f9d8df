import pytest

from raffle.errors import PayoutFailed
from raffle.payments import PaymentLedger


def test_send_credits_recipient(account):
    ledger = PaymentLedger()
    ledger.send(account, 500)
    ledger.send(account.lower(), 250)

    assert ledger.balance_of(account) == 750
    assert ledger.total_paid_out == 750
    assert ledger.get_status() == {"accounts": 1, "total_paid_out": 750}


def test_fund_adds_to_balance(account):
    ledger = PaymentLedger()
    assert ledger.fund(account, 10) == 10
    assert ledger.fund(account, 5) == 15
    assert ledger.total_paid_out == 0
    with pytest.raises(ValueError):
        ledger.fund(account, -1)


def test_rejecting_recipient(accounts):
    ledger = PaymentLedger()
    ledger.reject_payments_to(accounts[0])

    with pytest.raises(PayoutFailed) as excinfo:
        ledger.send(accounts[0], 100)

    assert excinfo.value.recipient == accounts[0]
    assert excinfo.value.amount == 100
    assert ledger.balance_of(accounts[0]) == 0
    ledger.send(accounts[1], 100)
    assert ledger.balance_of(accounts[1]) == 100

    ledger.accept_payments_to(accounts[0])
    ledger.send(accounts[0], 100)
    assert ledger.balance_of(accounts[0]) == 100


def test_invalid_address_raises():
    with pytest.raises(ValueError):
        PaymentLedger().balance_of("0x1234")
