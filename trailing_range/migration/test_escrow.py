import pytest

from trailing_range.core.errors import InvariantViolation, ValidationError
from trailing_range.migration.escrow import BalanceBook, EscrowBook, EscrowState

OWNER = "0x4444444444444444444444444444444444444444"
PAIR = "USDC/WETH"


@pytest.fixture
def escrow():
    balances = BalanceBook()
    balances.credit(OWNER, PAIR, 100, 50)
    return EscrowBook(balances)


def test_hold_debits_balance(escrow):
    entry = escrow.hold("0xaa", OWNER, PAIR, 60, 20)
    assert entry.state is EscrowState.HELD
    assert escrow.balances.balance_of(OWNER, PAIR) == (40, 30)
    assert escrow.held_totals() == (60, 20)


def test_hold_more_than_balance(escrow):
    with pytest.raises(ValidationError):
        escrow.hold("0xaa", OWNER, PAIR, 101, 0)
    assert escrow.get("0xaa") is None
    assert escrow.balances.balance_of(OWNER, PAIR) == (100, 50)


def test_refund_returns_funds_once(escrow):
    escrow.hold("0xaa", OWNER, PAIR, 60, 20)
    escrow.refund("0xaa")
    assert escrow.balances.balance_of(OWNER, PAIR) == (100, 50)
    with pytest.raises(InvariantViolation):
        escrow.refund("0xaa")
    with pytest.raises(InvariantViolation):
        escrow.forward("0xaa")
    assert escrow.balances.balance_of(OWNER, PAIR) == (100, 50)


def test_forward_settles_without_refund(escrow):
    escrow.hold("0xaa", OWNER, PAIR, 60, 20)
    entry = escrow.forward("0xaa")
    assert entry.state is EscrowState.FORWARDED
    assert (escrow.forwarded0, escrow.forwarded1) == (60, 20)
    assert escrow.held_totals() == (0, 0)
    with pytest.raises(InvariantViolation):
        escrow.refund("0xaa")


def test_duplicate_hold_rejected(escrow):
    escrow.hold("0xaa", OWNER, PAIR, 10, 10)
    with pytest.raises(InvariantViolation):
        escrow.hold("0xaa", OWNER, PAIR, 10, 10)
    assert escrow.balances.balance_of(OWNER, PAIR) == (90, 40)


def test_settle_unknown_entry(escrow):
    with pytest.raises(InvariantViolation):
        escrow.forward("0xmissing")


def test_negative_credit_rejected():
    with pytest.raises(ValidationError):
        BalanceBook().credit(OWNER, PAIR, -1, 0)
