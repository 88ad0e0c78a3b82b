import random

import pytest
from sqlalchemy.orm.exc import StaleDataError

from coinledger import ledger, models
from coinledger.config import settings
from coinledger.errors import ConcurrencyConflict, InsufficientBalance, InvalidAmount, InvalidTransition


def _balances(db, user_id: str) -> tuple[int, int]:
    db.expire_all()
    account = ledger.get_account(db, user_id)
    if account is None:
        return 0, 0
    return account.balance, account.held_amount


def test_credit_appends_completed_transaction(db_session):
    entry = ledger.credit(db_session, user_id="u1", amount=150, tx_type=models.TX_PURCHASE, amount_inr=99)

    assert entry.status == models.TX_STATUS_COMPLETED
    assert entry.direction == models.DIRECTION_CREDIT
    assert entry.amount_coins == 150
    assert entry.amount_inr == 99
    assert entry.balance_after == 150
    assert _balances(db_session, "u1") == (150, 0)


@pytest.mark.parametrize("amount", [0, -5])
def test_credit_rejects_non_positive_amount(db_session, amount):
    with pytest.raises(InvalidAmount):
        ledger.credit(db_session, user_id="u1", amount=amount, tx_type=models.TX_ADJUSTMENT)
    assert ledger.count_transactions(db_session, user_id="u1") == 0


def test_debit_insufficient_balance_leaves_no_trace(db_session, fund):
    fund("u1", 40)

    with pytest.raises(InsufficientBalance) as exc_info:
        ledger.debit(db_session, user_id="u1", amount=50, tx_type=models.TX_MESSAGE_SPENT)

    assert exc_info.value.details == {"balance": 40, "required": 50}
    assert _balances(db_session, "u1") == (40, 0)
    assert ledger.count_transactions(db_session, user_id="u1") == 1


def test_debit_then_credit_restores_balance(db_session, fund):
    fund("u1", 500)

    ledger.debit(db_session, user_id="u1", amount=123, tx_type=models.TX_MESSAGE_SPENT)
    ledger.credit(db_session, user_id="u1", amount=123, tx_type=models.TX_ADJUSTMENT)

    assert _balances(db_session, "u1") == (500, 0)
    assert ledger.count_transactions(db_session, user_id="u1") == 3


def test_idempotency_key_returns_original_transaction(db_session):
    first = ledger.credit(db_session, user_id="u1", amount=100, tx_type=models.TX_PURCHASE, idempotency_key="pay-1")
    second = ledger.credit(db_session, user_id="u1", amount=100, tx_type=models.TX_PURCHASE, idempotency_key="pay-1")

    assert first.id == second.id
    assert _balances(db_session, "u1") == (100, 0)
    assert ledger.count_transactions(db_session, user_id="u1") == 1


def test_hold_release_round_trip(db_session, fund):
    fund("u1", 1000)

    hold = ledger.hold(db_session, user_id="u1", amount=600)
    assert _balances(db_session, "u1") == (400, 600)

    released = ledger.release_hold(db_session, hold_id=hold.id)
    assert released.status == models.HOLD_STATUS_RELEASED
    assert _balances(db_session, "u1") == (1000, 0)

    with pytest.raises(InvalidTransition):
        ledger.settle_hold(db_session, hold_id=hold.id)
    assert _balances(db_session, "u1") == (1000, 0)


def test_settle_hold_records_single_withdrawal(db_session, fund):
    fund("u1", 1000)
    hold = ledger.hold(db_session, user_id="u1", amount=700)

    entry = ledger.settle_hold(db_session, hold_id=hold.id, amount_inr=420)

    assert entry.type == models.TX_WITHDRAWAL
    assert entry.direction == models.DIRECTION_DEBIT
    assert entry.amount_coins == 700
    assert entry.amount_inr == 420
    assert _balances(db_session, "u1") == (300, 0)

    with pytest.raises(InvalidTransition):
        ledger.settle_hold(db_session, hold_id=hold.id)
    with pytest.raises(InvalidTransition):
        ledger.release_hold(db_session, hold_id=hold.id)
    assert ledger.count_transactions(db_session, user_id="u1", tx_type=models.TX_WITHDRAWAL) == 1
    assert _balances(db_session, "u1") == (300, 0)


def test_hold_more_than_balance_fails(db_session, fund):
    fund("u1", 100)
    with pytest.raises(InsufficientBalance):
        ledger.hold(db_session, user_id="u1", amount=101)
    assert _balances(db_session, "u1") == (100, 0)


def test_atomic_rolls_back_every_staged_change(db_session, fund):
    fund("a", 100)
    fund("b", 10)

    def transfer_too_much(accounts):
        ledger.stage_credit(db_session, accounts["b"], amount=500, tx_type=models.TX_ADJUSTMENT)
        ledger.stage_debit(db_session, accounts["a"], amount=500, tx_type=models.TX_ADJUSTMENT)

    with pytest.raises(InsufficientBalance):
        ledger.atomic(db_session, ["a", "b"], transfer_too_much)

    assert _balances(db_session, "a") == (100, 0)
    assert _balances(db_session, "b") == (10, 0)
    assert ledger.count_transactions(db_session) == 2


def test_atomic_retries_stale_version_then_succeeds(db_session, fund):
    fund("u1", 100)
    attempts = []

    def flaky(accounts):
        attempts.append(1)
        if len(attempts) == 1:
            raise StaleDataError("version mismatch")
        return ledger.stage_debit(db_session, accounts["u1"], amount=30, tx_type=models.TX_ADJUSTMENT)

    ledger.atomic(db_session, ["u1"], flaky)

    assert len(attempts) == 2
    assert _balances(db_session, "u1") == (70, 0)


def test_atomic_gives_up_with_concurrency_conflict(db_session, fund, monkeypatch):
    monkeypatch.setattr(settings, "ledger_max_retries", 3)
    fund("u1", 100)
    attempts = []

    def always_stale(accounts):
        attempts.append(1)
        accounts["u1"].balance -= 1
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrencyConflict):
        ledger.atomic(db_session, ["u1"], always_stale)

    assert len(attempts) == 3
    assert _balances(db_session, "u1") == (100, 0)


def test_list_transactions_filters_and_orders(db_session, fund):
    fund("u1", 100)
    ledger.debit(db_session, user_id="u1", amount=10, tx_type=models.TX_MESSAGE_SPENT)
    ledger.credit(db_session, user_id="u2", amount=5, tx_type=models.TX_MESSAGE_EARNED)

    debits = ledger.list_transactions(db_session, user_id="u1", direction=models.DIRECTION_DEBIT)
    assert [entry.amount_coins for entry in debits] == [10]
    assert ledger.count_transactions(db_session, user_id="u1") == 2
    assert ledger.count_transactions(db_session, tx_type=models.TX_MESSAGE_EARNED) == 1


def test_random_operation_sequences_keep_invariants(db_session):
    rng = random.Random(20260215)
    users = ["f1", "f2", "f3"]
    expected = {user: [0, 0] for user in users}
    active_holds: dict[str, list] = {user: [] for user in users}

    for _ in range(250):
        user = rng.choice(users)
        op = rng.choice(["credit", "debit", "hold", "release", "settle"])
        amount = rng.randint(1, 400)
        balance = expected[user][0]
        try:
            if op == "credit":
                ledger.credit(db_session, user_id=user, amount=amount, tx_type=models.TX_ADJUSTMENT)
                expected[user][0] += amount
            elif op == "debit":
                ledger.debit(db_session, user_id=user, amount=amount, tx_type=models.TX_ADJUSTMENT)
                expected[user][0] -= amount
            elif op == "hold":
                hold = ledger.hold(db_session, user_id=user, amount=amount)
                active_holds[user].append((hold.id, amount))
                expected[user][0] -= amount
                expected[user][1] += amount
            elif active_holds[user]:
                hold_id, held_amount = active_holds[user].pop(rng.randrange(len(active_holds[user])))
                if op == "release":
                    ledger.release_hold(db_session, hold_id=hold_id)
                    expected[user][0] += held_amount
                else:
                    ledger.settle_hold(db_session, hold_id=hold_id)
                expected[user][1] -= held_amount
        except InsufficientBalance:
            assert op in ("debit", "hold")
            assert amount > balance

        actual_balance, actual_held = _balances(db_session, user)
        assert actual_balance >= 0
        assert actual_held >= 0
        assert [actual_balance, actual_held] == expected[user]
