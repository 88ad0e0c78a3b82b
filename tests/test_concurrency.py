from concurrent.futures import ThreadPoolExecutor
import threading

import pytest
from sqlalchemy.orm import sessionmaker

from coinledger import ledger, models
from coinledger.config import settings
from coinledger.database import Base, build_engine
from coinledger.errors import ConcurrencyConflict, InsufficientBalance


@pytest.fixture()
def file_sessions(tmp_path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()


def _run_parallel(factory, count: int, action):
    barrier = threading.Barrier(count)

    def worker(index: int):
        db = factory()
        try:
            barrier.wait()
            action(db, index)
            return "ok"
        except InsufficientBalance:
            return "insufficient"
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


def test_concurrent_debits_never_overdraw(file_sessions):
    with file_sessions() as db:
        ledger.credit(db, user_id="shared", amount=1000, tx_type=models.TX_PURCHASE)

    results = _run_parallel(
        file_sessions,
        16,
        lambda db, _: ledger.debit(db, user_id="shared", amount=150, tx_type=models.TX_MESSAGE_SPENT),
    )

    assert results.count("ok") == 6
    assert results.count("insufficient") == 10
    with file_sessions() as db:
        account = ledger.get_account(db, "shared")
        assert account.balance == 100
        assert ledger.count_transactions(db, user_id="shared", tx_type=models.TX_MESSAGE_SPENT) == 6


def test_concurrent_holds_and_debits_share_one_balance(file_sessions):
    with file_sessions() as db:
        ledger.credit(db, user_id="shared", amount=1000, tx_type=models.TX_PURCHASE)

    def mixed(db, index: int):
        if index % 2:
            ledger.hold(db, user_id="shared", amount=300)
        else:
            ledger.debit(db, user_id="shared", amount=300, tx_type=models.TX_MESSAGE_SPENT)

    results = _run_parallel(file_sessions, 10, mixed)

    assert results.count("ok") == 3
    with file_sessions() as db:
        account = ledger.get_account(db, "shared")
        holds = db.query(models.LedgerHold).filter(models.LedgerHold.user_id == "shared").count()
        debits = ledger.count_transactions(db, user_id="shared", tx_type=models.TX_MESSAGE_SPENT)
        assert holds + debits == 3
        assert account.balance == 100
        assert account.held_amount == 300 * holds


def test_concurrent_credits_to_new_account_all_land(file_sessions):
    results = _run_parallel(
        file_sessions,
        12,
        lambda db, index: ledger.credit(db, user_id="fresh", amount=10, tx_type=models.TX_MESSAGE_EARNED),
    )

    assert results == ["ok"] * 12
    with file_sessions() as db:
        assert ledger.get_account(db, "fresh").balance == 120


def test_lock_timeout_raises_concurrency_conflict(file_sessions, monkeypatch):
    monkeypatch.setattr(settings, "ledger_lock_timeout_seconds", 0.05)
    holding = threading.Event()
    release = threading.Event()

    def occupy():
        with ledger.account_guard(["busy"]):
            holding.set()
            release.wait(timeout=5)

    occupant = threading.Thread(target=occupy)
    occupant.start()
    try:
        assert holding.wait(timeout=5)
        with file_sessions() as db:
            with pytest.raises(ConcurrencyConflict):
                ledger.credit(db, user_id="busy", amount=5, tx_type=models.TX_ADJUSTMENT)
            assert ledger.get_account(db, "busy") is None
    finally:
        release.set()
        occupant.join()
