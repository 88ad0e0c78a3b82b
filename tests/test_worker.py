import asyncio
from datetime import timedelta

from coinledger import ledger, models, withdrawals
from coinledger.worker import WorkerSettings, task_expire_stale_withdrawals


def test_expiry_task_cancels_stale_requests(db_session, default_slabs, fund):
    fund("host", 2000)
    stale = withdrawals.create(
        db_session,
        user_id="host",
        coins_requested=1000,
        payout_method="UPI",
        payout_details={"upi_id": "host@okhdfc"},
    )
    stale.created_at = models.utcnow() - timedelta(hours=100)
    db_session.commit()

    result = asyncio.run(task_expire_stale_withdrawals({}, older_than_hours=48))

    assert result == {"expired": 1, "older_than_hours": 48}
    db_session.expire_all()
    assert withdrawals.get_request(db_session, stale.id).status == models.WITHDRAWAL_CANCELLED
    assert ledger.get_account(db_session, "host").held_amount == 0


def test_expiry_task_without_stale_requests_is_a_no_op():
    result = asyncio.run(task_expire_stale_withdrawals({}))

    assert result["expired"] == 0


def test_worker_registers_expiry_cron():
    assert task_expire_stale_withdrawals in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1
