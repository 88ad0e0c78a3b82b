"""Transaction engine: the only code path that changes account balances.

Every mutation runs through ``atomic``: the accounts involved are locked in a
fixed order, the caller stages balance changes and log rows with the
``stage_*`` helpers, and a single commit makes them durable together.
"""

import logging
import threading
import time
import uuid
import zlib
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import models
from .config import settings
from .errors import ConcurrencyConflict, InsufficientBalance, InvalidAmount, InvalidTransition, NotFound, ValidationError

logger = logging.getLogger("coinledger.ledger")

T = TypeVar("T")

_LOCK_STRIPES = 256
_account_locks = [threading.RLock() for _ in range(_LOCK_STRIPES)]

_TRANSIENT_DB_MARKERS = ("database is locked", "deadlock", "could not serialize", "lock timeout")


class _AccountRace(Exception):
    """Another writer created the same account first."""


def _stripe(user_id: str) -> int:
    return zlib.crc32(user_id.encode("utf-8")) % _LOCK_STRIPES


@contextmanager
def account_guard(user_ids: list[str]) -> Iterator[None]:
    acquired: list[int] = []
    try:
        for index in sorted({_stripe(user_id) for user_id in user_ids}):
            if not _account_locks[index].acquire(timeout=settings.ledger_lock_timeout_seconds):
                logger.warning("Account lock timeout | user_ids=%s", ",".join(user_ids))
                raise ConcurrencyConflict(details={"user_ids": user_ids})
            acquired.append(index)
        yield
    finally:
        for index in reversed(acquired):
            _account_locks[index].release()


def _is_transient(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TRANSIENT_DB_MARKERS)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(details={"amount": amount})


def _check_type(tx_type: str) -> None:
    if tx_type not in models.TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {tx_type}")


def _lock_account(db: Session, user_id: str) -> models.Account:
    account = db.execute(
        select(models.Account)
        .where(models.Account.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if account is not None:
        return account

    now = models.utcnow()
    account = models.Account(user_id=user_id, balance=0, held_amount=0, created_at=now, updated_at=now)
    db.add(account)
    try:
        db.flush()
    except IntegrityError as exc:
        raise _AccountRace(user_id) from exc
    return account


def atomic(db: Session, user_ids: Iterable[str], operation: Callable[[dict[str, models.Account]], T]) -> T:
    """Run ``operation`` with the given accounts locked and commit its result.

    Stale versions and lock contention are retried with exponential backoff;
    once the budget is spent the caller gets ``ConcurrencyConflict``. Any other
    error rolls the whole operation back and propagates unchanged.
    """
    ids = sorted({str(user_id) for user_id in user_ids})
    with account_guard(ids):
        for attempt in range(1, settings.ledger_max_retries + 1):
            try:
                accounts = {user_id: _lock_account(db, user_id) for user_id in ids}
                result = operation(accounts)
                db.commit()
                return result
            except (StaleDataError, _AccountRace) as exc:
                db.rollback()
                logger.warning(
                    "Ledger write conflict, retrying | user_ids=%s | attempt=%s | err=%s",
                    ",".join(ids),
                    attempt,
                    exc.__class__.__name__,
                )
            except OperationalError as exc:
                db.rollback()
                if not _is_transient(exc):
                    raise
                logger.warning(
                    "Ledger storage busy, retrying | user_ids=%s | attempt=%s",
                    ",".join(ids),
                    attempt,
                )
            except Exception:
                db.rollback()
                raise
            time.sleep(settings.ledger_retry_backoff_seconds * (2 ** (attempt - 1)))

    logger.error("Ledger retries exhausted | user_ids=%s", ",".join(ids))
    raise ConcurrencyConflict(details={"user_ids": ids})


def _append(
    db: Session,
    account: models.Account,
    *,
    tx_type: str,
    direction: str,
    amount: int,
    status: str,
    related_entity_id: str | None = None,
    amount_inr: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> models.LedgerTransaction:
    now = models.utcnow()
    completed = status == models.TX_STATUS_COMPLETED
    entry = models.LedgerTransaction(
        id=uuid.uuid4(),
        user_id=account.user_id,
        type=tx_type,
        direction=direction,
        amount_coins=amount,
        amount_inr=amount_inr,
        related_entity_id=related_entity_id,
        status=status,
        balance_after=account.balance if completed else None,
        description=description,
        idempotency_key=idempotency_key,
        created_at=now,
        completed_at=now if completed else None,
    )
    db.add(entry)
    return entry


def stage_credit(
    db: Session,
    account: models.Account,
    *,
    amount: int,
    tx_type: str,
    related_entity_id: str | None = None,
    amount_inr: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> models.LedgerTransaction:
    _check_amount(amount)
    _check_type(tx_type)
    account.balance += amount
    account.updated_at = models.utcnow()
    return _append(
        db,
        account,
        tx_type=tx_type,
        direction=models.DIRECTION_CREDIT,
        amount=amount,
        status=models.TX_STATUS_COMPLETED,
        related_entity_id=related_entity_id,
        amount_inr=amount_inr,
        description=description,
        idempotency_key=idempotency_key,
    )


def stage_debit(
    db: Session,
    account: models.Account,
    *,
    amount: int,
    tx_type: str,
    related_entity_id: str | None = None,
    amount_inr: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> models.LedgerTransaction:
    _check_amount(amount)
    _check_type(tx_type)
    if account.balance < amount:
        raise InsufficientBalance(details={"balance": account.balance, "required": amount})
    account.balance -= amount
    account.updated_at = models.utcnow()
    return _append(
        db,
        account,
        tx_type=tx_type,
        direction=models.DIRECTION_DEBIT,
        amount=amount,
        status=models.TX_STATUS_COMPLETED,
        related_entity_id=related_entity_id,
        amount_inr=amount_inr,
        description=description,
        idempotency_key=idempotency_key,
    )


def stage_pending_credit(
    db: Session,
    account: models.Account,
    *,
    amount: int,
    tx_type: str,
    related_entity_id: str | None = None,
    description: str | None = None,
) -> models.LedgerTransaction:
    """Record a credit that is not liquid yet; the balance is untouched."""
    _check_amount(amount)
    _check_type(tx_type)
    return _append(
        db,
        account,
        tx_type=tx_type,
        direction=models.DIRECTION_CREDIT,
        amount=amount,
        status=models.TX_STATUS_PENDING,
        related_entity_id=related_entity_id,
        description=description,
    )


def stage_complete_pending(
    db: Session,
    account: models.Account,
    entry: models.LedgerTransaction,
) -> models.LedgerTransaction:
    if entry.user_id != account.user_id:
        raise ValidationError("Transaction belongs to another account", details={"transaction_id": str(entry.id)})
    if entry.status != models.TX_STATUS_PENDING or entry.direction != models.DIRECTION_CREDIT:
        raise InvalidTransition(
            "Only pending credits can be completed",
            details={"transaction_id": str(entry.id), "status": entry.status},
        )
    now = models.utcnow()
    account.balance += entry.amount_coins
    account.updated_at = now
    entry.status = models.TX_STATUS_COMPLETED
    entry.balance_after = account.balance
    entry.completed_at = now
    return entry


def stage_hold(
    db: Session,
    account: models.Account,
    *,
    amount: int,
    related_entity_id: str | None = None,
) -> models.LedgerHold:
    _check_amount(amount)
    if account.balance < amount:
        raise InsufficientBalance(details={"balance": account.balance, "required": amount})
    now = models.utcnow()
    account.balance -= amount
    account.held_amount += amount
    account.updated_at = now
    hold = models.LedgerHold(
        id=uuid.uuid4(),
        user_id=account.user_id,
        amount=amount,
        related_entity_id=related_entity_id,
        status=models.HOLD_STATUS_ACTIVE,
        created_at=now,
    )
    db.add(hold)
    return hold


def _require_active(hold: models.LedgerHold, account: models.Account) -> None:
    if hold.user_id != account.user_id:
        raise ValidationError("Hold belongs to another account", details={"hold_id": str(hold.id)})
    if hold.status != models.HOLD_STATUS_ACTIVE:
        raise InvalidTransition("Hold is no longer active", details={"hold_id": str(hold.id), "status": hold.status})


def stage_release(db: Session, account: models.Account, hold: models.LedgerHold) -> models.LedgerHold:
    _require_active(hold, account)
    now = models.utcnow()
    account.held_amount -= hold.amount
    account.balance += hold.amount
    account.updated_at = now
    hold.status = models.HOLD_STATUS_RELEASED
    hold.released_at = now
    return hold


def stage_settle(
    db: Session,
    account: models.Account,
    hold: models.LedgerHold,
    *,
    amount_inr: int | None = None,
    related_entity_id: str | None = None,
    description: str | None = None,
) -> models.LedgerTransaction:
    _require_active(hold, account)
    now = models.utcnow()
    account.held_amount -= hold.amount
    account.updated_at = now
    hold.status = models.HOLD_STATUS_SETTLED
    hold.settled_at = now
    return _append(
        db,
        account,
        tx_type=models.TX_WITHDRAWAL,
        direction=models.DIRECTION_DEBIT,
        amount=hold.amount,
        status=models.TX_STATUS_COMPLETED,
        related_entity_id=related_entity_id or hold.related_entity_id,
        amount_inr=amount_inr,
        description=description,
    )


def lock_hold(db: Session, hold_id: uuid.UUID) -> models.LedgerHold:
    hold = db.execute(
        select(models.LedgerHold)
        .where(models.LedgerHold.id == hold_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if hold is None:
        raise NotFound("Hold not found", details={"hold_id": str(hold_id)})
    return hold


def _find_by_idempotency_key(db: Session, user_id: str, key: str) -> models.LedgerTransaction | None:
    return (
        db.query(models.LedgerTransaction)
        .filter(
            models.LedgerTransaction.user_id == user_id,
            models.LedgerTransaction.idempotency_key == key,
        )
        .first()
    )


def credit(
    db: Session,
    *,
    user_id: str,
    amount: int,
    tx_type: str,
    related_entity_id: str | None = None,
    amount_inr: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> models.LedgerTransaction:
    _check_amount(amount)
    _check_type(tx_type)

    def operation(accounts: dict[str, models.Account]) -> models.LedgerTransaction:
        if idempotency_key:
            existing = _find_by_idempotency_key(db, user_id, idempotency_key)
            if existing is not None:
                return existing
        return stage_credit(
            db,
            accounts[user_id],
            amount=amount,
            tx_type=tx_type,
            related_entity_id=related_entity_id,
            amount_inr=amount_inr,
            description=description,
            idempotency_key=idempotency_key,
        )

    entry = atomic(db, [user_id], operation)
    logger.info(
        "Ledger credit | user_id=%s | type=%s | amount=%s | tx_id=%s",
        user_id,
        tx_type,
        amount,
        entry.id,
    )
    return entry


def debit(
    db: Session,
    *,
    user_id: str,
    amount: int,
    tx_type: str,
    related_entity_id: str | None = None,
    amount_inr: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> models.LedgerTransaction:
    _check_amount(amount)
    _check_type(tx_type)

    def operation(accounts: dict[str, models.Account]) -> models.LedgerTransaction:
        if idempotency_key:
            existing = _find_by_idempotency_key(db, user_id, idempotency_key)
            if existing is not None:
                return existing
        return stage_debit(
            db,
            accounts[user_id],
            amount=amount,
            tx_type=tx_type,
            related_entity_id=related_entity_id,
            amount_inr=amount_inr,
            description=description,
            idempotency_key=idempotency_key,
        )

    entry = atomic(db, [user_id], operation)
    logger.info(
        "Ledger debit | user_id=%s | type=%s | amount=%s | tx_id=%s",
        user_id,
        tx_type,
        amount,
        entry.id,
    )
    return entry


def hold(db: Session, *, user_id: str, amount: int, related_entity_id: str | None = None) -> models.LedgerHold:
    _check_amount(amount)
    placed = atomic(
        db,
        [user_id],
        lambda accounts: stage_hold(db, accounts[user_id], amount=amount, related_entity_id=related_entity_id),
    )
    logger.info("Ledger hold | user_id=%s | amount=%s | hold_id=%s", user_id, amount, placed.id)
    return placed


def _hold_owner(db: Session, hold_id: uuid.UUID) -> str:
    existing = db.get(models.LedgerHold, hold_id)
    if existing is None:
        raise NotFound("Hold not found", details={"hold_id": str(hold_id)})
    return existing.user_id


def release_hold(db: Session, *, hold_id: uuid.UUID) -> models.LedgerHold:
    user_id = _hold_owner(db, hold_id)
    released = atomic(
        db,
        [user_id],
        lambda accounts: stage_release(db, accounts[user_id], lock_hold(db, hold_id)),
    )
    logger.info("Ledger hold released | user_id=%s | hold_id=%s", user_id, hold_id)
    return released


def settle_hold(
    db: Session,
    *,
    hold_id: uuid.UUID,
    amount_inr: int | None = None,
    related_entity_id: str | None = None,
) -> models.LedgerTransaction:
    user_id = _hold_owner(db, hold_id)
    entry = atomic(
        db,
        [user_id],
        lambda accounts: stage_settle(
            db,
            accounts[user_id],
            lock_hold(db, hold_id),
            amount_inr=amount_inr,
            related_entity_id=related_entity_id,
        ),
    )
    logger.info("Ledger hold settled | user_id=%s | hold_id=%s | tx_id=%s", user_id, hold_id, entry.id)
    return entry


def get_account(db: Session, user_id: str) -> models.Account | None:
    return db.get(models.Account, user_id)


def _transactions_query(
    db: Session,
    *,
    user_id: str | None = None,
    tx_type: str | None = None,
    direction: str | None = None,
    status: str | None = None,
):
    query = db.query(models.LedgerTransaction)
    if user_id:
        query = query.filter(models.LedgerTransaction.user_id == user_id)
    if tx_type:
        query = query.filter(models.LedgerTransaction.type == tx_type)
    if direction:
        query = query.filter(models.LedgerTransaction.direction == direction)
    if status:
        query = query.filter(models.LedgerTransaction.status == status)
    return query


def list_transactions(
    db: Session,
    *,
    limit: int = 50,
    offset: int = 0,
    **filters,
) -> list[models.LedgerTransaction]:
    return (
        _transactions_query(db, **filters)
        .order_by(models.LedgerTransaction.created_at.desc(), models.LedgerTransaction.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_transactions(db: Session, **filters) -> int:
    return _transactions_query(db, **filters).count()
