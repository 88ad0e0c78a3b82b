"""Withdrawal requests and their approval state machine.

pending -> approved -> paid
pending -> rejected
pending -> cancelled (owner cancel or expiry)

Coins are held on creation, released on rejection/cancellation and settled on
payout. Every transition writes its audit row in the same commit as the state
change and the ledger effect.
"""

from collections.abc import Callable
from datetime import timedelta
import logging
import re
from typing import Any
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import audit, catalog, ledger, models, slabs
from .config import settings
from .errors import (
    AboveMaximum,
    BelowMinimum,
    ConcurrencyConflict,
    InvalidAmount,
    InvalidTransition,
    LimitExceeded,
    NotFound,
    ValidationError,
)

logger = logging.getLogger("coinledger.withdrawals")

UPI_ID_RE = re.compile(r"^[A-Za-z0-9._-]{2,256}@[A-Za-z][A-Za-z0-9]{1,63}$")
IFSC_RE = re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{9,18}$")

# Statuses that count towards the daily/weekly withdrawal limits.
LIMITED_STATUSES = (models.WITHDRAWAL_PENDING, models.WITHDRAWAL_APPROVED, models.WITHDRAWAL_PAID)


def validate_payout_details(payout_method: str, payout_details: dict[str, Any]) -> dict[str, str]:
    """Normalize and format-check the destination for a payout method."""
    if payout_method not in models.PAYOUT_METHODS:
        raise ValidationError("Unknown payout method", details={"payout_method": payout_method})
    details = {key: str(value).strip() for key, value in (payout_details or {}).items() if value is not None}

    if payout_method == "UPI":
        upi_id = details.get("upi_id", "")
        if not UPI_ID_RE.match(upi_id):
            raise ValidationError("Invalid UPI id", details={"field": "upi_id"})
        return {"upi_id": upi_id}

    holder = details.get("account_holder_name", "")
    account_number = details.get("account_number", "").replace(" ", "")
    ifsc_code = details.get("ifsc_code", "").upper()
    if not holder:
        raise ValidationError("Account holder name is required", details={"field": "account_holder_name"})
    if not ACCOUNT_NUMBER_RE.match(account_number):
        raise ValidationError("Bank account number must be 9-18 digits", details={"field": "account_number"})
    if not IFSC_RE.match(ifsc_code):
        raise ValidationError("Invalid IFSC code", details={"field": "ifsc_code"})
    normalized = {"account_holder_name": holder, "account_number": account_number, "ifsc_code": ifsc_code}
    if details.get("bank_name"):
        normalized["bank_name"] = details["bank_name"]
    return normalized


def compute_payout(coins_requested: int, payout_percentage: int, processing_fee: int) -> tuple[int, int]:
    """Return ``(payout_amount_inr, net_payout_amount_inr)`` using integer arithmetic."""
    payout_amount_inr = coins_requested * payout_percentage // 100
    return payout_amount_inr, max(0, payout_amount_inr - processing_fee)


def _window_total(db: Session, user_id: str, hours: int) -> int:
    since = models.utcnow() - timedelta(hours=hours)
    total = (
        db.query(func.coalesce(func.sum(models.WithdrawalRequest.coins_requested), 0))
        .filter(
            models.WithdrawalRequest.user_id == user_id,
            models.WithdrawalRequest.status.in_(LIMITED_STATUSES),
            models.WithdrawalRequest.created_at >= since,
        )
        .scalar()
    )
    return int(total or 0)


def _check_limits(db: Session, user_id: str, coins_requested: int, config: catalog.EconomyConfig) -> None:
    for window, hours, limit in (
        ("daily", 24, config.withdrawal_daily_limit),
        ("weekly", 24 * 7, config.withdrawal_weekly_limit),
    ):
        used = _window_total(db, user_id, hours)
        if used + coins_requested > limit:
            raise LimitExceeded(
                f"Withdrawal {window} limit exceeded",
                details={"window": window, "limit": limit, "used": used, "requested": coins_requested},
            )


def create(
    db: Session,
    *,
    user_id: str,
    coins_requested: int,
    payout_method: str,
    payout_details: dict[str, Any],
    ip_address: str | None = None,
) -> models.WithdrawalRequest:
    if isinstance(coins_requested, bool) or not isinstance(coins_requested, int) or coins_requested <= 0:
        raise InvalidAmount(details={"coins_requested": coins_requested})
    destination = validate_payout_details(payout_method, payout_details)

    config = catalog.get_economy_settings(db)
    if coins_requested < config.withdrawal_min_amount:
        raise BelowMinimum(details={"minimum": config.withdrawal_min_amount, "requested": coins_requested})
    if coins_requested > config.withdrawal_max_amount:
        raise AboveMaximum(details={"maximum": config.withdrawal_max_amount, "requested": coins_requested})

    slab = slabs.resolve_slab(db, coins_requested)
    payout_amount_inr, net_payout_amount_inr = compute_payout(
        coins_requested,
        slab.payout_percentage,
        config.withdrawal_processing_fee,
    )
    request_id = uuid.uuid4()

    def operation(accounts: dict[str, models.Account]) -> models.WithdrawalRequest:
        _check_limits(db, user_id, coins_requested, config)
        hold = ledger.stage_hold(db, accounts[user_id], amount=coins_requested, related_entity_id=str(request_id))
        now = models.utcnow()
        request = models.WithdrawalRequest(
            id=request_id,
            user_id=user_id,
            coins_requested=coins_requested,
            payout_percentage=slab.payout_percentage,
            payout_amount_inr=payout_amount_inr,
            processing_fee=config.withdrawal_processing_fee,
            net_payout_amount_inr=net_payout_amount_inr,
            payout_method=payout_method,
            payout_details=destination,
            status=models.WITHDRAWAL_PENDING,
            hold=hold,
            created_at=now,
            updated_at=now,
        )
        db.add(request)
        audit.record(
            db,
            actor_id=user_id,
            actor_type=models.ACTOR_USER,
            action="withdrawal_requested",
            target_type="withdrawal",
            target_id=str(request_id),
            details={
                "coins_requested": coins_requested,
                "payout_percentage": slab.payout_percentage,
                "payout_amount_inr": payout_amount_inr,
                "net_payout_amount_inr": net_payout_amount_inr,
                "payout_method": payout_method,
            },
            ip_address=ip_address,
        )
        return request

    request = ledger.atomic(db, [user_id], operation)
    logger.info(
        "Withdrawal requested | user_id=%s | request_id=%s | coins=%s | pct=%s | inr=%s",
        user_id,
        request.id,
        coins_requested,
        slab.payout_percentage,
        payout_amount_inr,
    )
    return request


def get_request(db: Session, request_id: uuid.UUID) -> models.WithdrawalRequest:
    request = db.get(models.WithdrawalRequest, request_id)
    if request is None:
        raise NotFound("Withdrawal request not found", details={"request_id": str(request_id)})
    return request


def _lock_request(db: Session, request_id: uuid.UUID) -> models.WithdrawalRequest:
    request = db.execute(
        select(models.WithdrawalRequest)
        .where(models.WithdrawalRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if request is None:
        raise NotFound("Withdrawal request not found", details={"request_id": str(request_id)})
    return request


def _transition(
    db: Session,
    *,
    request_id: uuid.UUID,
    expected: str,
    target: str,
    action: str,
    actor_id: str,
    actor_type: str,
    apply: Callable[[models.WithdrawalRequest, models.Account], dict[str, Any]],
    owner_id: str | None = None,
    ip_address: str | None = None,
) -> models.WithdrawalRequest:
    user_id = get_request(db, request_id).user_id
    if owner_id is not None and owner_id != user_id:
        raise NotFound("Withdrawal request not found", details={"request_id": str(request_id)})

    def operation(accounts: dict[str, models.Account]) -> models.WithdrawalRequest:
        request = _lock_request(db, request_id)
        if request.status != expected:
            raise InvalidTransition(
                f"Cannot move withdrawal from {request.status} to {target}",
                details={"request_id": str(request_id), "status": request.status, "target": target},
            )
        extra = apply(request, accounts[request.user_id])
        request.status = target
        request.updated_at = models.utcnow()
        audit.record(
            db,
            actor_id=actor_id,
            actor_type=actor_type,
            action=action,
            target_type="withdrawal",
            target_id=str(request.id),
            details={"from": expected, "to": target, "coins_requested": request.coins_requested, **extra},
            ip_address=ip_address,
        )
        return request

    request = ledger.atomic(db, [user_id], operation)
    logger.info(
        "Withdrawal %s | request_id=%s | user_id=%s | actor=%s:%s",
        target,
        request.id,
        request.user_id,
        actor_type,
        actor_id,
    )
    return request


def approve(db: Session, *, request_id: uuid.UUID, admin_id: str, ip_address: str | None = None) -> models.WithdrawalRequest:
    def apply(request: models.WithdrawalRequest, account: models.Account) -> dict[str, Any]:
        request.reviewed_by = admin_id
        request.reviewed_at = models.utcnow()
        return {}

    return _transition(
        db,
        request_id=request_id,
        expected=models.WITHDRAWAL_PENDING,
        target=models.WITHDRAWAL_APPROVED,
        action="withdrawal_approved",
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        apply=apply,
        ip_address=ip_address,
    )


def reject(
    db: Session,
    *,
    request_id: uuid.UUID,
    admin_id: str,
    reason: str,
    ip_address: str | None = None,
) -> models.WithdrawalRequest:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"field": "reason"})

    def apply(request: models.WithdrawalRequest, account: models.Account) -> dict[str, Any]:
        ledger.stage_release(db, account, ledger.lock_hold(db, request.hold_id))
        request.reviewed_by = admin_id
        request.reviewed_at = models.utcnow()
        request.review_notes = reason
        return {"reason": reason}

    return _transition(
        db,
        request_id=request_id,
        expected=models.WITHDRAWAL_PENDING,
        target=models.WITHDRAWAL_REJECTED,
        action="withdrawal_rejected",
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        apply=apply,
        ip_address=ip_address,
    )


def mark_paid(
    db: Session,
    *,
    request_id: uuid.UUID,
    admin_id: str,
    payment_reference: str | None = None,
    ip_address: str | None = None,
) -> models.WithdrawalRequest:
    def apply(request: models.WithdrawalRequest, account: models.Account) -> dict[str, Any]:
        entry = ledger.stage_settle(
            db,
            account,
            ledger.lock_hold(db, request.hold_id),
            amount_inr=request.net_payout_amount_inr,
            related_entity_id=str(request.id),
            description=f"Withdrawal payout via {request.payout_method}",
        )
        request.transaction = entry
        request.paid_at = models.utcnow()
        request.payment_reference = payment_reference
        return {
            "transaction_id": str(entry.id),
            "net_payout_amount_inr": request.net_payout_amount_inr,
            "payment_reference": payment_reference,
        }

    return _transition(
        db,
        request_id=request_id,
        expected=models.WITHDRAWAL_APPROVED,
        target=models.WITHDRAWAL_PAID,
        action="withdrawal_paid",
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        apply=apply,
        ip_address=ip_address,
    )


def cancel(
    db: Session,
    *,
    request_id: uuid.UUID,
    user_id: str,
    ip_address: str | None = None,
) -> models.WithdrawalRequest:
    def apply(request: models.WithdrawalRequest, account: models.Account) -> dict[str, Any]:
        ledger.stage_release(db, account, ledger.lock_hold(db, request.hold_id))
        request.review_notes = "Cancelled by user"
        return {}

    return _transition(
        db,
        request_id=request_id,
        expected=models.WITHDRAWAL_PENDING,
        target=models.WITHDRAWAL_CANCELLED,
        action="withdrawal_cancelled",
        actor_id=user_id,
        actor_type=models.ACTOR_USER,
        apply=apply,
        owner_id=user_id,
        ip_address=ip_address,
    )


def expire_stale(db: Session, *, older_than_hours: int | None = None) -> int:
    """Cancel pending requests older than the cutoff and return how many were expired."""
    hours = settings.withdrawal_expiry_hours if older_than_hours is None else older_than_hours
    cutoff = models.utcnow() - timedelta(hours=hours)
    stale_ids = [
        row.id
        for row in db.query(models.WithdrawalRequest.id)
        .filter(
            models.WithdrawalRequest.status == models.WITHDRAWAL_PENDING,
            models.WithdrawalRequest.created_at < cutoff,
        )
        .order_by(models.WithdrawalRequest.created_at)
        .all()
    ]

    def apply(request: models.WithdrawalRequest, account: models.Account) -> dict[str, Any]:
        ledger.stage_release(db, account, ledger.lock_hold(db, request.hold_id))
        request.review_notes = f"Expired after {hours}h without review"
        return {"older_than_hours": hours}

    expired = 0
    for request_id in stale_ids:
        try:
            _transition(
                db,
                request_id=request_id,
                expected=models.WITHDRAWAL_PENDING,
                target=models.WITHDRAWAL_CANCELLED,
                action="withdrawal_expired",
                actor_id="system",
                actor_type=models.ACTOR_SYSTEM,
                apply=apply,
            )
        except InvalidTransition:
            # Reviewed between the scan and the lock.
            continue
        except ConcurrencyConflict:
            logger.warning("Withdrawal expiry deferred, account busy | request_id=%s", request_id)
            continue
        expired += 1

    if stale_ids:
        logger.info("Stale withdrawals expired | expired=%s | scanned=%s | hours=%s", expired, len(stale_ids), hours)
    return expired


def _filtered(db: Session, *, user_id: str | None = None, status: str | None = None):
    query = db.query(models.WithdrawalRequest)
    if user_id:
        query = query.filter(models.WithdrawalRequest.user_id == user_id)
    if status:
        query = query.filter(models.WithdrawalRequest.status == status)
    return query


def list_requests(
    db: Session,
    *,
    user_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[models.WithdrawalRequest]:
    return (
        _filtered(db, user_id=user_id, status=status)
        .order_by(models.WithdrawalRequest.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_requests(db: Session, *, user_id: str | None = None, status: str | None = None) -> int:
    return _filtered(db, user_id=user_id, status=status).count()
