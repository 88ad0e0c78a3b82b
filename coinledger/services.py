from dataclasses import dataclass
from datetime import timedelta
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit, catalog, ledger, models
from .errors import DuplicatePaymentReference, ValidationError

logger = logging.getLogger("coinledger.economy")


@dataclass
class Transfer:
    debit: models.LedgerTransaction
    credit: models.LedgerTransaction


@dataclass
class GiftDelivery:
    gift: catalog.GiftInfo
    sent: models.LedgerTransaction
    received: models.LedgerTransaction | None


@dataclass
class GiftTrade:
    traded: list[models.LedgerTransaction]
    coins_credited: int
    balance: int


@dataclass
class EarningsSummary:
    total_earned: int
    by_type: dict[str, int]
    last_24h: int
    last_7d: int
    last_30d: int
    pending_gift_value: int
    pending_gift_count: int
    balance: int
    held_amount: int


def _require_distinct(payer_id: str, payee_id: str) -> None:
    if payer_id == payee_id:
        raise ValidationError("Sender and recipient must be different users", details={"user_id": payer_id})


def purchase_plan(
    db: Session,
    *,
    user_id: str,
    plan_id: uuid.UUID,
    payment_reference: str,
    ip_address: str | None = None,
) -> models.LedgerTransaction:
    """Credit a confirmed plan purchase.

    ``payment_reference`` is the gateway confirmation id; replaying it returns
    the original transaction instead of crediting twice.
    A reference already credited to a different user is refused with
    ``DuplicatePaymentReference``.
    """
    reference = (payment_reference or "").strip()
    if not reference:
        raise ValidationError("payment_reference is required", details={"field": "payment_reference"})
    plan = catalog.get_active_plan(db, plan_id)
    key = f"purchase:{reference}"

    def find_existing() -> models.LedgerTransaction | None:
        existing = (
            db.query(models.LedgerTransaction)
            .filter(
                models.LedgerTransaction.type == models.TX_PURCHASE,
                models.LedgerTransaction.idempotency_key == key,
            )
            .first()
        )
        if existing is not None and existing.user_id != user_id:
            logger.warning(
                "Payment reference reused | user_id=%s | owner_id=%s | tx_id=%s",
                user_id,
                existing.user_id,
                existing.id,
            )
            raise DuplicatePaymentReference(details={"payment_reference": reference})
        return existing

    def operation(accounts: dict[str, models.Account]) -> models.LedgerTransaction:
        existing = find_existing()
        if existing is not None:
            return existing
        entry = ledger.stage_credit(
            db,
            accounts[user_id],
            amount=plan.total_coins,
            tx_type=models.TX_PURCHASE,
            related_entity_id=str(plan.id),
            amount_inr=plan.price_in_inr,
            description=f"{plan.name} ({plan.total_coins} coins)",
            idempotency_key=key,
        )
        audit.record(
            db,
            actor_id=user_id,
            actor_type=models.ACTOR_USER,
            action="coins_purchased",
            target_type="coin_plan",
            target_id=str(plan.id),
            details={
                "coins": plan.total_coins,
                "price_in_inr": plan.price_in_inr,
                "payment_reference": reference,
                "transaction_id": str(entry.id),
            },
            ip_address=ip_address,
        )
        return entry

    try:
        entry = ledger.atomic(db, [user_id], operation)
    except IntegrityError:
        # A concurrent purchase with the same reference committed first.
        entry = find_existing()
        if entry is None:
            raise
        return entry
    logger.info(
        "Coins purchased | user_id=%s | plan_id=%s | coins=%s | inr=%s | tx_id=%s",
        user_id,
        plan.id,
        entry.amount_coins,
        entry.amount_inr,
        entry.id,
    )
    return entry


def _transfer(
    db: Session,
    *,
    payer_id: str,
    payee_id: str,
    amount: int,
    spent_type: str,
    earned_type: str,
    related_entity_id: str,
    idempotency_key: str | None = None,
) -> Transfer:
    _require_distinct(payer_id, payee_id)

    def operation(accounts: dict[str, models.Account]) -> Transfer:
        if idempotency_key:
            previous = (
                db.query(models.LedgerTransaction)
                .filter(models.LedgerTransaction.idempotency_key == idempotency_key)
                .filter(models.LedgerTransaction.user_id.in_([payer_id, payee_id]))
                .all()
            )
            by_user = {row.user_id: row for row in previous}
            if payer_id in by_user and payee_id in by_user:
                return Transfer(debit=by_user[payer_id], credit=by_user[payee_id])
        spent = ledger.stage_debit(
            db,
            accounts[payer_id],
            amount=amount,
            tx_type=spent_type,
            related_entity_id=related_entity_id,
            description=f"Paid to {payee_id}",
            idempotency_key=idempotency_key,
        )
        earned = ledger.stage_credit(
            db,
            accounts[payee_id],
            amount=amount,
            tx_type=earned_type,
            related_entity_id=related_entity_id,
            description=f"Received from {payer_id}",
            idempotency_key=idempotency_key,
        )
        return Transfer(debit=spent, credit=earned)

    return ledger.atomic(db, [payer_id, payee_id], operation)


def charge_message(
    db: Session,
    *,
    sender_id: str,
    recipient_id: str,
    recipient_tier: str,
    chat_id: str,
    message_id: str | None = None,
) -> Transfer:
    cost = catalog.get_message_cost(db, recipient_tier)
    transfer = _transfer(
        db,
        payer_id=sender_id,
        payee_id=recipient_id,
        amount=cost,
        spent_type=models.TX_MESSAGE_SPENT,
        earned_type=models.TX_MESSAGE_EARNED,
        related_entity_id=chat_id,
        idempotency_key=f"message:{chat_id}:{message_id}" if message_id else None,
    )
    logger.info(
        "Message charged | sender_id=%s | recipient_id=%s | tier=%s | cost=%s | chat_id=%s",
        sender_id,
        recipient_id,
        recipient_tier,
        cost,
        chat_id,
    )
    return transfer


def charge_video_call(db: Session, *, caller_id: str, recipient_id: str, call_id: str) -> Transfer:
    cost = catalog.get_video_call_cost(db)
    transfer = _transfer(
        db,
        payer_id=caller_id,
        payee_id=recipient_id,
        amount=cost,
        spent_type=models.TX_VIDEO_CALL_SPENT,
        earned_type=models.TX_VIDEO_CALL_EARNED,
        related_entity_id=call_id,
        idempotency_key=f"video_call:{call_id}",
    )
    logger.info(
        "Video call charged | caller_id=%s | recipient_id=%s | cost=%s | call_id=%s",
        caller_id,
        recipient_id,
        cost,
        call_id,
    )
    return transfer


def send_gift(
    db: Session,
    *,
    sender_id: str,
    recipient_id: str,
    gift_id: uuid.UUID,
    chat_id: str | None = None,
) -> GiftDelivery:
    """Debit the sender and give the recipient a pending, non-withdrawable credit.

    The credit only reaches the recipient's balance once traded. Gifts with a
    zero trade value leave no entry for the recipient.
    """
    _require_distinct(sender_id, recipient_id)
    gift = catalog.get_gift(db, gift_id)
    description = f"Gift: {gift.name}" + (f" | chat {chat_id}" if chat_id else "")

    def operation(accounts: dict[str, models.Account]) -> GiftDelivery:
        sent = ledger.stage_debit(
            db,
            accounts[sender_id],
            amount=gift.cost,
            tx_type=models.TX_GIFT_SENT,
            related_entity_id=gift.id,
            description=f"{description} | to {recipient_id}",
        )
        received = None
        if gift.trade_value > 0:
            received = ledger.stage_pending_credit(
                db,
                accounts[recipient_id],
                amount=gift.trade_value,
                tx_type=models.TX_GIFT_RECEIVED,
                related_entity_id=gift.id,
                description=f"{description} | from {sender_id}",
            )
        return GiftDelivery(gift=gift, sent=sent, received=received)

    delivery = ledger.atomic(db, [sender_id, recipient_id], operation)
    logger.info(
        "Gift sent | sender_id=%s | recipient_id=%s | gift_id=%s | cost=%s | trade_value=%s",
        sender_id,
        recipient_id,
        gift.id,
        gift.cost,
        gift.trade_value,
    )
    return delivery


def list_pending_gifts(db: Session, *, user_id: str) -> list[models.LedgerTransaction]:
    return (
        db.query(models.LedgerTransaction)
        .filter(
            models.LedgerTransaction.user_id == user_id,
            models.LedgerTransaction.type == models.TX_GIFT_RECEIVED,
            models.LedgerTransaction.status == models.TX_STATUS_PENDING,
        )
        .order_by(models.LedgerTransaction.created_at.desc())
        .all()
    )


def trade_gifts(
    db: Session,
    *,
    user_id: str,
    transaction_ids: list[uuid.UUID],
    ip_address: str | None = None,
) -> GiftTrade:
    wanted = list(dict.fromkeys(transaction_ids))
    if not wanted:
        raise ValidationError("No gifts selected", details={"field": "transaction_ids"})

    def operation(accounts: dict[str, models.Account]) -> GiftTrade:
        rows = list(
            db.execute(
                select(models.LedgerTransaction)
                .where(models.LedgerTransaction.id.in_(wanted))
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        tradable = {
            row.id: row
            for row in rows
            if row.user_id == user_id
            and row.type == models.TX_GIFT_RECEIVED
            and row.status == models.TX_STATUS_PENDING
        }
        invalid = [str(tx_id) for tx_id in wanted if tx_id not in tradable]
        if invalid:
            raise ValidationError("Some gifts cannot be traded", details={"transaction_ids": invalid})

        account = accounts[user_id]
        traded = [ledger.stage_complete_pending(db, account, tradable[tx_id]) for tx_id in wanted]
        credited = sum(row.amount_coins for row in traded)
        audit.record(
            db,
            actor_id=user_id,
            actor_type=models.ACTOR_USER,
            action="gifts_traded",
            target_type="account",
            target_id=user_id,
            details={"transaction_ids": [str(tx_id) for tx_id in wanted], "coins": credited},
            ip_address=ip_address,
        )
        return GiftTrade(traded=traded, coins_credited=credited, balance=account.balance)

    result = ledger.atomic(db, [user_id], operation)
    logger.info("Gifts traded | user_id=%s | count=%s | coins=%s", user_id, len(result.traded), result.coins_credited)
    return result


def adjust_balance(
    db: Session,
    *,
    admin_id: str,
    user_id: str,
    amount: int,
    direction: str,
    reason: str,
    ip_address: str | None = None,
) -> models.LedgerTransaction:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("An adjustment reason is required", details={"field": "reason"})
    if direction not in (models.DIRECTION_CREDIT, models.DIRECTION_DEBIT):
        raise ValidationError("Unknown direction", details={"direction": direction})
    stage = ledger.stage_credit if direction == models.DIRECTION_CREDIT else ledger.stage_debit

    def operation(accounts: dict[str, models.Account]) -> models.LedgerTransaction:
        entry = stage(
            db,
            accounts[user_id],
            amount=amount,
            tx_type=models.TX_ADJUSTMENT,
            description=reason,
        )
        audit.record(
            db,
            actor_id=admin_id,
            actor_type=models.ACTOR_ADMIN,
            action="balance_adjusted",
            target_type="account",
            target_id=user_id,
            details={"amount": amount, "direction": direction, "reason": reason, "transaction_id": str(entry.id)},
            ip_address=ip_address,
        )
        return entry

    entry = ledger.atomic(db, [user_id], operation)
    logger.info(
        "Balance adjusted | admin_id=%s | user_id=%s | direction=%s | amount=%s | tx_id=%s",
        admin_id,
        user_id,
        direction,
        amount,
        entry.id,
    )
    return entry


def _earned_since(db: Session, user_id: str, hours: int | None = None) -> int:
    query = db.query(func.coalesce(func.sum(models.LedgerTransaction.amount_coins), 0)).filter(
        models.LedgerTransaction.user_id == user_id,
        models.LedgerTransaction.type.in_(models.EARNING_TYPES),
        models.LedgerTransaction.status == models.TX_STATUS_COMPLETED,
    )
    if hours is not None:
        query = query.filter(models.LedgerTransaction.completed_at >= models.utcnow() - timedelta(hours=hours))
    return int(query.scalar() or 0)


def earnings_summary(db: Session, *, user_id: str) -> EarningsSummary:
    by_type = {earning_type: 0 for earning_type in models.EARNING_TYPES}
    rows = (
        db.query(models.LedgerTransaction.type, func.sum(models.LedgerTransaction.amount_coins))
        .filter(
            models.LedgerTransaction.user_id == user_id,
            models.LedgerTransaction.type.in_(models.EARNING_TYPES),
            models.LedgerTransaction.status == models.TX_STATUS_COMPLETED,
        )
        .group_by(models.LedgerTransaction.type)
        .all()
    )
    for earning_type, total in rows:
        by_type[earning_type] = int(total or 0)

    pending_value, pending_count = (
        db.query(
            func.coalesce(func.sum(models.LedgerTransaction.amount_coins), 0),
            func.count(models.LedgerTransaction.id),
        )
        .filter(
            models.LedgerTransaction.user_id == user_id,
            models.LedgerTransaction.type == models.TX_GIFT_RECEIVED,
            models.LedgerTransaction.status == models.TX_STATUS_PENDING,
        )
        .one()
    )
    account = ledger.get_account(db, user_id)
    return EarningsSummary(
        total_earned=sum(by_type.values()),
        by_type=by_type,
        last_24h=_earned_since(db, user_id, 24),
        last_7d=_earned_since(db, user_id, 24 * 7),
        last_30d=_earned_since(db, user_id, 24 * 30),
        pending_gift_value=int(pending_value or 0),
        pending_gift_count=int(pending_count or 0),
        balance=account.balance if account else 0,
        held_amount=account.held_amount if account else 0,
    )
