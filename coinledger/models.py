import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

MEMBER_TIERS = ("basic", "silver", "gold", "platinum")
PLAN_BADGES = ("POPULAR", "BEST_VALUE")
GIFT_CATEGORIES = ("romantic", "funny", "celebration", "appreciation", "special")

TX_PURCHASE = "purchase"
TX_MESSAGE_SPENT = "message_spent"
TX_MESSAGE_EARNED = "message_earned"
TX_VIDEO_CALL_SPENT = "video_call_spent"
TX_VIDEO_CALL_EARNED = "video_call_earned"
TX_GIFT_SENT = "gift_sent"
TX_GIFT_RECEIVED = "gift_received"
TX_WITHDRAWAL = "withdrawal"
TX_ADJUSTMENT = "adjustment"
TRANSACTION_TYPES = (
    TX_PURCHASE,
    TX_MESSAGE_SPENT,
    TX_MESSAGE_EARNED,
    TX_VIDEO_CALL_SPENT,
    TX_VIDEO_CALL_EARNED,
    TX_GIFT_SENT,
    TX_GIFT_RECEIVED,
    TX_WITHDRAWAL,
    TX_ADJUSTMENT,
)
EARNING_TYPES = (TX_MESSAGE_EARNED, TX_VIDEO_CALL_EARNED, TX_GIFT_RECEIVED)

DIRECTION_CREDIT = "credit"
DIRECTION_DEBIT = "debit"

TX_STATUS_PENDING = "pending"
TX_STATUS_COMPLETED = "completed"
TX_STATUS_FAILED = "failed"

HOLD_STATUS_ACTIVE = "active"
HOLD_STATUS_RELEASED = "released"
HOLD_STATUS_SETTLED = "settled"

WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_APPROVED = "approved"
WITHDRAWAL_REJECTED = "rejected"
WITHDRAWAL_PAID = "paid"
WITHDRAWAL_CANCELLED = "cancelled"
WITHDRAWAL_STATUSES = (
    WITHDRAWAL_PENDING,
    WITHDRAWAL_APPROVED,
    WITHDRAWAL_REJECTED,
    WITHDRAWAL_PAID,
    WITHDRAWAL_CANCELLED,
)
PAYOUT_METHODS = ("UPI", "bank")

ACTOR_ADMIN = "admin"
ACTOR_USER = "user"
ACTOR_SYSTEM = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("held_amount >= 0", name="ck_accounts_held_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    held_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Every flush of a balance change is an UPDATE ... WHERE version = :old.
    __mapper_args__ = {"version_id_col": version}


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        CheckConstraint("amount_coins > 0", name="ck_ledger_transactions_amount_positive"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_ledger_transactions_user_idempotency"),
        Index("ix_ledger_transactions_user_created", "user_id", "created_at"),
        # One purchase credit per gateway payment reference, whoever the buyer is.
        Index(
            "uq_ledger_transactions_purchase_key",
            "idempotency_key",
            unique=True,
            sqlite_where=text("type = 'purchase'"),
            postgresql_where=text("type = 'purchase'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    amount_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_inr: Mapped[int | None] = mapped_column(Integer)
    related_entity_id: Mapped[str | None] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    balance_after: Mapped[int | None] = mapped_column(Integer)
    description: Mapped[str | None] = mapped_column(Text)
    idempotency_key: Mapped[str | None] = mapped_column(String(160))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    account: Mapped[Account] = relationship("Account")


class LedgerHold(Base):
    __tablename__ = "ledger_holds"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_ledger_holds_amount_positive"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    related_entity_id: Mapped[str | None] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=HOLD_STATUS_ACTIVE, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class CoinPlan(Base):
    __tablename__ = "coin_plans"
    __table_args__ = (
        CheckConstraint("total_coins = base_coins + bonus_coins", name="ck_coin_plans_total"),
        Index("ix_coin_plans_active_order", "is_active", "display_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    price_in_inr: Mapped[int] = mapped_column(Integer, nullable=False)
    base_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    badge: Mapped[str | None] = mapped_column(String(16))
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class PayoutSlab(Base):
    __tablename__ = "payout_slabs"
    __table_args__ = (
        CheckConstraint("payout_percentage >= 0 AND payout_percentage <= 100", name="ck_payout_slabs_percentage"),
        Index("ix_payout_slabs_active_min", "is_active", "min_coins"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    min_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    max_coins: Mapped[int | None] = mapped_column(Integer)
    payout_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Gift(Base):
    __tablename__ = "gifts"
    __table_args__ = (Index("ix_gifts_active_order", "is_active", "display_order"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    trade_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class EconomySettings(Base):
    """Single-row table with admin-editable prices and withdrawal rules."""

    __tablename__ = "economy_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    message_cost_basic: Mapped[int] = mapped_column(Integer, nullable=False)
    message_cost_silver: Mapped[int] = mapped_column(Integer, nullable=False)
    message_cost_gold: Mapped[int] = mapped_column(Integer, nullable=False)
    message_cost_platinum: Mapped[int] = mapped_column(Integer, nullable=False)
    video_call_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    withdrawal_min_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    withdrawal_max_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    withdrawal_processing_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    withdrawal_daily_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    withdrawal_weekly_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(64))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        Index("ix_withdrawal_requests_user_created", "user_id", "created_at"),
        Index("ix_withdrawal_requests_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("accounts.user_id"), nullable=False, index=True)
    coins_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_amount_inr: Mapped[int] = mapped_column(Integer, nullable=False)
    processing_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_payout_amount_inr: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_method: Mapped[str] = mapped_column(String(8), nullable=False)
    payout_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=WITHDRAWAL_PENDING, index=True)
    hold_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("ledger_holds.id"), nullable=False, unique=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(64))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    review_notes: Mapped[str | None] = mapped_column(Text)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_reference: Mapped[str | None] = mapped_column(String(128))

    hold: Mapped[LedgerHold] = relationship("LedgerHold")
    transaction: Mapped[LedgerTransaction | None] = relationship("LedgerTransaction")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_target", "target_type", "target_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor_type: Mapped[str] = mapped_column(String(16), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(128))
    details: Mapped[dict | None] = mapped_column(JSON)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
