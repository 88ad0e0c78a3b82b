from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

MemberTier = Literal["basic", "silver", "gold", "platinum"]
PlanBadge = Literal["POPULAR", "BEST_VALUE"]
GiftCategory = Literal["romantic", "funny", "celebration", "appreciation", "special"]
PayoutMethod = Literal["UPI", "bank"]
Direction = Literal["credit", "debit"]
TransactionType = Literal[
    "purchase",
    "message_spent",
    "message_earned",
    "video_call_spent",
    "video_call_earned",
    "gift_sent",
    "gift_received",
    "withdrawal",
    "adjustment",
]
TransactionStatus = Literal["pending", "completed", "failed"]
WithdrawalStatus = Literal["pending", "approved", "rejected", "paid", "cancelled"]


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


# Coins and wallet


class CoinPlanResponse(BaseModel):
    id: UUID
    name: str
    tier: MemberTier
    price_in_inr: int
    base_coins: int
    bonus_coins: int
    total_coins: int
    bonus_percentage: float
    badge: PlanBadge | None = None
    description: str | None = None
    is_active: bool = True
    display_order: int


class CoinPlanListResponse(BaseModel):
    items: list[CoinPlanResponse]


class CoinPurchaseRequest(BaseModel):
    plan_id: UUID
    payment_reference: str = Field(min_length=1, max_length=128)


class TransactionResponse(BaseModel):
    id: UUID
    user_id: str
    type: TransactionType
    direction: Direction
    amount_coins: int
    amount_inr: int | None = None
    related_entity_id: str | None = None
    status: TransactionStatus
    balance_after: int | None = None
    description: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class BalanceResponse(BaseModel):
    user_id: str
    balance: int
    held_amount: int


class EarningsResponse(BaseModel):
    total_earned: int
    by_type: dict[str, int]
    last_24h: int
    last_7d: int
    last_30d: int
    pending_gift_value: int
    pending_gift_count: int
    balance: int
    held_amount: int


# Paid interactions


class MessageChargeRequest(BaseModel):
    """Message charge body.

    Behind the gateway the recipient tier comes from the ``X-Recipient-Tier``
    header and ``recipient_tier`` here is ignored.
    """

    recipient_id: str = Field(min_length=1, max_length=64)
    recipient_tier: MemberTier | None = None
    message_id: str | None = Field(default=None, max_length=128)


class VideoCallChargeRequest(BaseModel):
    recipient_id: str = Field(min_length=1, max_length=64)


class TransferResponse(BaseModel):
    debit: TransactionResponse
    credit: TransactionResponse


# Gifts


class GiftResponse(BaseModel):
    id: UUID
    name: str
    category: GiftCategory
    image_url: str | None = None
    cost: int
    trade_value: int
    is_active: bool = True
    display_order: int


class GiftListResponse(BaseModel):
    items: list[GiftResponse]


class GiftSendRequest(BaseModel):
    recipient_id: str = Field(min_length=1, max_length=64)
    chat_id: str | None = Field(default=None, max_length=128)


class GiftSendResponse(BaseModel):
    gift: GiftResponse
    sent: TransactionResponse
    received: TransactionResponse | None = None


class PendingGiftListResponse(BaseModel):
    items: list[TransactionResponse]
    total_value: int


class GiftTradeRequest(BaseModel):
    transaction_ids: list[UUID] = Field(min_length=1, max_length=100)


class GiftTradeResponse(BaseModel):
    traded: list[TransactionResponse]
    coins_credited: int
    balance: int


class GiftCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    category: GiftCategory
    image_url: str | None = Field(default=None, max_length=1000)
    cost: int = Field(ge=1)
    trade_value: int = Field(default=0, ge=0)
    is_active: bool = True
    display_order: int = Field(default=0, ge=0)

    @field_validator("image_url")
    @classmethod
    def strip_image_url(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class GiftUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    category: GiftCategory | None = None
    image_url: str | None = Field(default=None, max_length=1000)
    cost: int | None = Field(default=None, ge=1)
    trade_value: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    display_order: int | None = Field(default=None, ge=0)


# Withdrawals


class PayoutDetails(BaseModel):
    upi_id: str | None = Field(default=None, max_length=320)
    account_holder_name: str | None = Field(default=None, max_length=200)
    account_number: str | None = Field(default=None, max_length=32)
    ifsc_code: str | None = Field(default=None, max_length=16)
    bank_name: str | None = Field(default=None, max_length=200)

    @field_validator("upi_id", "account_holder_name", "account_number", "ifsc_code", "bank_name")
    @classmethod
    def strip_optional_strings(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class WithdrawalCreateRequest(BaseModel):
    coins_requested: int = Field(gt=0)
    payout_method: PayoutMethod
    payout_details: PayoutDetails


class WithdrawalRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class WithdrawalPaidRequest(BaseModel):
    payment_reference: str | None = Field(default=None, max_length=128)


class WithdrawalResponse(BaseModel):
    id: UUID
    user_id: str
    coins_requested: int
    payout_percentage: int
    payout_amount_inr: int
    processing_fee: int
    net_payout_amount_inr: int
    payout_method: PayoutMethod
    payout_details: dict[str, Any]
    status: WithdrawalStatus
    transaction_id: UUID | None = None
    created_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    paid_at: datetime | None = None
    payment_reference: str | None = None


class WithdrawalListResponse(BaseModel):
    items: list[WithdrawalResponse]
    total: int
    limit: int
    offset: int


# Admin: plans, slabs, settings


class CoinPlanCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    tier: MemberTier
    price_in_inr: int = Field(ge=1)
    base_coins: int = Field(ge=1)
    bonus_coins: int = Field(default=0, ge=0)
    total_coins: int | None = Field(default=None, ge=1)
    badge: PlanBadge | None = None
    description: str | None = Field(default=None, max_length=2000)
    is_active: bool = True
    display_order: int = Field(default=0, ge=0)


class CoinPlanUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    tier: MemberTier | None = None
    price_in_inr: int | None = Field(default=None, ge=1)
    base_coins: int | None = Field(default=None, ge=1)
    bonus_coins: int | None = Field(default=None, ge=0)
    total_coins: int | None = Field(default=None, ge=1)
    badge: PlanBadge | None = None
    description: str | None = Field(default=None, max_length=2000)
    is_active: bool | None = None
    display_order: int | None = Field(default=None, ge=0)


class SlabResponse(BaseModel):
    id: UUID
    min_coins: int
    max_coins: int | None = None
    payout_percentage: int
    display_order: int
    is_active: bool


class SlabListResponse(BaseModel):
    items: list[SlabResponse]


class SlabCreateRequest(BaseModel):
    min_coins: int = Field(ge=0)
    max_coins: int | None = Field(default=None, ge=0)
    payout_percentage: int = Field(ge=0, le=100)
    display_order: int = Field(default=0, ge=0)
    is_active: bool = True


class SlabUpdateRequest(BaseModel):
    min_coins: int | None = Field(default=None, ge=0)
    max_coins: int | None = Field(default=None, ge=0)
    payout_percentage: int | None = Field(default=None, ge=0, le=100)
    display_order: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class SlabItem(BaseModel):
    min_coins: int = Field(ge=0)
    max_coins: int | None = Field(default=None, ge=0)
    payout_percentage: int = Field(ge=0, le=100)
    display_order: int | None = Field(default=None, ge=0)


class SlabReplaceRequest(BaseModel):
    slabs: list[SlabItem] = Field(min_length=1, max_length=50)


class EconomySettingsResponse(BaseModel):
    message_cost_basic: int
    message_cost_silver: int
    message_cost_gold: int
    message_cost_platinum: int
    video_call_cost: int
    withdrawal_min_amount: int
    withdrawal_max_amount: int
    withdrawal_processing_fee: int
    withdrawal_daily_limit: int
    withdrawal_weekly_limit: int


class EconomySettingsUpdateRequest(BaseModel):
    message_cost_basic: int | None = Field(default=None, ge=1)
    message_cost_silver: int | None = Field(default=None, ge=1)
    message_cost_gold: int | None = Field(default=None, ge=1)
    message_cost_platinum: int | None = Field(default=None, ge=1)
    video_call_cost: int | None = Field(default=None, ge=1)
    withdrawal_min_amount: int | None = Field(default=None, ge=1)
    withdrawal_max_amount: int | None = Field(default=None, ge=1)
    withdrawal_processing_fee: int | None = Field(default=None, ge=0)
    withdrawal_daily_limit: int | None = Field(default=None, ge=1)
    withdrawal_weekly_limit: int | None = Field(default=None, ge=1)


# Admin: ledger oversight


class BalanceAdjustmentRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    amount: int = Field(gt=0)
    direction: Direction
    reason: str = Field(min_length=1, max_length=500)


class AuditLogResponse(BaseModel):
    id: UUID
    actor_id: str
    actor_type: Literal["admin", "user", "system"]
    action: str
    target_type: str
    target_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int
