"""initial coin ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 10:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("held_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        sa.CheckConstraint("held_amount >= 0", name="ck_accounts_held_non_negative"),
    )

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("amount_coins", sa.Integer(), nullable=False),
        sa.Column("amount_inr", sa.Integer(), nullable=True),
        sa.Column("related_entity_id", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=160), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount_coins > 0", name="ck_ledger_transactions_amount_positive"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_ledger_transactions_user_idempotency"),
    )
    op.create_index("ix_ledger_transactions_user_id", "ledger_transactions", ["user_id"])
    op.create_index("ix_ledger_transactions_type", "ledger_transactions", ["type"])
    op.create_index("ix_ledger_transactions_status", "ledger_transactions", ["status"])
    op.create_index("ix_ledger_transactions_related_entity_id", "ledger_transactions", ["related_entity_id"])
    op.create_index("ix_ledger_transactions_user_created", "ledger_transactions", ["user_id", "created_at"])
    op.create_index(
        "uq_ledger_transactions_purchase_key",
        "ledger_transactions",
        ["idempotency_key"],
        unique=True,
        sqlite_where=sa.text("type = 'purchase'"),
        postgresql_where=sa.text("type = 'purchase'"),
    )

    op.create_table(
        "ledger_holds",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("related_entity_id", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_ledger_holds_amount_positive"),
    )
    op.create_index("ix_ledger_holds_user_id", "ledger_holds", ["user_id"])
    op.create_index("ix_ledger_holds_related_entity_id", "ledger_holds", ["related_entity_id"])
    op.create_index("ix_ledger_holds_status", "ledger_holds", ["status"])

    op.create_table(
        "coin_plans",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("price_in_inr", sa.Integer(), nullable=False),
        sa.Column("base_coins", sa.Integer(), nullable=False),
        sa.Column("bonus_coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_coins", sa.Integer(), nullable=False),
        sa.Column("bonus_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("badge", sa.String(length=16), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("total_coins = base_coins + bonus_coins", name="ck_coin_plans_total"),
    )
    op.create_index("ix_coin_plans_tier", "coin_plans", ["tier"])
    op.create_index("ix_coin_plans_active_order", "coin_plans", ["is_active", "display_order"])

    op.create_table(
        "payout_slabs",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("min_coins", sa.Integer(), nullable=False),
        sa.Column("max_coins", sa.Integer(), nullable=True),
        sa.Column("payout_percentage", sa.Integer(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "payout_percentage >= 0 AND payout_percentage <= 100",
            name="ck_payout_slabs_percentage",
        ),
    )
    op.create_index("ix_payout_slabs_active_min", "payout_slabs", ["is_active", "min_coins"])

    op.create_table(
        "gifts",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("trade_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gifts_active_order", "gifts", ["is_active", "display_order"])

    op.create_table(
        "economy_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_cost_basic", sa.Integer(), nullable=False),
        sa.Column("message_cost_silver", sa.Integer(), nullable=False),
        sa.Column("message_cost_gold", sa.Integer(), nullable=False),
        sa.Column("message_cost_platinum", sa.Integer(), nullable=False),
        sa.Column("video_call_cost", sa.Integer(), nullable=False),
        sa.Column("withdrawal_min_amount", sa.Integer(), nullable=False),
        sa.Column("withdrawal_max_amount", sa.Integer(), nullable=False),
        sa.Column("withdrawal_processing_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("withdrawal_daily_limit", sa.Integer(), nullable=False),
        sa.Column("withdrawal_weekly_limit", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("accounts.user_id"), nullable=False),
        sa.Column("coins_requested", sa.Integer(), nullable=False),
        sa.Column("payout_percentage", sa.Integer(), nullable=False),
        sa.Column("payout_amount_inr", sa.Integer(), nullable=False),
        sa.Column("processing_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_payout_amount_inr", sa.Integer(), nullable=False),
        sa.Column("payout_method", sa.String(length=8), nullable=False),
        sa.Column("payout_details", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("hold_id", sa.UUID(), sa.ForeignKey("ledger_holds.id"), nullable=False, unique=True),
        sa.Column("transaction_id", sa.UUID(), sa.ForeignKey("ledger_transactions.id"), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])
    op.create_index("ix_withdrawal_requests_user_created", "withdrawal_requests", ["user_id", "created_at"])
    op.create_index("ix_withdrawal_requests_status_created", "withdrawal_requests", ["status", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("actor_type", sa.String(length=16), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=32), nullable=False),
        sa.Column("target_id", sa.String(length=128), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_target", "audit_logs", ["target_type", "target_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("withdrawal_requests")
    op.drop_table("economy_settings")
    op.drop_table("gifts")
    op.drop_table("payout_slabs")
    op.drop_table("coin_plans")
    op.drop_table("ledger_holds")
    op.drop_table("ledger_transactions")
    op.drop_table("accounts")
