from .. import catalog, models, schemas


def serialize_transaction(entry: models.LedgerTransaction) -> schemas.TransactionResponse:
    return schemas.TransactionResponse(
        id=entry.id,
        user_id=entry.user_id,
        type=entry.type,  # type: ignore[arg-type]
        direction=entry.direction,  # type: ignore[arg-type]
        amount_coins=entry.amount_coins,
        amount_inr=entry.amount_inr,
        related_entity_id=entry.related_entity_id,
        status=entry.status,  # type: ignore[arg-type]
        balance_after=entry.balance_after,
        description=entry.description,
        created_at=entry.created_at,
        completed_at=entry.completed_at,
    )


def serialize_plan(plan: models.CoinPlan | catalog.CoinPlanInfo) -> schemas.CoinPlanResponse:
    return schemas.CoinPlanResponse(
        id=plan.id,
        name=plan.name,
        tier=plan.tier,  # type: ignore[arg-type]
        price_in_inr=plan.price_in_inr,
        base_coins=plan.base_coins,
        bonus_coins=plan.bonus_coins,
        total_coins=plan.total_coins,
        bonus_percentage=plan.bonus_percentage,
        badge=plan.badge,  # type: ignore[arg-type]
        description=plan.description,
        is_active=getattr(plan, "is_active", True),
        display_order=plan.display_order,
    )


def serialize_gift(gift: models.Gift | catalog.GiftInfo) -> schemas.GiftResponse:
    return schemas.GiftResponse(
        id=gift.id,
        name=gift.name,
        category=gift.category,  # type: ignore[arg-type]
        image_url=gift.image_url,
        cost=gift.cost,
        trade_value=gift.trade_value,
        is_active=getattr(gift, "is_active", True),
        display_order=gift.display_order,
    )


def serialize_slab(slab: models.PayoutSlab) -> schemas.SlabResponse:
    return schemas.SlabResponse(
        id=slab.id,
        min_coins=slab.min_coins,
        max_coins=slab.max_coins,
        payout_percentage=slab.payout_percentage,
        display_order=slab.display_order,
        is_active=slab.is_active,
    )


def serialize_withdrawal(request: models.WithdrawalRequest) -> schemas.WithdrawalResponse:
    return schemas.WithdrawalResponse(
        id=request.id,
        user_id=request.user_id,
        coins_requested=request.coins_requested,
        payout_percentage=request.payout_percentage,
        payout_amount_inr=request.payout_amount_inr,
        processing_fee=request.processing_fee,
        net_payout_amount_inr=request.net_payout_amount_inr,
        payout_method=request.payout_method,  # type: ignore[arg-type]
        payout_details=request.payout_details or {},
        status=request.status,  # type: ignore[arg-type]
        transaction_id=request.transaction_id,
        created_at=request.created_at,
        reviewed_by=request.reviewed_by,
        reviewed_at=request.reviewed_at,
        review_notes=request.review_notes,
        paid_at=request.paid_at,
        payment_reference=request.payment_reference,
    )


def serialize_settings(config: catalog.EconomyConfig) -> schemas.EconomySettingsResponse:
    return schemas.EconomySettingsResponse(
        message_cost_basic=config.message_cost_basic,
        message_cost_silver=config.message_cost_silver,
        message_cost_gold=config.message_cost_gold,
        message_cost_platinum=config.message_cost_platinum,
        video_call_cost=config.video_call_cost,
        withdrawal_min_amount=config.withdrawal_min_amount,
        withdrawal_max_amount=config.withdrawal_max_amount,
        withdrawal_processing_fee=config.withdrawal_processing_fee,
        withdrawal_daily_limit=config.withdrawal_daily_limit,
        withdrawal_weekly_limit=config.withdrawal_weekly_limit,
    )


def serialize_audit_entry(entry: models.AuditLog) -> schemas.AuditLogResponse:
    return schemas.AuditLogResponse(
        id=entry.id,
        actor_id=entry.actor_id,
        actor_type=entry.actor_type,  # type: ignore[arg-type]
        action=entry.action,
        target_type=entry.target_type,
        target_id=entry.target_id,
        details=entry.details,
        ip_address=entry.ip_address,
        created_at=entry.created_at,
    )
