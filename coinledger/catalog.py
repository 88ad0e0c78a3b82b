"""Reference data for the coin economy: purchase plans, message/call prices, gifts.

Reads are served through the Redis TTL cache; every admin write commits with
its audit row and then drops the affected cache keys before returning.
"""

from dataclasses import asdict, dataclass
import logging
from typing import Any
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import audit, models
from .cache import cache_get, cache_invalidate, cache_set
from .config import settings
from .errors import NotFound, UnknownGift, UnknownTier, ValidationError

logger = logging.getLogger("coinledger.catalog")

CACHE_KEY_PLANS = "catalog:plans:active"
CACHE_KEY_GIFTS = "catalog:gifts:active"
CACHE_KEY_SETTINGS = "catalog:settings"

PLAN_FIELDS = (
    "name",
    "tier",
    "price_in_inr",
    "base_coins",
    "bonus_coins",
    "total_coins",
    "badge",
    "description",
    "is_active",
    "display_order",
)
GIFT_FIELDS = ("name", "category", "image_url", "cost", "trade_value", "is_active", "display_order")
SETTINGS_FIELDS = (
    "message_cost_basic",
    "message_cost_silver",
    "message_cost_gold",
    "message_cost_platinum",
    "video_call_cost",
    "withdrawal_min_amount",
    "withdrawal_max_amount",
    "withdrawal_processing_fee",
    "withdrawal_daily_limit",
    "withdrawal_weekly_limit",
)


@dataclass(frozen=True)
class CoinPlanInfo:
    id: str
    name: str
    tier: str
    price_in_inr: int
    base_coins: int
    bonus_coins: int
    total_coins: int
    bonus_percentage: float
    badge: str | None
    description: str | None
    display_order: int


@dataclass(frozen=True)
class GiftInfo:
    id: str
    name: str
    category: str
    image_url: str | None
    cost: int
    trade_value: int
    display_order: int


@dataclass(frozen=True)
class EconomyConfig:
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


def _plan_info(plan: models.CoinPlan) -> CoinPlanInfo:
    return CoinPlanInfo(
        id=str(plan.id),
        name=plan.name,
        tier=plan.tier,
        price_in_inr=plan.price_in_inr,
        base_coins=plan.base_coins,
        bonus_coins=plan.bonus_coins,
        total_coins=plan.total_coins,
        bonus_percentage=plan.bonus_percentage,
        badge=plan.badge,
        description=plan.description,
        display_order=plan.display_order,
    )


def _gift_info(gift: models.Gift) -> GiftInfo:
    return GiftInfo(
        id=str(gift.id),
        name=gift.name,
        category=gift.category,
        image_url=gift.image_url,
        cost=gift.cost,
        trade_value=gift.trade_value,
        display_order=gift.display_order,
    )


def _config_from_row(row: models.EconomySettings) -> EconomyConfig:
    return EconomyConfig(**{field: getattr(row, field) for field in SETTINGS_FIELDS})


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_int(fields: dict[str, Any], name: str, *, minimum: int) -> None:
    value = fields.get(name)
    if not _is_int(value) or value < minimum:
        raise ValidationError(f"{name} must be an integer >= {minimum}", details={name: value})


def _require_bool(fields: dict[str, Any], name: str) -> None:
    value = fields.get(name)
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false", details={name: value})


def _unknown_fields(changes: dict[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise ValidationError("Unknown fields", details={"fields": unknown})


# Plans


def get_active_plans(db: Session) -> list[CoinPlanInfo]:
    cached = cache_get(CACHE_KEY_PLANS)
    if isinstance(cached, list):
        return [CoinPlanInfo(**item) for item in cached]

    rows = (
        db.query(models.CoinPlan)
        .filter(models.CoinPlan.is_active.is_(True))
        .order_by(models.CoinPlan.display_order, models.CoinPlan.price_in_inr)
        .all()
    )
    plans = [_plan_info(row) for row in rows]
    cache_set(CACHE_KEY_PLANS, [asdict(plan) for plan in plans])
    return plans


def list_plans(db: Session) -> list[models.CoinPlan]:
    return db.query(models.CoinPlan).order_by(models.CoinPlan.display_order, models.CoinPlan.created_at).all()


def get_plan(db: Session, plan_id: uuid.UUID) -> models.CoinPlan:
    plan = db.get(models.CoinPlan, plan_id)
    if plan is None:
        raise NotFound("Coin plan not found", details={"plan_id": str(plan_id)})
    return plan


def get_active_plan(db: Session, plan_id: uuid.UUID) -> models.CoinPlan:
    plan = get_plan(db, plan_id)
    if not plan.is_active:
        raise NotFound("Coin plan is not available", details={"plan_id": str(plan_id)})
    return plan


def _validate_plan(fields: dict[str, Any], *, explicit_total: bool) -> dict[str, Any]:
    """Check a full set of plan fields and return it with derived totals filled in.

    An explicit ``total_coins`` must equal ``base_coins + bonus_coins``; when it
    is not given it is computed.
    """
    name = (fields.get("name") or "").strip()
    if not name:
        raise ValidationError("Plan name is required")
    if fields.get("tier") not in models.MEMBER_TIERS:
        raise ValidationError("Unknown plan tier", details={"tier": fields.get("tier")})
    if fields.get("badge") is not None and fields["badge"] not in models.PLAN_BADGES:
        raise ValidationError("Unknown plan badge", details={"badge": fields["badge"]})
    _require_int(fields, "price_in_inr", minimum=1)
    _require_int(fields, "base_coins", minimum=1)
    _require_int(fields, "bonus_coins", minimum=0)
    _require_int(fields, "display_order", minimum=0)
    _require_bool(fields, "is_active")

    expected_total = fields["base_coins"] + fields["bonus_coins"]
    if explicit_total and fields.get("total_coins") != expected_total:
        raise ValidationError(
            "total_coins must equal base_coins + bonus_coins",
            details={
                "total_coins": fields.get("total_coins"),
                "base_coins": fields["base_coins"],
                "bonus_coins": fields["bonus_coins"],
            },
        )

    validated = dict(fields)
    validated["name"] = name
    validated["total_coins"] = expected_total
    validated["bonus_percentage"] = round(fields["bonus_coins"] * 100 / fields["base_coins"], 2)
    return validated


def create_plan(
    db: Session,
    *,
    admin_id: str,
    name: str,
    tier: str,
    price_in_inr: int,
    base_coins: int,
    bonus_coins: int = 0,
    total_coins: int | None = None,
    badge: str | None = None,
    description: str | None = None,
    is_active: bool = True,
    display_order: int = 0,
    ip_address: str | None = None,
) -> models.CoinPlan:
    fields = _validate_plan(
        {
            "name": name,
            "tier": tier,
            "price_in_inr": price_in_inr,
            "base_coins": base_coins,
            "bonus_coins": bonus_coins,
            "total_coins": total_coins,
            "badge": badge,
            "description": description,
            "is_active": is_active,
            "display_order": display_order,
        },
        explicit_total=total_coins is not None,
    )
    now = models.utcnow()
    plan = models.CoinPlan(id=uuid.uuid4(), created_at=now, updated_at=now, **fields)
    db.add(plan)
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="coin_plan_created",
        target_type="coin_plan",
        target_id=str(plan.id),
        details={"tier": tier, "price_in_inr": price_in_inr, "total_coins": fields["total_coins"]},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(plan)
    cache_invalidate(CACHE_KEY_PLANS)
    logger.info("Coin plan created | plan_id=%s | admin_id=%s | tier=%s", plan.id, admin_id, plan.tier)
    return plan


def update_plan(
    db: Session,
    *,
    admin_id: str,
    plan_id: uuid.UUID,
    changes: dict[str, Any],
    ip_address: str | None = None,
) -> models.CoinPlan:
    _unknown_fields(changes, PLAN_FIELDS)
    plan = get_plan(db, plan_id)
    merged = {field: getattr(plan, field) for field in PLAN_FIELDS}
    merged.update(changes)
    fields = _validate_plan(merged, explicit_total="total_coins" in changes)

    for field, value in fields.items():
        setattr(plan, field, value)
    plan.updated_at = models.utcnow()
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="coin_plan_updated",
        target_type="coin_plan",
        target_id=str(plan.id),
        details={"changes": changes},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(plan)
    cache_invalidate(CACHE_KEY_PLANS)
    logger.info("Coin plan updated | plan_id=%s | admin_id=%s | fields=%s", plan.id, admin_id, ",".join(sorted(changes)))
    return plan


def deactivate_plan(
    db: Session,
    *,
    admin_id: str,
    plan_id: uuid.UUID,
    ip_address: str | None = None,
) -> models.CoinPlan:
    plan = get_plan(db, plan_id)
    plan.is_active = False
    plan.updated_at = models.utcnow()
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="coin_plan_deactivated",
        target_type="coin_plan",
        target_id=str(plan.id),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(plan)
    cache_invalidate(CACHE_KEY_PLANS)
    logger.info("Coin plan deactivated | plan_id=%s | admin_id=%s", plan.id, admin_id)
    return plan


# Economy settings (message costs and withdrawal rules)


def _default_settings_row() -> models.EconomySettings:
    return models.EconomySettings(
        id=1,
        message_cost_basic=settings.default_message_cost_basic,
        message_cost_silver=settings.default_message_cost_silver,
        message_cost_gold=settings.default_message_cost_gold,
        message_cost_platinum=settings.default_message_cost_platinum,
        video_call_cost=settings.default_video_call_cost,
        withdrawal_min_amount=settings.default_withdrawal_min_amount,
        withdrawal_max_amount=settings.default_withdrawal_max_amount,
        withdrawal_processing_fee=settings.default_withdrawal_processing_fee,
        withdrawal_daily_limit=settings.default_withdrawal_daily_limit,
        withdrawal_weekly_limit=settings.default_withdrawal_weekly_limit,
        updated_at=models.utcnow(),
    )


def _settings_row(db: Session, *, for_update: bool = False) -> models.EconomySettings:
    statement = select(models.EconomySettings).where(models.EconomySettings.id == 1)
    if for_update:
        statement = statement.with_for_update()
    row = db.execute(statement).scalar_one_or_none()
    if row is None:
        row = _default_settings_row()
        db.add(row)
        db.flush()
    return row


def get_economy_settings(db: Session) -> EconomyConfig:
    cached = cache_get(CACHE_KEY_SETTINGS)
    if isinstance(cached, dict):
        return EconomyConfig(**cached)

    row = db.get(models.EconomySettings, 1)
    config = _config_from_row(row) if row is not None else _config_from_row(_default_settings_row())
    cache_set(CACHE_KEY_SETTINGS, asdict(config))
    return config


def _validate_settings(fields: dict[str, Any]) -> None:
    for tier in models.MEMBER_TIERS:
        _require_int(fields, f"message_cost_{tier}", minimum=1)
    _require_int(fields, "video_call_cost", minimum=1)
    _require_int(fields, "withdrawal_min_amount", minimum=1)
    _require_int(fields, "withdrawal_max_amount", minimum=1)
    _require_int(fields, "withdrawal_processing_fee", minimum=0)
    _require_int(fields, "withdrawal_daily_limit", minimum=1)
    _require_int(fields, "withdrawal_weekly_limit", minimum=1)
    if fields["withdrawal_min_amount"] > fields["withdrawal_max_amount"]:
        raise ValidationError(
            "withdrawal_min_amount must not exceed withdrawal_max_amount",
            details={"min": fields["withdrawal_min_amount"], "max": fields["withdrawal_max_amount"]},
        )
    if fields["withdrawal_daily_limit"] > fields["withdrawal_weekly_limit"]:
        raise ValidationError(
            "withdrawal_daily_limit must not exceed withdrawal_weekly_limit",
            details={"daily": fields["withdrawal_daily_limit"], "weekly": fields["withdrawal_weekly_limit"]},
        )


def update_economy_settings(
    db: Session,
    *,
    admin_id: str,
    changes: dict[str, Any],
    ip_address: str | None = None,
) -> EconomyConfig:
    _unknown_fields(changes, SETTINGS_FIELDS)
    try:
        row = _settings_row(db, for_update=True)
        merged = {field: getattr(row, field) for field in SETTINGS_FIELDS}
        merged.update(changes)
        _validate_settings(merged)
    except Exception:
        db.rollback()
        raise

    previous = {field: getattr(row, field) for field in changes}
    for field, value in changes.items():
        setattr(row, field, value)
    row.updated_by = admin_id
    row.updated_at = models.utcnow()
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="economy_settings_updated",
        target_type="economy_settings",
        target_id="1",
        details={"before": previous, "after": changes},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(row)
    cache_invalidate(CACHE_KEY_SETTINGS)
    logger.info("Economy settings updated | admin_id=%s | fields=%s", admin_id, ",".join(sorted(changes)))
    return _config_from_row(row)


def get_message_cost(db: Session, tier: str) -> int:
    if tier not in models.MEMBER_TIERS:
        raise UnknownTier(details={"tier": tier})
    return getattr(get_economy_settings(db), f"message_cost_{tier}")


def get_video_call_cost(db: Session) -> int:
    return get_economy_settings(db).video_call_cost


# Gifts


def list_active_gifts(db: Session) -> list[GiftInfo]:
    cached = cache_get(CACHE_KEY_GIFTS)
    if isinstance(cached, list):
        return [GiftInfo(**item) for item in cached]

    rows = (
        db.query(models.Gift)
        .filter(models.Gift.is_active.is_(True))
        .order_by(models.Gift.display_order, models.Gift.cost)
        .all()
    )
    gifts = [_gift_info(row) for row in rows]
    cache_set(CACHE_KEY_GIFTS, [asdict(gift) for gift in gifts])
    return gifts


def list_gifts(db: Session) -> list[models.Gift]:
    return db.query(models.Gift).order_by(models.Gift.display_order, models.Gift.created_at).all()


def get_gift(db: Session, gift_id: uuid.UUID | str) -> GiftInfo:
    wanted = str(gift_id)
    for gift in list_active_gifts(db):
        if gift.id == wanted:
            return gift
    raise UnknownGift(details={"gift_id": wanted})


def get_gift_trade_value(db: Session, gift_id: uuid.UUID | str) -> int:
    return get_gift(db, gift_id).trade_value


def _gift_row(db: Session, gift_id: uuid.UUID) -> models.Gift:
    gift = db.get(models.Gift, gift_id)
    if gift is None:
        raise UnknownGift(details={"gift_id": str(gift_id)})
    return gift


def _validate_gift(fields: dict[str, Any]) -> dict[str, Any]:
    name = (fields.get("name") or "").strip()
    if not name:
        raise ValidationError("Gift name is required")
    if fields.get("category") not in models.GIFT_CATEGORIES:
        raise ValidationError("Unknown gift category", details={"category": fields.get("category")})
    _require_int(fields, "cost", minimum=1)
    _require_int(fields, "trade_value", minimum=0)
    _require_int(fields, "display_order", minimum=0)
    _require_bool(fields, "is_active")
    validated = dict(fields)
    validated["name"] = name
    return validated


def create_gift(
    db: Session,
    *,
    admin_id: str,
    name: str,
    category: str,
    cost: int,
    trade_value: int = 0,
    image_url: str | None = None,
    is_active: bool = True,
    display_order: int = 0,
    ip_address: str | None = None,
) -> models.Gift:
    fields = _validate_gift(
        {
            "name": name,
            "category": category,
            "image_url": image_url,
            "cost": cost,
            "trade_value": trade_value,
            "is_active": is_active,
            "display_order": display_order,
        }
    )
    now = models.utcnow()
    gift = models.Gift(id=uuid.uuid4(), created_at=now, updated_at=now, **fields)
    db.add(gift)
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="gift_created",
        target_type="gift",
        target_id=str(gift.id),
        details={"cost": cost, "trade_value": trade_value},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(gift)
    cache_invalidate(CACHE_KEY_GIFTS)
    logger.info("Gift created | gift_id=%s | admin_id=%s | cost=%s", gift.id, admin_id, gift.cost)
    return gift


def update_gift(
    db: Session,
    *,
    admin_id: str,
    gift_id: uuid.UUID,
    changes: dict[str, Any],
    ip_address: str | None = None,
) -> models.Gift:
    _unknown_fields(changes, GIFT_FIELDS)
    gift = _gift_row(db, gift_id)
    merged = {field: getattr(gift, field) for field in GIFT_FIELDS}
    merged.update(changes)
    fields = _validate_gift(merged)

    for field, value in fields.items():
        setattr(gift, field, value)
    gift.updated_at = models.utcnow()
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="gift_updated",
        target_type="gift",
        target_id=str(gift.id),
        details={"changes": changes},
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(gift)
    cache_invalidate(CACHE_KEY_GIFTS)
    logger.info("Gift updated | gift_id=%s | admin_id=%s", gift.id, admin_id)
    return gift


def deactivate_gift(
    db: Session,
    *,
    admin_id: str,
    gift_id: uuid.UUID,
    ip_address: str | None = None,
) -> models.Gift:
    gift = _gift_row(db, gift_id)
    gift.is_active = False
    gift.updated_at = models.utcnow()
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action="gift_deactivated",
        target_type="gift",
        target_id=str(gift.id),
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(gift)
    cache_invalidate(CACHE_KEY_GIFTS)
    logger.info("Gift deactivated | gift_id=%s | admin_id=%s", gift.id, admin_id)
    return gift
