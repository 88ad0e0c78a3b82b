"""Payout slabs: coin ranges mapped to the percentage paid out on withdrawal.

The active set must cover ``[0, inf)`` with no gaps and no overlaps. Every
admin write re-validates the whole resulting active set before commit.
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass, replace
import logging
import threading
from typing import Any
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import audit, models
from .cache import cache_get, cache_invalidate, cache_set
from .errors import NoMatchingSlab, NotFound, OverlappingSlabs, SlabGap, ValidationError

logger = logging.getLogger("coinledger.slabs")

CACHE_KEY_SLABS = "catalog:slabs:active"
SLAB_FIELDS = ("min_coins", "max_coins", "payout_percentage", "display_order", "is_active")

_write_lock = threading.Lock()


@dataclass(frozen=True)
class SlabInfo:
    id: str | None
    min_coins: int
    max_coins: int | None
    payout_percentage: int
    display_order: int = 0

    def covers(self, coins: int) -> bool:
        return self.min_coins <= coins and (self.max_coins is None or coins <= self.max_coins)


def _slab_info(slab: models.PayoutSlab) -> SlabInfo:
    return SlabInfo(
        id=str(slab.id),
        min_coins=slab.min_coins,
        max_coins=slab.max_coins,
        payout_percentage=slab.payout_percentage,
        display_order=slab.display_order,
    )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_slab(slab: SlabInfo) -> None:
    details = {"min_coins": slab.min_coins, "max_coins": slab.max_coins, "payout_percentage": slab.payout_percentage}
    if not _is_int(slab.payout_percentage) or not 0 <= slab.payout_percentage <= 100:
        raise ValidationError("payout_percentage must be an integer between 0 and 100", details=details)
    if not _is_int(slab.min_coins) or slab.min_coins < 0:
        raise ValidationError("min_coins must be a non-negative integer", details=details)
    if slab.max_coins is not None and (not _is_int(slab.max_coins) or slab.max_coins < slab.min_coins):
        raise ValidationError("max_coins must be empty or >= min_coins", details=details)
    if not _is_int(slab.display_order) or slab.display_order < 0:
        raise ValidationError("display_order must be a non-negative integer", details={"display_order": slab.display_order})


def validate_slab_set(slabs: Iterable[SlabInfo]) -> list[SlabInfo]:
    """Return the slabs sorted by ``min_coins`` or raise if they do not tile ``[0, inf)``.

    Gaps (including a bounded last slab) raise ``SlabGap``; any shared coin
    amount raises ``OverlappingSlabs``.
    """
    slabs = list(slabs)
    for slab in slabs:
        _check_slab(slab)
    ordered = sorted(slabs, key=lambda s: (s.min_coins, s.max_coins is None, s.max_coins or 0))

    if not ordered:
        raise SlabGap("No active payout slabs", details={"missing_from": 0})
    if ordered[0].min_coins != 0:
        raise SlabGap("Payout slabs must start at 0 coins", details={"missing_from": 0, "missing_to": ordered[0].min_coins - 1})

    for previous, current in zip(ordered, ordered[1:]):
        if previous.max_coins is None or current.min_coins <= previous.max_coins:
            raise OverlappingSlabs(
                details={
                    "first": {"min_coins": previous.min_coins, "max_coins": previous.max_coins},
                    "second": {"min_coins": current.min_coins, "max_coins": current.max_coins},
                }
            )
        if current.min_coins > previous.max_coins + 1:
            raise SlabGap(details={"missing_from": previous.max_coins + 1, "missing_to": current.min_coins - 1})

    if ordered[-1].max_coins is not None:
        raise SlabGap("The last payout slab must be unbounded", details={"missing_from": ordered[-1].max_coins + 1})
    return ordered


def list_active_slabs(db: Session) -> list[SlabInfo]:
    cached = cache_get(CACHE_KEY_SLABS)
    if isinstance(cached, list):
        return [SlabInfo(**item) for item in cached]

    rows = (
        db.query(models.PayoutSlab)
        .filter(models.PayoutSlab.is_active.is_(True))
        .order_by(models.PayoutSlab.min_coins)
        .all()
    )
    slabs = [_slab_info(row) for row in rows]
    cache_set(CACHE_KEY_SLABS, [asdict(slab) for slab in slabs])
    return slabs


def list_slabs(db: Session) -> list[models.PayoutSlab]:
    return db.query(models.PayoutSlab).order_by(models.PayoutSlab.is_active.desc(), models.PayoutSlab.min_coins).all()


def get_slab(db: Session, slab_id: uuid.UUID) -> models.PayoutSlab:
    slab = db.get(models.PayoutSlab, slab_id)
    if slab is None:
        raise NotFound("Payout slab not found", details={"slab_id": str(slab_id)})
    return slab


def resolve_slab(db: Session, coins_requested: int) -> SlabInfo:
    """Return the slab covering ``coins_requested``.

    A miss means the active configuration is broken: it is logged, written to
    the audit log as a system event and raised, never replaced by a default.
    """
    if not _is_int(coins_requested) or coins_requested < 0:
        raise ValidationError("coins_requested must be a non-negative integer", details={"coins_requested": coins_requested})

    for slab in sorted(list_active_slabs(db), key=lambda s: s.min_coins):
        if slab.covers(coins_requested):
            return slab

    logger.error("Payout configuration error: no slab covers amount | coins_requested=%s", coins_requested)
    audit.record(
        db,
        actor_id="system",
        actor_type=models.ACTOR_SYSTEM,
        action="payout_config_error",
        target_type="payout_slab",
        details={"coins_requested": coins_requested},
    )
    db.commit()
    raise NoMatchingSlab(details={"coins_requested": coins_requested})


def resolve(db: Session, coins_requested: int) -> int:
    return resolve_slab(db, coins_requested).payout_percentage


def _locked_active_rows(db: Session) -> list[models.PayoutSlab]:
    return list(
        db.execute(
            select(models.PayoutSlab)
            .where(models.PayoutSlab.is_active.is_(True))
            .with_for_update()
        ).scalars()
    )


def _commit_change(
    db: Session,
    *,
    admin_id: str,
    action: str,
    target_id: str | None,
    details: dict[str, Any],
    ip_address: str | None,
) -> None:
    audit.record(
        db,
        actor_id=admin_id,
        actor_type=models.ACTOR_ADMIN,
        action=action,
        target_type="payout_slab",
        target_id=target_id,
        details=details,
        ip_address=ip_address,
    )
    db.commit()
    cache_invalidate(CACHE_KEY_SLABS)


def create_slab(
    db: Session,
    *,
    admin_id: str,
    min_coins: int,
    max_coins: int | None,
    payout_percentage: int,
    display_order: int = 0,
    is_active: bool = True,
    ip_address: str | None = None,
) -> models.PayoutSlab:
    candidate = SlabInfo(
        id=None,
        min_coins=min_coins,
        max_coins=max_coins,
        payout_percentage=payout_percentage,
        display_order=display_order,
    )
    with _write_lock:
        try:
            _check_slab(candidate)
            if is_active:
                validate_slab_set([_slab_info(row) for row in _locked_active_rows(db)] + [candidate])
        except Exception:
            db.rollback()
            raise

        now = models.utcnow()
        slab = models.PayoutSlab(
            id=uuid.uuid4(),
            min_coins=min_coins,
            max_coins=max_coins,
            payout_percentage=payout_percentage,
            display_order=display_order,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        db.add(slab)
        _commit_change(
            db,
            admin_id=admin_id,
            action="payout_slab_created",
            target_id=str(slab.id),
            details={"min_coins": min_coins, "max_coins": max_coins, "payout_percentage": payout_percentage},
            ip_address=ip_address,
        )
    db.refresh(slab)
    logger.info("Payout slab created | slab_id=%s | admin_id=%s | pct=%s", slab.id, admin_id, payout_percentage)
    return slab


def update_slab(
    db: Session,
    *,
    admin_id: str,
    slab_id: uuid.UUID,
    changes: dict[str, Any],
    ip_address: str | None = None,
) -> models.PayoutSlab:
    unknown = sorted(set(changes) - set(SLAB_FIELDS))
    if unknown:
        raise ValidationError("Unknown fields", details={"fields": unknown})

    with _write_lock:
        try:
            active_rows = _locked_active_rows(db)
            slab = get_slab(db, slab_id)
            merged = {field: getattr(slab, field) for field in SLAB_FIELDS}
            merged.update(changes)
            if not isinstance(merged["is_active"], bool):
                raise ValidationError("is_active must be true or false", details={"is_active": merged["is_active"]})
            updated = replace(
                _slab_info(slab),
                min_coins=merged["min_coins"],
                max_coins=merged["max_coins"],
                payout_percentage=merged["payout_percentage"],
                display_order=merged["display_order"],
            )
            _check_slab(updated)
            others = [_slab_info(row) for row in active_rows if row.id != slab.id]
            validate_slab_set(others + [updated] if merged["is_active"] else others)
        except Exception:
            db.rollback()
            raise

        before = {field: getattr(slab, field) for field in changes}
        for field, value in merged.items():
            setattr(slab, field, value)
        slab.updated_at = models.utcnow()
        _commit_change(
            db,
            admin_id=admin_id,
            action="payout_slab_updated",
            target_id=str(slab.id),
            details={"before": before, "after": changes},
            ip_address=ip_address,
        )
    db.refresh(slab)
    logger.info("Payout slab updated | slab_id=%s | admin_id=%s | fields=%s", slab.id, admin_id, ",".join(sorted(changes)))
    return slab


def deactivate_slab(
    db: Session,
    *,
    admin_id: str,
    slab_id: uuid.UUID,
    ip_address: str | None = None,
) -> models.PayoutSlab:
    return update_slab(db, admin_id=admin_id, slab_id=slab_id, changes={"is_active": False}, ip_address=ip_address)


def replace_slabs(
    db: Session,
    *,
    admin_id: str,
    slabs: list[dict[str, Any]],
    ip_address: str | None = None,
) -> list[models.PayoutSlab]:
    """Swap the whole active set in one commit."""
    candidates = [
        SlabInfo(
            id=None,
            min_coins=item["min_coins"],
            max_coins=item.get("max_coins"),
            payout_percentage=item["payout_percentage"],
            display_order=item.get("display_order", index),
        )
        for index, item in enumerate(slabs)
    ]
    with _write_lock:
        try:
            ordered = validate_slab_set(candidates)
            previous = _locked_active_rows(db)
        except Exception:
            db.rollback()
            raise

        now = models.utcnow()
        for row in previous:
            row.is_active = False
            row.updated_at = now
        created = [
            models.PayoutSlab(
                id=uuid.uuid4(),
                min_coins=item.min_coins,
                max_coins=item.max_coins,
                payout_percentage=item.payout_percentage,
                display_order=item.display_order,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            for item in ordered
        ]
        db.add_all(created)
        _commit_change(
            db,
            admin_id=admin_id,
            action="payout_slabs_replaced",
            target_id=None,
            details={
                "deactivated": [str(row.id) for row in previous],
                "slabs": [
                    {"min_coins": s.min_coins, "max_coins": s.max_coins, "payout_percentage": s.payout_percentage}
                    for s in ordered
                ],
            },
            ip_address=ip_address,
        )
    for row in created:
        db.refresh(row)
    logger.info("Payout slabs replaced | admin_id=%s | count=%s", admin_id, len(created))
    return created
