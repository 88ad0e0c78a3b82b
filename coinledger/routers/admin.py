from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import audit, catalog, ledger, schemas, services, slabs, withdrawals
from ..database import get_db
from ..dependencies import AuthContext, current_admin_dep
from .serializers import (
    serialize_audit_entry,
    serialize_gift,
    serialize_plan,
    serialize_settings,
    serialize_slab,
    serialize_transaction,
    serialize_withdrawal,
)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


# Coin plans


@router.get("/coin-economy/plans", response_model=schemas.CoinPlanListResponse)
def list_plans(
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    return schemas.CoinPlanListResponse(items=[serialize_plan(plan) for plan in catalog.list_plans(db)])


@router.post("/coin-economy/plans", response_model=schemas.CoinPlanResponse)
def create_plan(
    payload: schemas.CoinPlanCreateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    plan = catalog.create_plan(db, admin_id=admin.actor_id, ip_address=admin.ip_address, **payload.model_dump())
    return serialize_plan(plan)


@router.patch("/coin-economy/plans/{plan_id}", response_model=schemas.CoinPlanResponse)
def update_plan(
    plan_id: UUID,
    payload: schemas.CoinPlanUpdateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    plan = catalog.update_plan(
        db,
        admin_id=admin.actor_id,
        plan_id=plan_id,
        changes=payload.model_dump(exclude_unset=True),
        ip_address=admin.ip_address,
    )
    return serialize_plan(plan)


@router.delete("/coin-economy/plans/{plan_id}", response_model=schemas.CoinPlanResponse)
def deactivate_plan(
    plan_id: UUID,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    plan = catalog.deactivate_plan(db, admin_id=admin.actor_id, plan_id=plan_id, ip_address=admin.ip_address)
    return serialize_plan(plan)


# Payout slabs


@router.get("/coin-economy/slabs", response_model=schemas.SlabListResponse)
def list_slabs(
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    return schemas.SlabListResponse(items=[serialize_slab(slab) for slab in slabs.list_slabs(db)])


@router.post("/coin-economy/slabs", response_model=schemas.SlabResponse)
def create_slab(
    payload: schemas.SlabCreateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    slab = slabs.create_slab(db, admin_id=admin.actor_id, ip_address=admin.ip_address, **payload.model_dump())
    return serialize_slab(slab)


@router.put("/coin-economy/slabs", response_model=schemas.SlabListResponse)
def replace_slabs(
    payload: schemas.SlabReplaceRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    created = slabs.replace_slabs(
        db,
        admin_id=admin.actor_id,
        slabs=[item.model_dump(exclude_none=True) | {"max_coins": item.max_coins} for item in payload.slabs],
        ip_address=admin.ip_address,
    )
    return schemas.SlabListResponse(items=[serialize_slab(slab) for slab in created])


@router.patch("/coin-economy/slabs/{slab_id}", response_model=schemas.SlabResponse)
def update_slab(
    slab_id: UUID,
    payload: schemas.SlabUpdateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    slab = slabs.update_slab(
        db,
        admin_id=admin.actor_id,
        slab_id=slab_id,
        changes=payload.model_dump(exclude_unset=True),
        ip_address=admin.ip_address,
    )
    return serialize_slab(slab)


@router.delete("/coin-economy/slabs/{slab_id}", response_model=schemas.SlabResponse)
def deactivate_slab(
    slab_id: UUID,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    slab = slabs.deactivate_slab(db, admin_id=admin.actor_id, slab_id=slab_id, ip_address=admin.ip_address)
    return serialize_slab(slab)


# Gifts


@router.get("/coin-economy/gifts", response_model=schemas.GiftListResponse)
def list_gifts(
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    return schemas.GiftListResponse(items=[serialize_gift(gift) for gift in catalog.list_gifts(db)])


@router.post("/coin-economy/gifts", response_model=schemas.GiftResponse)
def create_gift(
    payload: schemas.GiftCreateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    gift = catalog.create_gift(db, admin_id=admin.actor_id, ip_address=admin.ip_address, **payload.model_dump())
    return serialize_gift(gift)


@router.patch("/coin-economy/gifts/{gift_id}", response_model=schemas.GiftResponse)
def update_gift(
    gift_id: UUID,
    payload: schemas.GiftUpdateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    gift = catalog.update_gift(
        db,
        admin_id=admin.actor_id,
        gift_id=gift_id,
        changes=payload.model_dump(exclude_unset=True),
        ip_address=admin.ip_address,
    )
    return serialize_gift(gift)


@router.delete("/coin-economy/gifts/{gift_id}", response_model=schemas.GiftResponse)
def deactivate_gift(
    gift_id: UUID,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    gift = catalog.deactivate_gift(db, admin_id=admin.actor_id, gift_id=gift_id, ip_address=admin.ip_address)
    return serialize_gift(gift)


# Economy settings


@router.get("/settings", response_model=schemas.EconomySettingsResponse)
def get_settings(
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    return serialize_settings(catalog.get_economy_settings(db))


@router.patch("/settings", response_model=schemas.EconomySettingsResponse)
def update_settings(
    payload: schemas.EconomySettingsUpdateRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    config = catalog.update_economy_settings(
        db,
        admin_id=admin.actor_id,
        changes=payload.model_dump(exclude_unset=True),
        ip_address=admin.ip_address,
    )
    return serialize_settings(config)


# Withdrawals


@router.get("/withdrawals", response_model=schemas.WithdrawalListResponse)
def list_withdrawals(
    status: schemas.WithdrawalStatus | None = None,
    user_id: str | None = Query(default=None, max_length=64),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    items = withdrawals.list_requests(db, user_id=user_id, status=status, limit=limit, offset=offset)
    return schemas.WithdrawalListResponse(
        items=[serialize_withdrawal(item) for item in items],
        total=withdrawals.count_requests(db, user_id=user_id, status=status),
        limit=limit,
        offset=offset,
    )


@router.patch("/withdrawals/{request_id}/approve", response_model=schemas.WithdrawalResponse)
def approve_withdrawal(
    request_id: UUID,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    approved = withdrawals.approve(db, request_id=request_id, admin_id=admin.actor_id, ip_address=admin.ip_address)
    return serialize_withdrawal(approved)


@router.patch("/withdrawals/{request_id}/reject", response_model=schemas.WithdrawalResponse)
def reject_withdrawal(
    request_id: UUID,
    payload: schemas.WithdrawalRejectRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    rejected = withdrawals.reject(
        db,
        request_id=request_id,
        admin_id=admin.actor_id,
        reason=payload.reason,
        ip_address=admin.ip_address,
    )
    return serialize_withdrawal(rejected)


@router.patch("/withdrawals/{request_id}/paid", response_model=schemas.WithdrawalResponse)
def mark_withdrawal_paid(
    request_id: UUID,
    payload: schemas.WithdrawalPaidRequest | None = None,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    paid = withdrawals.mark_paid(
        db,
        request_id=request_id,
        admin_id=admin.actor_id,
        payment_reference=payload.payment_reference if payload else None,
        ip_address=admin.ip_address,
    )
    return serialize_withdrawal(paid)


# Ledger oversight


@router.get("/accounts/{user_id}", response_model=schemas.BalanceResponse)
def get_account(
    user_id: str,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    account = ledger.get_account(db, user_id)
    return schemas.BalanceResponse(
        user_id=user_id,
        balance=account.balance if account else 0,
        held_amount=account.held_amount if account else 0,
    )


@router.get("/transactions", response_model=schemas.TransactionListResponse)
def list_transactions(
    user_id: str | None = Query(default=None, max_length=64),
    tx_type: schemas.TransactionType | None = Query(default=None, alias="type"),
    direction: schemas.Direction | None = None,
    status: schemas.TransactionStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    filters = {"user_id": user_id, "tx_type": tx_type, "direction": direction, "status": status}
    entries = ledger.list_transactions(db, limit=limit, offset=offset, **filters)
    return schemas.TransactionListResponse(
        items=[serialize_transaction(entry) for entry in entries],
        total=ledger.count_transactions(db, **filters),
        limit=limit,
        offset=offset,
    )


@router.post("/adjustments", response_model=schemas.TransactionResponse)
def adjust_balance(
    payload: schemas.BalanceAdjustmentRequest,
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    entry = services.adjust_balance(
        db,
        admin_id=admin.actor_id,
        user_id=payload.user_id,
        amount=payload.amount,
        direction=payload.direction,
        reason=payload.reason,
        ip_address=admin.ip_address,
    )
    return serialize_transaction(entry)


@router.get("/audit-logs", response_model=schemas.AuditLogListResponse)
def list_audit_logs(
    actor_id: str | None = Query(default=None, max_length=64),
    action: str | None = Query(default=None, max_length=64),
    target_type: str | None = Query(default=None, max_length=32),
    target_id: str | None = Query(default=None, max_length=128),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: AuthContext = Depends(current_admin_dep),
):
    filters = {"actor_id": actor_id, "action": action, "target_type": target_type, "target_id": target_id}
    entries = audit.list_entries(db, limit=limit, offset=offset, **filters)
    return schemas.AuditLogListResponse(
        items=[serialize_audit_entry(entry) for entry in entries],
        total=audit.count_entries(db, **filters),
        limit=limit,
        offset=offset,
    )
