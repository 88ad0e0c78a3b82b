from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import ledger, schemas, services
from ..database import get_db
from ..dependencies import AuthContext, current_user_dep
from .serializers import serialize_transaction

router = APIRouter(prefix="/v1/wallet", tags=["wallet"])


@router.get("/balance", response_model=schemas.BalanceResponse)
def get_balance(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    account = ledger.get_account(db, auth.actor_id)
    return schemas.BalanceResponse(
        user_id=auth.actor_id,
        balance=account.balance if account else 0,
        held_amount=account.held_amount if account else 0,
    )


@router.get("/transactions", response_model=schemas.TransactionListResponse)
def list_wallet_transactions(
    tx_type: schemas.TransactionType | None = Query(default=None, alias="type"),
    direction: schemas.Direction | None = None,
    status: schemas.TransactionStatus | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    filters = {"user_id": auth.actor_id, "tx_type": tx_type, "direction": direction, "status": status}
    entries = ledger.list_transactions(db, limit=limit, offset=offset, **filters)
    return schemas.TransactionListResponse(
        items=[serialize_transaction(entry) for entry in entries],
        total=ledger.count_transactions(db, **filters),
        limit=limit,
        offset=offset,
    )


@router.get("/earnings", response_model=schemas.EarningsResponse)
def get_earnings(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    summary = services.earnings_summary(db, user_id=auth.actor_id)
    return schemas.EarningsResponse(
        total_earned=summary.total_earned,
        by_type=summary.by_type,
        last_24h=summary.last_24h,
        last_7d=summary.last_7d,
        last_30d=summary.last_30d,
        pending_gift_value=summary.pending_gift_value,
        pending_gift_count=summary.pending_gift_count,
        balance=summary.balance,
        held_amount=summary.held_amount,
    )
