from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from .. import schemas, withdrawals
from ..database import get_db
from ..dependencies import AuthContext, current_user_dep
from ..errors import NotFound
from ..limiter import limiter
from .serializers import serialize_withdrawal

router = APIRouter(prefix="/v1/withdrawals", tags=["withdrawals"])


@router.post("", response_model=schemas.WithdrawalResponse)
@limiter.limit("10/minute")
def create_withdrawal(
    request: Request,
    payload: schemas.WithdrawalCreateRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    created = withdrawals.create(
        db,
        user_id=auth.actor_id,
        coins_requested=payload.coins_requested,
        payout_method=payload.payout_method,
        payout_details=payload.payout_details.model_dump(exclude_none=True),
        ip_address=auth.ip_address,
    )
    return serialize_withdrawal(created)


@router.get("", response_model=schemas.WithdrawalListResponse)
def list_my_withdrawals(
    status: schemas.WithdrawalStatus | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    items = withdrawals.list_requests(db, user_id=auth.actor_id, status=status, limit=limit, offset=offset)
    return schemas.WithdrawalListResponse(
        items=[serialize_withdrawal(item) for item in items],
        total=withdrawals.count_requests(db, user_id=auth.actor_id, status=status),
        limit=limit,
        offset=offset,
    )


@router.get("/{request_id}", response_model=schemas.WithdrawalResponse)
def get_my_withdrawal(
    request_id: UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    found = withdrawals.get_request(db, request_id)
    if found.user_id != auth.actor_id:
        raise NotFound("Withdrawal request not found", details={"request_id": str(request_id)})
    return serialize_withdrawal(found)


@router.patch("/{request_id}/cancel", response_model=schemas.WithdrawalResponse)
@limiter.limit("20/minute")
def cancel_withdrawal(
    request: Request,
    request_id: UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    cancelled = withdrawals.cancel(db, request_id=request_id, user_id=auth.actor_id, ip_address=auth.ip_address)
    return serialize_withdrawal(cancelled)
