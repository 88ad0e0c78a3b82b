from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import catalog, schemas, services
from ..database import get_db
from ..dependencies import AuthContext, current_user_dep
from ..limiter import limiter
from .serializers import serialize_gift, serialize_transaction

router = APIRouter(prefix="/v1/gifts", tags=["gifts"])


@router.get("", response_model=schemas.GiftListResponse)
def list_gifts(db: Session = Depends(get_db)):
    return schemas.GiftListResponse(items=[serialize_gift(gift) for gift in catalog.list_active_gifts(db)])


@router.get("/received", response_model=schemas.PendingGiftListResponse)
def list_received_gifts(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    pending = services.list_pending_gifts(db, user_id=auth.actor_id)
    return schemas.PendingGiftListResponse(
        items=[serialize_transaction(entry) for entry in pending],
        total_value=sum(entry.amount_coins for entry in pending),
    )


@router.post("/trade", response_model=schemas.GiftTradeResponse)
@limiter.limit("20/minute")
def trade_gifts(
    request: Request,
    payload: schemas.GiftTradeRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    result = services.trade_gifts(
        db,
        user_id=auth.actor_id,
        transaction_ids=payload.transaction_ids,
        ip_address=auth.ip_address,
    )
    return schemas.GiftTradeResponse(
        traded=[serialize_transaction(entry) for entry in result.traded],
        coins_credited=result.coins_credited,
        balance=result.balance,
    )


@router.post("/{gift_id}/send", response_model=schemas.GiftSendResponse)
@limiter.limit("60/minute")
def send_gift(
    request: Request,
    gift_id: UUID,
    payload: schemas.GiftSendRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    delivery = services.send_gift(
        db,
        sender_id=auth.actor_id,
        recipient_id=payload.recipient_id,
        gift_id=gift_id,
        chat_id=payload.chat_id,
    )
    return schemas.GiftSendResponse(
        gift=serialize_gift(delivery.gift),
        sent=serialize_transaction(delivery.sent),
        received=serialize_transaction(delivery.received) if delivery.received else None,
    )
