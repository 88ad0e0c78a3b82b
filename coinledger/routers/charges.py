from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from .. import schemas, services
from ..database import get_db
from ..dependencies import AuthContext, current_user_dep
from ..errors import ValidationError
from ..limiter import limiter
from .serializers import serialize_transaction

router = APIRouter(prefix="/v1", tags=["charges"])


def _serialize_transfer(transfer: services.Transfer) -> schemas.TransferResponse:
    return schemas.TransferResponse(
        debit=serialize_transaction(transfer.debit),
        credit=serialize_transaction(transfer.credit),
    )


def _recipient_tier(auth: AuthContext, header_tier: str | None, body_tier: str | None) -> str:
    """The gateway states the recipient tier in a header; the body value is a dev-auth fallback."""
    tier = header_tier if auth.validated_via_gateway else (header_tier or body_tier)
    if not tier:
        raise ValidationError("X-Recipient-Tier is required", details={"field": "recipient_tier"})
    return tier


@router.post("/messages/{chat_id}/send", response_model=schemas.TransferResponse)
@limiter.limit("120/minute")
def charge_message(
    request: Request,
    chat_id: str,
    payload: schemas.MessageChargeRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
    x_recipient_tier: str | None = Header(default=None, alias="X-Recipient-Tier"),
):
    transfer = services.charge_message(
        db,
        sender_id=auth.actor_id,
        recipient_id=payload.recipient_id,
        recipient_tier=_recipient_tier(auth, x_recipient_tier, payload.recipient_tier),
        chat_id=chat_id,
        message_id=payload.message_id,
    )
    return _serialize_transfer(transfer)


@router.post("/calls/{call_id}/charge", response_model=schemas.TransferResponse)
@limiter.limit("30/minute")
def charge_video_call(
    request: Request,
    call_id: str,
    payload: schemas.VideoCallChargeRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    transfer = services.charge_video_call(
        db,
        caller_id=auth.actor_id,
        recipient_id=payload.recipient_id,
        call_id=call_id,
    )
    return _serialize_transfer(transfer)
