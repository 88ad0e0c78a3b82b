
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import catalog, schemas, services
from ..database import get_db
from ..dependencies import AuthContext, current_user_dep
from ..limiter import limiter
from .serializers import serialize_plan, serialize_transaction

router = APIRouter(prefix="/v1/coins", tags=["coins"])


@router.get("/plans", response_model=schemas.CoinPlanListResponse)
def list_coin_plans(db: Session = Depends(get_db)):
    return schemas.CoinPlanListResponse(items=[serialize_plan(plan) for plan in catalog.get_active_plans(db)])


@router.post("/purchase", response_model=schemas.TransactionResponse)
@limiter.limit("20/minute")
def purchase_coins(
    request: Request,
    payload: schemas.CoinPurchaseRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(current_user_dep),
):
    entry = services.purchase_plan(
        db,
        user_id=auth.actor_id,
        plan_id=payload.plan_id,
        payment_reference=payload.payment_reference,
        ip_address=auth.ip_address,
    )
    return serialize_transaction(entry)
