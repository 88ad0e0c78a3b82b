from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..database import get_db
from ..limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health")
@limiter.limit("60/minute")
def health(request: Request, db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True, "database": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
