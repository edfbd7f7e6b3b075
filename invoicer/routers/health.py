from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..db import get_db
from ..settings import get_billing_settings

router = APIRouter()


@router.get("/healthz")
def healthcheck() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
def readiness(db: Session = Depends(get_db)) -> dict:
    db.execute(text("SELECT 1"))
    billing = get_billing_settings()
    return {"ok": True, "billing": billing.enabled, "stripe": billing.feature_stripe}
