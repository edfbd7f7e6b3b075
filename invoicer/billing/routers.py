"""Billing API routes."""

from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Company
from ..tenancy import require_company
from .metering import get_usage_summary, peek_usage
from .stripe_integ import StripeNotConfigured, cancel_subscription, create_checkout_session, handle_webhook
from .types import Metric

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

ACTIONS = {
    "document_create": Metric.DOCUMENT_CREATE,
    "pdf_generate": Metric.PDF_GENERATE,
}

INTERNAL_ERROR = {"error": "internal_error", "code": "INTERNAL_ERROR"}


@router.get("/usage/summary")
def usage_summary(
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
):
    """Plan and current monthly document usage for the caller's company."""
    return get_usage_summary(db, company.id).to_payload()


@router.get("/usage/check")
def usage_check(
    response: Response,
    action: str,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
):
    """Would one more ``action`` be allowed right now? Nothing is consumed."""
    metric = ACTIONS.get(action)
    if metric is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"unknown action {action!r}, expected one of {sorted(ACTIONS)}",
        )

    result = peek_usage(db, company.id, metric)
    if result.warn and result.usage is not None:
        response.headers["X-Usage-Warn"] = "true"
        response.headers["X-Usage-Remaining"] = str(result.usage.remaining)
    return result.to_payload()


@router.post("/checkout")
def checkout(
    request: Request,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="X-Idempotency-Key"),
):
    """Start a Stripe Checkout Session for the PRO plan."""
    try:
        return create_checkout_session(
            db,
            company,
            user_email=getattr(request.state, "user_email", None),
            idempotency_key=idempotency_key,
            origin=request.headers.get("origin"),
        )
    except StripeNotConfigured as exc:
        logger.error("Checkout unavailable: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout failed for %s: %s", company.id, exc.__class__.__name__)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)


@router.post("/cancel")
def cancel(
    request: Request,
    company: Company = Depends(require_company),
    db: Session = Depends(get_db),
):
    """Cancel the subscription now and drop the company to FREE."""
    return cancel_subscription(db, company, actor=getattr(request.state, "user_id", "system"))


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_signature: str = Header(..., alias="stripe-signature"),
):
    """Handle Stripe webhook events."""
    payload = await request.body()
    payload_str = payload.decode("utf-8")

    try:
        return handle_webhook(db, payload_str, stripe_signature)
    except StripeNotConfigured as exc:
        logger.error("Webhook rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
