"""Stripe integration: checkout, cancellation and subscription webhooks.

Only the plan outcome of each flow matters to metering; every path that
changes a company's plan goes through ``apply_plan_change``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..logging_utils import redact_dict, redact_secrets
from ..models import Company
from ..settings import BillingSettings, StripeSettings, get_billing_settings, get_stripe_settings
from .errors import BillingFeatureDisabled
from .plans import apply_plan_change
from .types import Plan

logger = logging.getLogger(__name__)


class StripeNotConfigured(RuntimeError):
    """Required Stripe settings are missing."""


def get_stripe_client(stripe_settings: StripeSettings | None = None):
    """Configure the stripe module with the secret key and a bounded HTTP timeout."""
    stripe_settings = stripe_settings or get_stripe_settings()
    if not stripe_settings.stripe_secret_key:
        raise StripeNotConfigured("STRIPE_SECRET_KEY not configured")

    stripe.api_key = stripe_settings.stripe_secret_key
    stripe.default_http_client = stripe.RequestsClient(timeout=stripe_settings.stripe_timeout_seconds)
    return stripe


def create_checkout_session(
    db: Session,
    company: Company,
    *,
    user_email: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    origin: Optional[str] = None,
    billing: BillingSettings | None = None,
    stripe_settings: StripeSettings | None = None,
) -> Dict[str, Any]:
    """Create a PRO subscription Checkout Session, creating the customer first if needed."""
    billing = billing or get_billing_settings()
    stripe_settings = stripe_settings or get_stripe_settings()
    if not billing.feature_stripe:
        raise BillingFeatureDisabled("stripe")
    if not stripe_settings.stripe_secret_key or not stripe_settings.stripe_price_pro_monthly:
        raise StripeNotConfigured("Stripe checkout settings are incomplete")

    client = get_stripe_client(stripe_settings)
    base_url = (stripe_settings.app_base_url or origin or "").rstrip("/")

    if not company.stripe_customer_id:
        customer = client.Customer.create(
            email=user_email,
            metadata={"company_id": company.id},
        )
        company.stripe_customer_id = customer.id
        db.commit()
        logger.info("Created Stripe customer %s for company %s", customer.id, company.id)

    session = client.checkout.Session.create(
        mode="subscription",
        success_url=f"{base_url}/dashboard?upgrade=success",
        cancel_url=f"{base_url}/dashboard?upgrade=cancel",
        customer=company.stripe_customer_id,
        client_reference_id=company.id,
        line_items=[{"price": stripe_settings.stripe_price_pro_monthly, "quantity": 1}],
        allow_promotion_codes=True,
        idempotency_key=idempotency_key or f"checkout:{company.id}",
    )
    return {"url": session.url}


def _downgrade_to_free(db: Session, company_id: str, actor: str) -> None:
    apply_plan_change(
        db,
        company_id,
        Plan.FREE,
        subscription_status="canceled",
        stripe_subscription_id=None,
        actor=actor,
    )


def cancel_subscription(
    db: Session,
    company: Company,
    *,
    actor: str = "system",
    billing: BillingSettings | None = None,
    stripe_settings: StripeSettings | None = None,
) -> Dict[str, Any]:
    """Cancel immediately. The company ends up on FREE whatever Stripe answers."""
    billing = billing or get_billing_settings()
    stripe_settings = stripe_settings or get_stripe_settings()
    subscription_id = company.stripe_subscription_id
    company_id = company.id

    if not billing.feature_stripe or not stripe_settings.stripe_secret_key or not subscription_id:
        _downgrade_to_free(db, company_id, actor)
        return {"ok": True, "localOnly": True}

    try:
        client = get_stripe_client(stripe_settings)
        client.Subscription.cancel(subscription_id)
    except stripe.APIConnectionError as exc:
        logger.error("Stripe cancel timed out or unreachable for %s: %s", company_id, redact_secrets(str(exc)))
        _downgrade_to_free(db, company_id, actor)
        return {"ok": True, "stripeTimeout": True}
    except stripe.StripeError as exc:
        logger.error("Stripe immediate cancel error for %s: %s", company_id, redact_secrets(str(exc)))
        _downgrade_to_free(db, company_id, actor)
        return {"ok": True, "stripeError": True}

    _downgrade_to_free(db, company_id, actor)
    return {"ok": True}


def _company_by(db: Session, column, value: str | None) -> Company | None:
    if not value:
        return None
    return db.execute(select(Company).where(column == value)).scalars().first()


def handle_webhook(
    db: Session,
    payload: str,
    signature: str,
    *,
    billing: BillingSettings | None = None,
    stripe_settings: StripeSettings | None = None,
) -> Dict[str, Any]:
    """Verify a Stripe webhook and apply the plan change it describes."""
    billing = billing or get_billing_settings()
    stripe_settings = stripe_settings or get_stripe_settings()
    if not billing.feature_stripe:
        raise BillingFeatureDisabled("stripe")
    webhook_secret = stripe_settings.stripe_webhook_secret
    if not webhook_secret:
        raise StripeNotConfigured("STRIPE_WEBHOOK_SECRET not configured")

    try:
        stripe.WebhookSignature.verify_header(payload, signature, webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE)
    except stripe.SignatureVerificationError as e:
        raise ValueError(f"Invalid signature: {e}")
    try:
        event = json.loads(payload)
    except ValueError as e:
        raise ValueError(f"Invalid payload: {e}")

    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        company_id = obj.get("client_reference_id")
        if not company_id:
            logger.error("checkout.session.completed without client_reference_id: %s", redact_dict(obj))
            return {"status": "ignored", "event_type": event_type}
        company = apply_plan_change(
            db,
            company_id,
            Plan.PRO,
            subscription_status="active",
            stripe_customer_id=obj.get("customer"),
            stripe_subscription_id=obj.get("subscription"),
            actor="stripe",
        )
        if company is None:
            return {"status": "ignored", "event_type": event_type}
        return {"status": "success", "company_id": company_id, "plan": Plan.PRO.value}

    if event_type == "customer.subscription.deleted":
        company = _company_by(db, Company.stripe_subscription_id, obj.get("id")) or _company_by(
            db, Company.stripe_customer_id, obj.get("customer")
        )
        if company is None:
            logger.warning("Subscription deleted for unknown company (sub=%s)", obj.get("id"))
            return {"status": "ignored", "event_type": event_type}
        _downgrade_to_free(db, company.id, "stripe")
        return {"status": "success", "company_id": company.id, "plan": Plan.FREE.value}

    if event_type == "customer.subscription.updated":
        status = obj.get("status")
        company = _company_by(db, Company.stripe_subscription_id, obj.get("id"))
        if company is None or not status:
            return {"status": "ignored", "event_type": event_type}
        apply_plan_change(
            db,
            company.id,
            Plan.PRO if status == "active" else None,
            subscription_status=status,
            actor="stripe",
        )
        return {"status": "success", "company_id": company.id, "subscription_status": status}

    logger.info("Unhandled Stripe event: %s", event_type)
    return {"status": "ignored", "event_type": event_type}
