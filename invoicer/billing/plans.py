"""Plan transitions for a company and the limit reconciliation they trigger."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..audit import write_audit
from ..models import Company
from ..settings import BillingSettings
from .metering import reconcile_current_period
from .types import Metric, Plan

logger = logging.getLogger(__name__)

_UNSET = object()


def apply_plan_change(
    db: Session,
    tenant_id: str,
    plan: Plan | None,
    *,
    subscription_status: str | None = None,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None | object = _UNSET,
    actor: str = "system",
    settings: BillingSettings | None = None,
) -> Company | None:
    """Record a plan/subscription change and re-apply limits for the current period.

    ``plan=None`` keeps the current plan (status-only updates). Passing
    ``stripe_subscription_id=None`` clears the stored subscription id.
    Returns ``None`` when the company does not exist.
    """
    company = db.get(Company, tenant_id)
    if company is None:
        logger.error("Plan change for unknown company %s", tenant_id)
        return None

    previous = company.plan
    if plan is not None:
        company.plan = Plan(plan)
    if subscription_status is not None:
        company.subscription_status = subscription_status
    if stripe_customer_id is not None:
        company.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id is not _UNSET:
        company.stripe_subscription_id = stripe_subscription_id
    db.commit()

    current = company.plan
    if plan is not None:
        reconcile_current_period(db, tenant_id, list(Metric), settings=settings)
        write_audit(
            db,
            actor_type="system" if actor == "system" else "user",
            actor_id=actor,
            tenant_id=tenant_id,
            action="billing.plan_change",
            resource_type="company",
            resource_id=tenant_id,
            payload={
                "from": previous.value,
                "to": current.value,
                "subscription_status": company.subscription_status,
            },
        )
        logger.info("Company %s plan %s -> %s", tenant_id, previous.value, current.value)
    return company
