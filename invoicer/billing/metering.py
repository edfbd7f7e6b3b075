"""Quota guard: atomic check-and-consume, read-only peek, and limit reconciliation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from opentelemetry import trace
from sqlalchemy import case, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import UsageCounter
from ..settings import BillingSettings, get_billing_settings
from .counters import (
    apply_plan_limits,
    find_counter,
    get_company_plan,
    get_or_init_counter,
    insert_counter,
    is_stale,
    snapshot,
)
from .errors import UsageStoreError
from .limits import billing_now, period_for_metric, period_key
from .logger import log_usage
from .types import BlockReason, GuardResult, Metric, UsageSummary, UsageSummaryItem

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _normalize_increment(increment: int | float) -> int:
    try:
        step = int(increment)
    except (TypeError, ValueError):
        return 1
    return max(1, step)


def _consume_hard(db: Session, counter_id: str, step: int) -> bool:
    """used += step, only while it stays within limit."""
    result = db.execute(
        update(UsageCounter)
        .where(UsageCounter.id == counter_id, UsageCounter.used + step <= UsageCounter.limit)
        .values(used=UsageCounter.used + step)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _consume_with_grace(db: Session, counter_id: str, step: int) -> bool:
    """Fill what is left of the hard allowance, put the rest on grace_used."""
    hard_room = case(
        (UsageCounter.limit > UsageCounter.used, UsageCounter.limit - UsageCounter.used),
        else_=0,
    )
    from_hard = case((hard_room >= step, step), else_=hard_room)
    result = db.execute(
        update(UsageCounter)
        .where(
            UsageCounter.id == counter_id,
            hard_room + UsageCounter.grace_limit - UsageCounter.grace_used >= step,
        )
        .values(
            used=UsageCounter.used + from_hard,
            grace_used=UsageCounter.grace_used + (step - from_hard),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def check_and_consume(
    db: Session,
    tenant_id: str,
    metric: Metric,
    increment: int = 1,
    *,
    now: datetime | None = None,
    settings: BillingSettings | None = None,
) -> GuardResult:
    """Count ``increment`` units against the tenant's current period, if room remains.

    Each mutation is a single conditional UPDATE evaluated by the database, so
    concurrent callers can never push ``used`` past ``limit`` or ``grace_used``
    past ``grace_limit``. A denied call leaves the counter untouched.
    """
    settings = settings or get_billing_settings()
    metric = Metric(metric)
    if not settings.enabled:
        return GuardResult(allowed=True, warn=False)

    step = _normalize_increment(increment)
    with tracer.start_as_current_span("billing.check_and_consume") as span:
        span.set_attribute("billing.tenant_id", tenant_id)
        span.set_attribute("billing.metric", metric.value)
        span.set_attribute("billing.increment", step)

        counter = get_or_init_counter(db, tenant_id, metric, now=now, settings=settings)
        counter_id, period, key = counter.id, counter.period, counter.period_key

        try:
            allowed = _consume_hard(db, counter_id, step)
            touched_grace = False
            if not allowed:
                allowed = _consume_with_grace(db, counter_id, step)
                touched_grace = allowed
            current = find_counter(db, tenant_id, metric, period, key)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Usage consume failed for tenant %s: %s", tenant_id, exc)
            raise UsageStoreError(f"usage counter store unavailable for tenant {tenant_id}") from exc

        if current is None:
            raise UsageStoreError(f"usage counter for tenant {tenant_id} disappeared during consume")

        usage = snapshot(current, settings)
        if allowed:
            result = GuardResult(allowed=True, warn=usage.warn or touched_grace, usage=usage)
            span.set_attribute("billing.grace", touched_grace)
        else:
            result = GuardResult(
                allowed=False,
                warn=False,
                blocked_reason=BlockReason.LIMIT_REACHED,
                usage=usage,
            )
        span.set_attribute("billing.allowed", result.allowed)

    log_usage(tenant_id, metric, usage.plan_at_that_time, result, "consume" if allowed else "block")
    return result


def peek_usage(
    db: Session,
    tenant_id: str,
    metric: Metric,
    increment: int = 1,
    *,
    now: datetime | None = None,
    settings: BillingSettings | None = None,
) -> GuardResult:
    """Would ``increment`` units fit right now? Advisory: nothing is reserved."""
    settings = settings or get_billing_settings()
    metric = Metric(metric)
    if not settings.enabled:
        return GuardResult(allowed=True, warn=False)

    step = _normalize_increment(increment)
    with tracer.start_as_current_span("billing.peek_usage") as span:
        span.set_attribute("billing.tenant_id", tenant_id)
        span.set_attribute("billing.metric", metric.value)
        counter = get_or_init_counter(db, tenant_id, metric, now=now, settings=settings)
        usage = snapshot(counter, settings)
        if usage.remaining >= step:
            result = GuardResult(allowed=True, warn=usage.warn, usage=usage)
        else:
            result = GuardResult(
                allowed=False,
                warn=False,
                blocked_reason=BlockReason.LIMIT_REACHED,
                usage=usage,
            )
        span.set_attribute("billing.allowed", result.allowed)

    log_usage(tenant_id, metric, usage.plan_at_that_time, result, "check")
    return result


def reconcile_current_period(
    db: Session,
    tenant_id: str,
    metrics: Iterable[Metric] | None = None,
    *,
    now: datetime | None = None,
    settings: BillingSettings | None = None,
) -> list[UsageCounter]:
    """Re-apply the tenant's current plan limits to this period's counters.

    Called on every plan change so upgrades and downgrades take effect
    immediately instead of at the next period boundary. ``used`` and
    ``grace_used`` are never touched.
    """
    settings = settings or get_billing_settings()
    metrics = [Metric(m) for m in (metrics or [Metric.DOCUMENT_CREATE])]
    now = now or billing_now(settings)

    counters: list[UsageCounter] = []
    try:
        plan = get_company_plan(db, tenant_id)
        for metric in metrics:
            period = period_for_metric(metric)
            key = period_key(period, now)
            existing = find_counter(db, tenant_id, metric, period, key)
            if existing is None:
                existing = insert_counter(db, tenant_id, metric, period, key, plan, settings)
                if not is_stale(existing, plan, settings):
                    counters.append(existing)
                    continue
            counters.append(apply_plan_limits(db, existing, plan, settings))
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Limit reconciliation failed for tenant %s: %s", tenant_id, exc)
        raise UsageStoreError(f"usage counter store unavailable for tenant {tenant_id}") from exc

    logger.info(
        "Reconciled current period limits tenant=%s plan=%s metrics=%s",
        tenant_id,
        plan.value,
        ",".join(m.value for m in metrics),
    )
    return counters


def get_usage_summary(
    db: Session,
    tenant_id: str,
    *,
    now: datetime | None = None,
    settings: BillingSettings | None = None,
) -> UsageSummary:
    settings = settings or get_billing_settings()
    # get_or_init_counter heals the row, so its plan is the tenant's current plan.
    counter = get_or_init_counter(db, tenant_id, Metric.DOCUMENT_CREATE, now=now, settings=settings)
    usage = snapshot(counter, settings)
    return UsageSummary(
        plan=usage.plan_at_that_time,
        monthly_documents=UsageSummaryItem(
            used=usage.used,
            limit=usage.limit,
            remaining=usage.remaining,
            warn=usage.warn,
        ),
    )
