"""Per-tenant usage counter rows: lazy creation and limit self-healing.

A counter is identified by (tenant, period, period key, metric) and guarded by
a unique constraint. Creation is an optimistic INSERT; losing the race to a
concurrent request surfaces as an IntegrityError, which is treated as success
followed by a re-read. Limits are re-derived from the tenant's current plan on
every read, so a plan change is picked up even if nobody reconciled it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Company, UsageCounter
from ..settings import BillingSettings, get_billing_settings
from .errors import UsageStoreError
from .limits import billing_now, grace_for, limit_for, period_for_metric, period_key, warn_floor
from .types import Metric, Period, Plan, UsageSnapshot

logger = logging.getLogger(__name__)


def counter_key(tenant_id: str, metric: Metric, period: Period, key: str):
    return and_(
        UsageCounter.tenant_id == tenant_id,
        UsageCounter.period == period,
        UsageCounter.period_key == key,
        UsageCounter.metric == metric,
    )


def find_counter(db: Session, tenant_id: str, metric: Metric, period: Period, key: str) -> UsageCounter | None:
    stmt = (
        select(UsageCounter)
        .where(counter_key(tenant_id, metric, period, key))
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def get_company_plan(db: Session, tenant_id: str) -> Plan:
    """Current plan of the tenant. Unknown tenants are metered as FREE."""
    plan = db.scalar(select(Company.plan).where(Company.id == tenant_id))
    return Plan(plan) if plan else Plan.FREE


def insert_counter(
    db: Session,
    tenant_id: str,
    metric: Metric,
    period: Period,
    key: str,
    plan: Plan,
    settings: BillingSettings,
) -> UsageCounter:
    """INSERT a zero-usage counter, or return the row a concurrent request created."""
    counter = UsageCounter(
        tenant_id=tenant_id,
        metric=metric,
        period=period,
        period_key=key,
        used=0,
        limit=limit_for(plan, metric, settings),
        grace_limit=grace_for(metric, settings),
        grace_used=0,
        plan_at_that_time=plan,
    )
    db.add(counter)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Usage counter already created for %s %s %s", tenant_id, metric.value, key)
        existing = find_counter(db, tenant_id, metric, period, key)
        if existing is None:
            raise UsageStoreError(
                f"failed to create or find usage counter for tenant {tenant_id}, metric {metric.value}"
            )
        return existing

    logger.info(
        "Created usage counter tenant=%s metric=%s period_key=%s limit=%s plan=%s",
        tenant_id,
        metric.value,
        key,
        counter.limit,
        plan.value,
    )
    return find_counter(db, tenant_id, metric, period, key) or counter


def apply_plan_limits(
    db: Session,
    counter: UsageCounter,
    plan: Plan,
    settings: BillingSettings,
) -> UsageCounter:
    """Overwrite limit, grace limit and plan on a counter. Usage is left as is."""
    counter_id = counter.id
    tenant_id, metric, period, key = counter.tenant_id, counter.metric, counter.period, counter.period_key
    old_limit, old_plan = counter.limit, counter.plan_at_that_time
    limit = limit_for(plan, metric, settings)
    grace_limit = grace_for(metric, settings)
    db.execute(
        update(UsageCounter)
        .where(UsageCounter.id == counter_id)
        .values(limit=limit, grace_limit=grace_limit, plan_at_that_time=plan)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info(
        "Adjusted usage counter tenant=%s metric=%s period_key=%s limit=%s->%s plan=%s->%s",
        tenant_id,
        metric.value,
        key,
        old_limit,
        limit,
        old_plan.value,
        plan.value,
    )
    refreshed = find_counter(db, tenant_id, metric, period, key)
    if refreshed is None:
        raise UsageStoreError(f"usage counter {counter_id} vanished during limit update")
    return refreshed


def is_stale(counter: UsageCounter, plan: Plan, settings: BillingSettings) -> bool:
    return (
        counter.plan_at_that_time != plan
        or counter.limit != limit_for(plan, counter.metric, settings)
        or counter.grace_limit != grace_for(counter.metric, settings)
    )


def get_or_init_counter(
    db: Session,
    tenant_id: str,
    metric: Metric,
    period: Period | None = None,
    now: datetime | None = None,
    settings: BillingSettings | None = None,
) -> UsageCounter:
    """Return the counter for the period containing ``now``, creating or healing it."""
    settings = settings or get_billing_settings()
    period = period or period_for_metric(metric)
    now = now or billing_now(settings)
    key = period_key(period, now)

    try:
        counter = find_counter(db, tenant_id, metric, period, key)
        plan = get_company_plan(db, tenant_id)
        if counter is None:
            counter = insert_counter(db, tenant_id, metric, period, key, plan, settings)
        if is_stale(counter, plan, settings):
            counter = apply_plan_limits(db, counter, plan, settings)
        return counter
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Usage counter store failure for tenant %s: %s", tenant_id, exc)
        raise UsageStoreError(f"usage counter store unavailable for tenant {tenant_id}") from exc


def snapshot(counter: UsageCounter, settings: BillingSettings) -> UsageSnapshot:
    hard_remaining = max(0, counter.limit - counter.used)
    grace_remaining = max(0, counter.grace_limit - counter.grace_used)
    warn = counter.limit > 0 and counter.used >= warn_floor(counter.limit, settings)
    return UsageSnapshot(
        period=counter.period,
        period_key=counter.period_key,
        metric=counter.metric,
        used=counter.used,
        limit=counter.limit,
        remaining=hard_remaining + grace_remaining,
        grace_limit=counter.grace_limit,
        grace_used=counter.grace_used,
        plan_at_that_time=counter.plan_at_that_time,
        warn=warn,
    )
