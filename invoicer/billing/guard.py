"""Charging quota for resources created outside the counter's transaction.

Creating a document and counting it touch different rows, so callers use
``consume_for_created``: peek first to fail fast, create, charge, and delete
the new resource again if the charge is refused.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from ..settings import BillingSettings, get_billing_settings
from .errors import UsageLimitExceeded, UsageStoreError
from .metering import check_and_consume, peek_usage
from .types import GuardResult, Metric

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _compensate(compensate: Callable[[T], None], resource: T, tenant_id: str, metric: Metric) -> None:
    try:
        compensate(resource)
    except Exception:
        # Accepted orphan: the user already gets the failure response.
        logger.exception(
            "Compensating delete failed tenant=%s metric=%s resource=%r",
            tenant_id,
            metric.value,
            resource,
        )
    else:
        logger.info("Compensated resource %r for tenant %s after refused charge", resource, tenant_id)


def consume_for_created(
    db: Session,
    tenant_id: str,
    metric: Metric,
    *,
    create: Callable[[], T],
    compensate: Callable[[T], None],
    increment: int = 1,
    settings: BillingSettings | None = None,
) -> tuple[T, GuardResult]:
    """Create a resource and charge it, undoing the creation if the charge fails.

    Raises ``UsageLimitExceeded`` when the peek or the charge is denied, and
    re-raises ``UsageStoreError`` after compensating if the charge could not be
    recorded at all.
    """
    settings = settings or get_billing_settings()

    pre = peek_usage(db, tenant_id, metric, increment, settings=settings)
    if not pre.allowed:
        raise UsageLimitExceeded(pre)

    resource = create()

    try:
        result = check_and_consume(db, tenant_id, metric, increment, settings=settings)
    except UsageStoreError:
        _compensate(compensate, resource, tenant_id, metric)
        raise

    if not result.allowed:
        logger.warning("Lost quota race for tenant %s on %s, rolling back creation", tenant_id, metric.value)
        _compensate(compensate, resource, tenant_id, metric)
        raise UsageLimitExceeded(result)

    return resource, result


def usage_headers(result: GuardResult) -> dict[str, str]:
    """X-Usage-* response headers for a quota-consuming endpoint."""
    headers: dict[str, str] = {}
    if result.usage is None:
        return headers
    headers["X-Usage-Used"] = str(result.usage.used)
    headers["X-Usage-Remaining"] = str(result.usage.remaining)
    headers["X-Usage-Limit"] = str(result.usage.limit)
    if result.warn:
        headers["X-Usage-Warn"] = "true"
    return headers


def limit_exceeded_body(result: GuardResult, settings: BillingSettings | None = None) -> dict:
    settings = settings or get_billing_settings()
    return {
        "error": "usage_limit_exceeded",
        "code": (result.blocked_reason.value if result.blocked_reason else None),
        "usage": result.usage.to_payload() if result.usage else None,
        "upgradeUrl": settings.upgrade_url,
    }
