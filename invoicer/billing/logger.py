"""Structured usage decision log."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Literal

from prometheus_client import Counter

from .types import GuardResult, Metric, Plan

logger = logging.getLogger("invoicer.billing.usage")

usage_guard_decisions_total = Counter(
    "usage_guard_decisions_total",
    "Quota guard decisions by metric, context and outcome",
    ["metric", "context", "outcome"],
)

UsageContext = Literal["check", "consume", "block"]


def log_usage(
    tenant_id: str,
    metric: Metric,
    plan: Plan | None,
    result: GuardResult,
    context: UsageContext = "consume",
) -> None:
    """Emit one JSON line for a guard decision and count it."""
    outcome = "allowed" if result.allowed else "blocked"
    usage_guard_decisions_total.labels(metric=metric.value, context=context, outcome=outcome).inc()

    usage = result.usage
    payload = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tenantId": tenant_id,
        "action": metric.value,
        "plan": plan.value if plan else None,
        "context": context,
        "allowed": result.allowed,
        "warn": result.warn,
        "reason": result.blocked_reason.value if result.blocked_reason else None,
        "usage": (
            {
                "used": usage.used,
                "limit": usage.limit,
                "remaining": usage.remaining,
                "graceLimit": usage.grace_limit,
                "graceUsed": usage.grace_used,
                "period": usage.period.value,
                "periodKey": usage.period_key,
            }
            if usage
            else None
        ),
    }
    level = logging.INFO if result.allowed else logging.WARNING
    logger.log(level, "[usage] %s", json.dumps(payload, default=str))
