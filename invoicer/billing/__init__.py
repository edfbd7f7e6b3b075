"""Usage metering, plan changes and the Stripe boundary."""

from .errors import BillingError, BillingFeatureDisabled, UnsupportedMetric, UsageLimitExceeded, UsageStoreError
from .guard import consume_for_created, limit_exceeded_body, usage_headers
from .metering import check_and_consume, get_usage_summary, peek_usage, reconcile_current_period
from .counters import get_or_init_counter
from .plans import apply_plan_change
from .types import BlockReason, GuardResult, Metric, Period, Plan, UsageSnapshot, UsageSummary

__all__ = [
    "BillingError",
    "BillingFeatureDisabled",
    "BlockReason",
    "GuardResult",
    "Metric",
    "Period",
    "Plan",
    "UnsupportedMetric",
    "UsageLimitExceeded",
    "UsageSnapshot",
    "UsageStoreError",
    "UsageSummary",
    "apply_plan_change",
    "check_and_consume",
    "consume_for_created",
    "get_or_init_counter",
    "get_usage_summary",
    "limit_exceeded_body",
    "peek_usage",
    "reconcile_current_period",
    "usage_headers",
]
