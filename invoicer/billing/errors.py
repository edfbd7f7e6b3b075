"""Billing exceptions and the block reason each one maps to."""

from __future__ import annotations

from .types import BlockReason, GuardResult


class BillingError(Exception):
    code: BlockReason = BlockReason.INTERNAL_ERROR


class UsageLimitExceeded(BillingError):
    """Raised when a quota-consuming action is denied."""

    code = BlockReason.LIMIT_REACHED

    def __init__(self, result: GuardResult):
        self.result = result
        usage = result.usage
        if usage is not None:
            message = (
                f"Usage limit reached for {usage.metric.value} in {usage.period_key}: "
                f"{usage.used}/{usage.limit} (+{usage.grace_used}/{usage.grace_limit} grace)"
            )
        else:
            message = "Usage limit reached"
        super().__init__(message)


class UsageStoreError(BillingError):
    """The counter datastore failed. Safe to retry."""

    code = BlockReason.INTERNAL_ERROR
    retryable = True


class BillingFeatureDisabled(BillingError):
    code = BlockReason.FEATURE_DISABLED

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"Billing feature disabled: {feature}")


class UnsupportedMetric(ValueError):
    def __init__(self, metric: object):
        self.metric = metric
        super().__init__(f"Unsupported metric: {metric!r}")
