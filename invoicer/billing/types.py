"""Result types shared by the metering engine and the HTTP layer."""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..models import Metric, Period, Plan


class BlockReason(str, enum.Enum):
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NOT_PROVISIONED = "NOT_PROVISIONED"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    LIMIT_REACHED = "LIMIT_REACHED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UsageSnapshot(_CamelModel):
    period: Period
    period_key: str
    metric: Metric
    used: int
    limit: int
    remaining: int
    grace_limit: int
    grace_used: int
    plan_at_that_time: Plan
    warn: bool


class GuardResult(_CamelModel):
    allowed: bool
    warn: bool
    blocked_reason: Optional[BlockReason] = None
    usage: Optional[UsageSnapshot] = None


class UsageSummaryItem(_CamelModel):
    used: int
    limit: int
    remaining: int
    warn: bool


class UsageSummary(_CamelModel):
    plan: Plan
    monthly_documents: UsageSummaryItem


__all__ = [
    "BlockReason",
    "GuardResult",
    "Metric",
    "Period",
    "Plan",
    "UsageSnapshot",
    "UsageSummary",
    "UsageSummaryItem",
]
