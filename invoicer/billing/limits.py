"""Plan limits, grace units and calendar-aligned period keys."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from ..settings import BillingSettings
from .errors import UnsupportedMetric
from .types import Metric, Period, Plan

_METRIC_PERIODS: dict[Metric, Period] = {
    Metric.DOCUMENT_CREATE: Period.MONTHLY,
    Metric.PDF_GENERATE: Period.DAILY,
}


def period_key(period: Period, now: datetime) -> str:
    """Key for the calendar period containing ``now``: ``YYYY-MM`` or ``YYYY-MM-DD``."""
    if period == Period.MONTHLY:
        return f"{now.year:04d}-{now.month:02d}"
    return f"{now.year:04d}-{now.month:02d}-{now.day:02d}"


def period_for_metric(metric: Metric) -> Period:
    try:
        return _METRIC_PERIODS[Metric(metric)]
    except (KeyError, ValueError):
        raise UnsupportedMetric(metric) from None


def limit_for(plan: Plan, metric: Metric, settings: BillingSettings) -> int:
    if metric == Metric.DOCUMENT_CREATE:
        if plan == Plan.PRO:
            return settings.pro_monthly_doc_limit
        return settings.free_monthly_doc_limit
    if metric == Metric.PDF_GENERATE:
        if plan == Plan.PRO:
            return settings.pro_daily_pdf_limit
        return settings.free_daily_pdf_limit
    raise UnsupportedMetric(metric)


def grace_for(metric: Metric, settings: BillingSettings) -> int:
    if metric == Metric.DOCUMENT_CREATE:
        return settings.grace_units_document
    if metric == Metric.PDF_GENERATE:
        return settings.grace_units_pdf
    raise UnsupportedMetric(metric)


def warn_floor(limit: int, settings: BillingSettings) -> int:
    """Usage count at which a counter with ``limit`` starts warning."""
    # Basis points: floor(100 * 0.57) in floats is 56.
    return (limit * round(settings.warn_percent * 10_000)) // 10_000


def billing_now(settings: BillingSettings) -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))
