from datetime import datetime, timezone

from sqlalchemy import func, select

from invoicer.billing.counters import get_or_init_counter
from invoicer.billing.metering import check_and_consume, get_usage_summary, peek_usage, reconcile_current_period
from invoicer.billing.plans import apply_plan_change
from invoicer.billing.types import BlockReason, Metric, Period, Plan
from invoicer.models import AuditLog, Company, UsageCounter
from invoicer.settings import BillingSettings

NOW = datetime(2025, 9, 2, 10, 0, tzinfo=timezone.utc)


def consume(db, settings, tenant_id="t1", metric=Metric.DOCUMENT_CREATE, increment=1, now=NOW):
    return check_and_consume(db, tenant_id, metric, increment, now=now, settings=settings)


def test_counter_created_lazily(db, settings) -> None:
    counter = get_or_init_counter(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert counter.period == Period.MONTHLY
    assert counter.period_key == "2025-09"
    assert counter.used == 0
    assert counter.limit == 10
    assert counter.grace_limit == 3
    assert counter.plan_at_that_time == Plan.FREE

    again = get_or_init_counter(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert again.id == counter.id
    assert db.scalar(select(func.count()).select_from(UsageCounter)) == 1


def test_warn_starts_at_eighty_percent(db, settings) -> None:
    results = [consume(db, settings) for _ in range(8)]
    assert all(r.allowed for r in results)
    assert results[6].warn is False
    assert results[6].usage.used == 7
    assert results[7].warn is True
    assert results[7].usage.used == 8
    assert results[7].usage.remaining == 5


def test_grace_transition(db, settings) -> None:
    for _ in range(10):
        last = consume(db, settings)
    assert last.allowed and last.warn
    assert last.usage.used == 10
    assert last.usage.grace_used == 0
    assert last.usage.remaining == 3

    for expected_grace in (1, 2, 3):
        result = consume(db, settings)
        assert result.allowed is True
        assert result.warn is True
        assert result.usage.used == 10
        assert result.usage.grace_used == expected_grace

    denied = consume(db, settings)
    assert denied.allowed is False
    assert denied.warn is False
    assert denied.blocked_reason == BlockReason.LIMIT_REACHED
    assert denied.usage.used == 10
    assert denied.usage.grace_used == 3
    assert denied.usage.remaining == 0


def test_denied_consume_leaves_counter_untouched(db, settings) -> None:
    for _ in range(13):
        consume(db, settings)
    for _ in range(3):
        assert consume(db, settings).allowed is False

    counter = get_or_init_counter(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert (counter.used, counter.grace_used) == (10, 3)


def test_increment_split_between_hard_limit_and_grace(db, settings) -> None:
    consume(db, settings, increment=9)
    result = consume(db, settings, increment=3)
    assert result.allowed is True
    assert result.usage.used == 10
    assert result.usage.grace_used == 2

    too_big = consume(db, settings, increment=2)
    assert too_big.allowed is False
    assert too_big.usage.grace_used == 2


def test_increment_below_one_counts_as_one(db, settings) -> None:
    result = consume(db, settings, increment=0)
    assert result.usage.used == 1


def test_peek_does_not_consume(db, settings) -> None:
    consume(db, settings, increment=8)
    peeked = peek_usage(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert peeked.allowed is True
    assert peeked.warn is True
    assert peeked.usage.used == 8

    again = peek_usage(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert again.usage.used == 8


def test_peek_denied_when_grace_exhausted(db, settings) -> None:
    consume(db, settings, increment=13)
    peeked = peek_usage(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert peeked.allowed is False
    assert peeked.warn is False
    assert peeked.blocked_reason == BlockReason.LIMIT_REACHED


def test_periods_are_isolated(db, settings) -> None:
    september = datetime(2025, 9, 30, 23, 59, tzinfo=timezone.utc)
    october = datetime(2025, 10, 1, 0, 0, tzinfo=timezone.utc)
    consume(db, settings, increment=13, now=september)
    assert consume(db, settings, now=september).allowed is False

    fresh = consume(db, settings, now=october)
    assert fresh.allowed is True
    assert fresh.usage.period_key == "2025-10"
    assert fresh.usage.used == 1


def test_daily_pdf_metric(db, settings) -> None:
    for _ in range(5):
        assert consume(db, settings, metric=Metric.PDF_GENERATE).allowed
    denied = consume(db, settings, metric=Metric.PDF_GENERATE)
    assert denied.allowed is False
    assert denied.usage.period == Period.DAILY
    assert denied.usage.period_key == "2025-09-02"

    next_day = datetime(2025, 9, 3, 8, 0, tzinfo=timezone.utc)
    assert consume(db, settings, metric=Metric.PDF_GENERATE, now=next_day).allowed

    # Documents are counted separately.
    assert consume(db, settings).usage.used == 1


def test_tenants_are_isolated(db, settings) -> None:
    consume(db, settings, tenant_id="t1", increment=13)
    assert consume(db, settings, tenant_id="t1").allowed is False
    assert consume(db, settings, tenant_id="t2").usage.used == 1


def test_disabled_billing_allows_everything(db) -> None:
    disabled = BillingSettings(_env_file=None, enabled=False)
    for _ in range(50):
        result = check_and_consume(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=disabled)
        assert result.allowed is True
        assert result.usage is None
    assert peek_usage(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=disabled).allowed
    assert db.scalar(select(func.count()).select_from(UsageCounter)) == 0


def test_reconcile_keeps_usage_on_upgrade(db, settings, make_company) -> None:
    company = make_company("t1")
    consume(db, settings, increment=13)
    assert consume(db, settings).allowed is False

    company.plan = Plan.PRO
    db.commit()
    [counter] = reconcile_current_period(db, "t1", now=NOW, settings=settings)
    assert counter.limit == 1000
    assert counter.used == 10
    assert counter.grace_used == 3
    assert counter.plan_at_that_time == Plan.PRO

    assert consume(db, settings).allowed is True


def test_reconcile_creates_missing_counters(db, settings, make_company) -> None:
    make_company("t1", plan=Plan.PRO)
    counters = reconcile_current_period(
        db, "t1", [Metric.DOCUMENT_CREATE, Metric.PDF_GENERATE], now=NOW, settings=settings
    )
    assert {c.metric: c.limit for c in counters} == {Metric.DOCUMENT_CREATE: 1000, Metric.PDF_GENERATE: 500}
    assert all(c.used == 0 for c in counters)


def test_downgrade_below_usage_falls_back_to_grace(db, settings, make_company) -> None:
    company = make_company("t1", plan=Plan.PRO)
    consume(db, settings, increment=40)

    company.plan = Plan.FREE
    db.commit()
    reconcile_current_period(db, "t1", now=NOW, settings=settings)

    result = consume(db, settings)
    assert result.allowed is True
    assert result.usage.used == 40
    assert result.usage.grace_used == 1
    assert result.usage.limit == 10


def test_limits_self_heal_without_reconcile(db, settings, make_company) -> None:
    company = make_company("t1")
    consume(db, settings, increment=13)

    company.plan = Plan.PRO
    db.commit()

    peeked = peek_usage(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings)
    assert peeked.allowed is True
    assert peeked.usage.limit == 1000
    assert peeked.usage.plan_at_that_time == Plan.PRO
    assert peeked.usage.used == 10


def test_limits_follow_changed_settings(db, settings) -> None:
    consume(db, settings, increment=5)
    raised = BillingSettings(_env_file=None, free_monthly_doc_limit=20, grace_units_document=0)
    counter = get_or_init_counter(db, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=raised)
    assert counter.limit == 20
    assert counter.grace_limit == 0
    assert counter.used == 5


def test_apply_plan_change_reconciles_and_audits(db, settings, make_company) -> None:
    make_company("t1")
    check_and_consume(db, "t1", Metric.DOCUMENT_CREATE, 4, settings=settings)

    company = apply_plan_change(db, "t1", Plan.PRO, subscription_status="active", settings=settings)
    assert company is not None
    assert company.plan == Plan.PRO

    counter = get_or_init_counter(db, "t1", Metric.DOCUMENT_CREATE, settings=settings)
    assert counter.limit == 1000
    assert counter.used == 4

    entry = db.scalars(select(AuditLog).where(AuditLog.action == "billing.plan_change")).one()
    assert entry.payload["from"] == "FREE"
    assert entry.payload["to"] == "PRO"
    assert entry.hash


def test_apply_plan_change_unknown_company(db, settings) -> None:
    assert apply_plan_change(db, "missing", Plan.PRO, settings=settings) is None
    assert db.scalar(select(func.count()).select_from(Company)) == 0


def test_usage_summary(db, settings, make_company) -> None:
    make_company("t1")
    check_and_consume(db, "t1", Metric.DOCUMENT_CREATE, 8, settings=settings)

    summary = get_usage_summary(db, "t1", settings=settings)
    assert summary.to_payload() == {
        "plan": "FREE",
        "monthlyDocuments": {"used": 8, "limit": 10, "remaining": 5, "warn": True},
    }
