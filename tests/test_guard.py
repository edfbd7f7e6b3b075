import pytest

from invoicer.billing import guard
from invoicer.billing.errors import UsageLimitExceeded, UsageStoreError
from invoicer.billing.guard import consume_for_created, limit_exceeded_body, usage_headers
from invoicer.billing.metering import check_and_consume
from invoicer.billing.types import BlockReason, GuardResult, Metric, Period, Plan, UsageSnapshot


def _snapshot(used: int = 10, grace_used: int = 3) -> UsageSnapshot:
    return UsageSnapshot(
        period=Period.MONTHLY,
        period_key="2025-09",
        metric=Metric.DOCUMENT_CREATE,
        used=used,
        limit=10,
        remaining=max(0, 10 - used) + 3 - grace_used,
        grace_limit=3,
        grace_used=grace_used,
        plan_at_that_time=Plan.FREE,
        warn=True,
    )


DENIED = GuardResult(
    allowed=False,
    warn=False,
    blocked_reason=BlockReason.LIMIT_REACHED,
    usage=_snapshot(),
)


class Recorder:
    def __init__(self, fail_compensation: bool = False):
        self.created: list[str] = []
        self.compensated: list[str] = []
        self.fail_compensation = fail_compensation

    def create(self) -> str:
        resource = f"doc-{len(self.created) + 1}"
        self.created.append(resource)
        return resource

    def compensate(self, resource: str) -> None:
        if self.fail_compensation:
            raise RuntimeError("delete failed")
        self.compensated.append(resource)


def test_creates_and_charges(db, settings) -> None:
    recorder = Recorder()
    resource, result = consume_for_created(
        db, "t1", Metric.DOCUMENT_CREATE, create=recorder.create, compensate=recorder.compensate, settings=settings
    )
    assert resource == "doc-1"
    assert result.allowed is True
    assert result.usage.used == 1
    assert recorder.compensated == []


def test_peek_denial_skips_creation(db, settings) -> None:
    check_and_consume(db, "t1", Metric.DOCUMENT_CREATE, 13, settings=settings)
    recorder = Recorder()

    with pytest.raises(UsageLimitExceeded) as excinfo:
        consume_for_created(
            db, "t1", Metric.DOCUMENT_CREATE, create=recorder.create, compensate=recorder.compensate, settings=settings
        )

    assert recorder.created == []
    assert excinfo.value.result.blocked_reason == BlockReason.LIMIT_REACHED
    assert excinfo.value.code == BlockReason.LIMIT_REACHED


def test_lost_race_compensates(db, settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(guard, "check_and_consume", lambda *args, **kwargs: DENIED)
    recorder = Recorder()

    with pytest.raises(UsageLimitExceeded):
        consume_for_created(
            db, "t1", Metric.DOCUMENT_CREATE, create=recorder.create, compensate=recorder.compensate, settings=settings
        )

    assert recorder.created == ["doc-1"]
    assert recorder.compensated == ["doc-1"]


def test_failed_compensation_still_denies(db, settings, monkeypatch, caplog) -> None:
    monkeypatch.setattr(guard, "check_and_consume", lambda *args, **kwargs: DENIED)
    recorder = Recorder(fail_compensation=True)

    with pytest.raises(UsageLimitExceeded):
        consume_for_created(
            db, "t1", Metric.DOCUMENT_CREATE, create=recorder.create, compensate=recorder.compensate, settings=settings
        )

    assert recorder.created == ["doc-1"]
    assert "Compensating delete failed" in caplog.text


def test_store_error_compensates_and_propagates(db, settings, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise UsageStoreError("store down")

    monkeypatch.setattr(guard, "check_and_consume", broken)
    recorder = Recorder()

    with pytest.raises(UsageStoreError) as excinfo:
        consume_for_created(
            db, "t1", Metric.DOCUMENT_CREATE, create=recorder.create, compensate=recorder.compensate, settings=settings
        )

    assert excinfo.value.retryable is True
    assert recorder.compensated == ["doc-1"]


def test_usage_headers() -> None:
    allowed = GuardResult(allowed=True, warn=True, usage=_snapshot(used=8, grace_used=0))
    assert usage_headers(allowed) == {
        "X-Usage-Used": "8",
        "X-Usage-Remaining": "5",
        "X-Usage-Limit": "10",
        "X-Usage-Warn": "true",
    }

    quiet = GuardResult(allowed=True, warn=False, usage=_snapshot(used=2, grace_used=0))
    assert "X-Usage-Warn" not in usage_headers(quiet)
    assert usage_headers(GuardResult(allowed=True, warn=False)) == {}


def test_limit_exceeded_body(settings) -> None:
    body = limit_exceeded_body(DENIED, settings)
    assert body["error"] == "usage_limit_exceeded"
    assert body["code"] == "LIMIT_REACHED"
    assert body["upgradeUrl"] == "/billing/checkout"
    assert body["usage"]["used"] == 10
    assert body["usage"]["graceUsed"] == 3
    assert body["usage"]["periodKey"] == "2025-09"
    assert body["usage"]["planAtThatTime"] == "FREE"


def test_exception_message_mentions_usage() -> None:
    exc = UsageLimitExceeded(DENIED)
    assert "10/10" in str(exc)
    assert "2025-09" in str(exc)
