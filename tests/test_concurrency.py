from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from invoicer.billing.counters import get_or_init_counter
from invoicer.billing.metering import check_and_consume
from invoicer.billing.types import Metric
from invoicer.db import Base, build_engine
from invoicer.models import UsageCounter
from invoicer.settings import BillingSettings

NOW = datetime(2025, 9, 2, 10, 0, tzinfo=timezone.utc)


@pytest.fixture()
def file_sessions(tmp_path: Path):
    # Threads need real connections to a shared file, not the in-memory StaticPool.
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'usage.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


def test_concurrent_consumes_never_overdraw(file_sessions) -> None:
    # Capacity 3: two hard units plus one grace unit.
    settings = BillingSettings(_env_file=None, free_monthly_doc_limit=2, grace_units_document=1)

    def attempt(_: int) -> bool:
        with file_sessions() as session:
            return check_and_consume(session, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings).allowed

    with ThreadPoolExecutor(max_workers=20) as pool:
        outcomes = list(pool.map(attempt, range(20)))

    assert outcomes.count(True) == 3
    assert outcomes.count(False) == 17

    with file_sessions() as session:
        counter = session.scalars(select(UsageCounter)).one()
        assert counter.used == 2
        assert counter.grace_used == 1


def test_concurrent_initialisation_creates_one_row(file_sessions) -> None:
    settings = BillingSettings(_env_file=None)

    def init(_: int) -> str:
        with file_sessions() as session:
            return get_or_init_counter(session, "t1", Metric.DOCUMENT_CREATE, now=NOW, settings=settings).id

    with ThreadPoolExecutor(max_workers=12) as pool:
        ids = set(pool.map(init, range(12)))

    assert len(ids) == 1
    with file_sessions() as session:
        assert session.scalar(select(func.count()).select_from(UsageCounter)) == 1
