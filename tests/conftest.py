import os
from typing import Callable, Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from invoicer.db import Base, build_engine  # noqa: E402
from invoicer.models import Company, Plan  # noqa: E402
from invoicer.settings import BillingSettings  # noqa: E402


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture()
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings() -> BillingSettings:
    return BillingSettings(
        _env_file=None,
        enabled=True,
        free_monthly_doc_limit=10,
        pro_monthly_doc_limit=1000,
        grace_units_document=3,
        free_daily_pdf_limit=5,
        pro_daily_pdf_limit=500,
        grace_units_pdf=0,
        warn_percent=0.8,
    )


@pytest.fixture()
def make_company(db: Session) -> Callable[..., Company]:
    def _make(company_id: str, plan: Plan = Plan.FREE) -> Company:
        company = Company(id=company_id, name=f"company-{company_id}", plan=plan)
        db.add(company)
        db.commit()
        return company

    return _make
