from __future__ import annotations

import logging
import os
from typing import Any, Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")


def build_engine(url: str) -> Engine:
    engine_kwargs: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Writers queue on the file lock instead of failing fast.
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in url:
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(url, future=True, **engine_kwargs)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    from .models import Base

    logger.info("Creating tables on %s", engine.url.get_backend_name())
    Base.metadata.create_all(bind=engine)
