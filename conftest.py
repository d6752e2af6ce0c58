from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from marketplace_analytics.db import Base
from marketplace_analytics.db_reports import SqlReportStore
from marketplace_analytics import models  # noqa: F401


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def report_store(sqlite_engine):
    return SqlReportStore(sqlite_engine, batch_size=2)
