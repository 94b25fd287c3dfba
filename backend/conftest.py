from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

from partsdb.database import Base  # noqa: E402
from partsdb.apps.accounts import models as account_models  # noqa: E402
from partsdb.apps.audit import models as audit_models  # noqa: E402
from partsdb.apps.inventory import models as inventory_models  # noqa: E402

PARTSDB_TABLES = [
    account_models.Tenant.__table__,
    account_models.User.__table__,
    audit_models.AuditEvent.__table__,
    inventory_models.Part.__table__,
    inventory_models.LedgerEntry.__table__,
    inventory_models.BalanceRecord.__table__,
]


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine, tables=PARTSDB_TABLES)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
