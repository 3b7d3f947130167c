from __future__ import annotations

import json
import logging
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.logging import JsonLogFormatter
from app.main import app
from app.pipeline.models import Deal, SalesRep


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def deal_ids(db_session: Session) -> list[int]:
    alice = SalesRep(name="Alice")
    bob = SalesRep(name="Bob")
    db_session.add_all([alice, bob])
    db_session.flush()
    deals = [
        Deal(deal_id="LG-001", value=Decimal("12000"), sales_rep_id=alice.id),
        Deal(deal_id="LG-002", value=Decimal("18000"), sales_rep_id=alice.id),
    ]
    db_session.add_all(deals)
    db_session.commit()
    return [deal.id for deal in deals]


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.patch("/api/deals/4242/sales-rep", json={"sales_rep": "Bob"}, headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "PATCH"
        and getattr(record, "path", None) == "/api/deals/{id}/sales-rep"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_batch_context_and_correlation_id(
    client: TestClient,
    deal_ids: list[int],
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/deals/bulk-reassign",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Bob"}, "reason": "Coverage"},
        headers={"X-Correlation-Id": "abc-456"},
    )
    assert response.status_code == 200
    batch_id = response.json()["batchId"]

    bulk_records = [record for record in caplog.records if record.name == "app.pipeline.bulk"]
    assert any(
        record.getMessage() == "bulk.execute"
        and getattr(record, "batch_id", None) == batch_id
        and getattr(record, "updated_deals", None) == 2
        and getattr(record, "audit_entries", None) == 2
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in bulk_records
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "app.pipeline.bulk",
            "levelname": "INFO",
            "msg": "bulk.preview",
            "correlation_id": "fmt-1",
            "deal_count": 3,
            "conflicts": 1,
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "bulk.preview"
    assert payload["logger"] == "app.pipeline.bulk"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"] == {"deal_count": 3, "conflicts": 1}
