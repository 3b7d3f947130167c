from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.core.config import get_settings
from app.core.database import Base, get_db
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
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
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
    deal = Deal(deal_id="CR-001", value=Decimal("25000"), sales_rep_id=alice.id)
    db_session.add(deal)
    db_session.commit()
    return [deal.id]


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.post("/api/deals/preview-bulk", json={"dealIds": [1], "changes": {"sales_rep_name": "Nobody"}})
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.post(
        "/api/deals/preview-bulk",
        json={"dealIds": [1], "changes": {"sales_rep_name": "Nobody"}},
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_oversized_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "x" * 500})

    assert response.status_code == 200
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert header_value != "x" * 500


def test_event_envelope_includes_correlation_id(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/bulk-reassign",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Bob"}, "reason": "Territory split"},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 200

    bulk_events = [item for item in events.published_events if item.get("event_type") == "deals.bulk_reassigned"]
    assert bulk_events
    assert bulk_events[-1].get("correlation_id") == "corr-event-1"
    assert bulk_events[-1]["payload"]["batch_id"] == response.json()["batchId"]
