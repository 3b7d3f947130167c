from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
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
        Deal(deal_id="MT-001", value=Decimal("40000"), sales_rep_id=alice.id),
        Deal(deal_id="MT-002", value=Decimal("45000"), sales_rep_id=bob.id),
    ]
    db_session.add_all(deals)
    db_session.commit()
    return [deal.id for deal in deals]


def test_metrics_endpoint_exposes_http_and_bulk_metrics(client: TestClient, deal_ids: list[int]) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    preview = client.post("/api/deals/preview-bulk", json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Bob"}})
    assert preview.status_code == 200

    execute = client.post(
        "/api/deals/bulk-reassign",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Bob"}, "reason": "Consolidate"},
    )
    assert execute.status_code == 200

    territory = client.patch(f"/api/deals/{deal_ids[0]}/territory", json={"territory": "Northeast"})
    assert territory.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "pipeline_bulk_operations_total" in body
    assert "pipeline_bulk_operation_duration_seconds" in body
    assert "pipeline_bulk_deals_reassigned_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/deals/{id}/territory"' in body
    assert 'operation="preview",outcome="ok"' in body
    assert 'operation="execute",outcome="applied"' in body
    assert 'change_type="bulk"' in body
    assert 'change_type="manual"' in body


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
