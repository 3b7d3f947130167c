from __future__ import annotations

import re
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.models.audit import AuditLog
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
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    events.published_events.clear()


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
    charlie = SalesRep(name="Charlie Brown")
    db_session.add_all([alice, bob, charlie])
    db_session.flush()
    deals = [
        Deal(deal_id="RV-001", company_name="Acme", value=Decimal("50000"), territory="West Coast", sales_rep_id=alice.id),
        Deal(deal_id="RV-002", company_name="Globex", value=Decimal("75000"), territory="East Coast", sales_rep_id=bob.id),
    ]
    db_session.add_all(deals)
    db_session.commit()
    return [deal.id for deal in deals]


def test_preview_bulk_returns_projection(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/preview-bulk",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Charlie Brown"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"impact", "currentWorkload", "projectedWorkload", "conflicts", "warnings", "summary"}
    assert body["summary"]["totalDeals"] == 2
    assert body["summary"]["totalValue"] == 125000
    assert set(body["summary"]["affectedReps"]) == {"Alice", "Bob", "Charlie Brown"}
    assert body["summary"]["changeTypes"] == ["sales_rep"]
    assert body["impact"]["changes"][0] == {"dealId": "RV-001", "field": "sales_rep", "from": "Alice", "to": "Charlie Brown"}

    projected = body["projectedWorkload"]["Charlie Brown"]
    assert projected["dealCount"] == 2
    assert projected["totalValue"] == 125000
    assert projected["avgDealValue"] == 62500
    assert projected["utilizationLevel"] == "balanced"
    assert body["conflicts"] == []
    assert [warning["type"] for warning in body["warnings"]] == ["value_shift"]
    assert body["warnings"][0]["message"] == "Charlie Brown pipeline increases by $125,000"


def test_preview_bulk_rejects_empty_selection(client: TestClient) -> None:
    response = client.post(
        "/api/deals/preview-bulk",
        json={"dealIds": [], "changes": {"sales_rep_name": "Charlie Brown"}},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request data"
    assert body["details"]
    assert body["correlation_id"] == response.headers.get("x-correlation-id")


def test_preview_bulk_rejects_missing_rep_name(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post("/api/deals/preview-bulk", json={"dealIds": deal_ids, "changes": {"sales_rep_name": ""}})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request data"


def test_preview_bulk_unknown_rep_is_not_found(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/preview-bulk",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Nobody"}},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Sales rep not found: Nobody"


def test_preview_bulk_names_only_missing_ids(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/preview-bulk",
        json={"dealIds": [*deal_ids, 999], "changes": {"sales_rep_name": "Charlie Brown"}},
    )

    assert response.status_code == 404
    message = response.json()["error"]
    assert message == "Deals not found: 999"
    assert re.findall(r"\d+", message) == ["999"]


def test_bulk_reassign_applies_changes(client: TestClient, db_session: Session, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/bulk-reassign",
        json={
            "dealIds": deal_ids,
            "changes": {"sales_rep_name": "Charlie Brown"},
            "reason": "Q4 rebalance",
            "changed_by": "Ops Lead",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Bulk reassignment completed successfully"
    assert re.match(r"^bulk-\d+-[a-z0-9]+$", body["batchId"])
    assert body["updatedDeals"] == 2
    assert body["auditEntries"] == 2
    assert body["summary"] == {"totalDeals": 2, "changedDeals": 2, "changes": ["sales_rep"]}

    reasons = db_session.scalars(select(AuditLog.reason)).all()
    assert reasons == [f"Q4 rebalance (Batch: {body['batchId']})"] * 2


def test_bulk_reassign_twice_gives_distinct_batches(client: TestClient, deal_ids: list[int]) -> None:
    payload = {"dealIds": deal_ids, "changes": {"sales_rep_name": "Charlie Brown"}, "reason": "Q4 rebalance"}

    first = client.post("/api/deals/bulk-reassign", json=payload)
    second = client.post("/api/deals/bulk-reassign", json=payload)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["batchId"] != second.json()["batchId"]
    assert second.json()["updatedDeals"] == 0
    assert second.json()["auditEntries"] == 0


def test_bulk_reassign_requires_reason(client: TestClient, deal_ids: list[int]) -> None:
    response = client.post(
        "/api/deals/bulk-reassign",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Charlie Brown"}},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request data"
    assert any(item["loc"][-1] == "reason" for item in body["details"])


def test_bulk_reassign_storage_failure_is_generic(
    client: TestClient,
    db_session: Session,
    deal_ids: list[int],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def failing_commit() -> None:
        raise OperationalError("COMMIT", {}, Exception("connection refused by db-primary:5432"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    response = client.post(
        "/api/deals/bulk-reassign",
        json={"dealIds": deal_ids, "changes": {"sales_rep_name": "Charlie Brown"}, "reason": "Q4 rebalance"},
        headers={"X-Correlation-Id": "bulk-fail-1"},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "details": None, "correlation_id": "bulk-fail-1"}
    assert "db-primary" not in response.text
