from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.pipeline.errors import StorageError
from app.pipeline.models import Deal, SalesRep
from app.pipeline.workload import DealSnapshot


def _storage_failure(session: Session, operation: str, exc: SQLAlchemyError) -> StorageError:
    session.rollback()
    return StorageError(f"{operation} failed: {exc}")


class SalesRepRepository:
    def find_by_name(self, session: Session, name: str) -> SalesRep | None:
        try:
            return session.scalar(select(SalesRep).where(SalesRep.name == name))
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "sales_rep.find_by_name", exc) from exc

    def find_by_ids(self, session: Session, rep_ids: Iterable[int]) -> dict[int, SalesRep]:
        ids = sorted(set(rep_ids))
        if not ids:
            return {}
        try:
            reps = session.scalars(select(SalesRep).where(SalesRep.id.in_(ids))).all()
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "sales_rep.find_by_ids", exc) from exc
        return {rep.id: rep for rep in reps}

    def list_active(self, session: Session) -> list[SalesRep]:
        try:
            return list(
                session.scalars(select(SalesRep).where(SalesRep.active.is_(True)).order_by(SalesRep.name.asc())).all()
            )
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "sales_rep.list_active", exc) from exc


class DealRepository:
    """Deal reads return snapshots whose sales rep is joined in a second query."""

    def __init__(self, sales_rep_repository: SalesRepRepository | None = None) -> None:
        self.sales_rep_repository = sales_rep_repository or SalesRepRepository()

    def find_all(self, session: Session) -> list[DealSnapshot]:
        try:
            deals = session.scalars(select(Deal).order_by(Deal.id.asc())).all()
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "deal.find_all", exc) from exc
        return self._resolve(session, deals)

    def find_by_ids(self, session: Session, deal_ids: Iterable[int]) -> list[DealSnapshot]:
        return self._resolve(session, self.load_rows(session, deal_ids))

    def find_by_id(self, session: Session, deal_id: int) -> Deal | None:
        try:
            return session.get(Deal, deal_id)
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "deal.find_by_id", exc) from exc

    def load_rows(self, session: Session, deal_ids: Iterable[int]) -> list[Deal]:
        ids = list(dict.fromkeys(deal_ids))
        if not ids:
            return []
        try:
            return list(session.scalars(select(Deal).where(Deal.id.in_(ids)).order_by(Deal.id.asc())).all())
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "deal.load_rows", exc) from exc

    def _resolve(self, session: Session, deals: Sequence[Deal]) -> list[DealSnapshot]:
        reps = self.sales_rep_repository.find_by_ids(session, (deal.sales_rep_id for deal in deals))
        snapshots: list[DealSnapshot] = []
        for deal in deals:
            rep = reps.get(deal.sales_rep_id)
            snapshots.append(
                DealSnapshot(
                    id=deal.id,
                    deal_id=deal.deal_id,
                    value=Decimal(str(deal.value or 0)),
                    stage=deal.stage,
                    territory=deal.territory,
                    sales_rep_id=deal.sales_rep_id,
                    sales_rep_name=rep.name if rep is not None else None,
                )
            )
        return snapshots


class AuditLogRepository:
    def list_recent(self, session: Session, *, deal_id: int | None = None, limit: int = 50) -> list[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.changed_at.desc(), AuditLog.id.desc())
        if deal_id is not None:
            stmt = stmt.where(AuditLog.deal_id == deal_id)
        try:
            return list(session.scalars(stmt.limit(limit)).all())
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "audit_log.list_recent", exc) from exc


class ChangeWriter:
    """Persists mutated deals and their audit entries in one transaction."""

    def save(self, session: Session, deals: Sequence[Deal], entries: Sequence[AuditLog]) -> None:
        if not deals and not entries:
            return
        try:
            if deals:
                session.add_all(deals)
                session.flush()
            if entries:
                session.add_all(entries)
                session.flush()
            session.commit()
        except SQLAlchemyError as exc:
            raise _storage_failure(session, "changes.save", exc) from exc
