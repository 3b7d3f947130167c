from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.orm import Session

from app import events
from app.core.config import get_settings
from app.metrics import (
    observe_audit_entries_written,
    observe_bulk_operation,
    observe_deals_reassigned,
    observe_preview_conflicts,
)
from app.models.audit import AuditLog
from app.pipeline.constants import (
    DEFAULT_REASSIGN_REASON,
    DEFAULT_TERRITORY_REASON,
    FIELD_SALES_REP,
    FIELD_TERRITORY,
    TERRITORIES,
    UNASSIGNED,
)
from app.pipeline.errors import NotFoundError, PipelineError, ValidationError
from app.pipeline.models import Deal, SalesRep, utcnow_iso
from app.pipeline.repositories import AuditLogRepository, ChangeWriter, DealRepository, SalesRepRepository
from app.pipeline.schemas import (
    AuditLogRead,
    AuditTrailResponse,
    BulkPreviewResponse,
    BulkPreviewSummary,
    BulkReassignResponse,
    BulkReassignSummary,
    ConflictRead,
    DealAssignmentResponse,
    ImpactChangeRead,
    ImpactRead,
    SalesRepRead,
    WarningRead,
    WorkloadAggregateRead,
    WorkloadAnalyticsResponse,
    WorkloadAnalyticsSummary,
    WorkloadRecommendationRead,
)
from app.pipeline.workload import (
    ShiftThresholds,
    TargetRep,
    UtilizationThresholds,
    WorkloadAggregate,
    aggregate_workload,
    affected_reps,
    detect_conflicts,
    detect_warnings,
    round_half_up,
    simulate_reassignment,
    summarize_impact,
)
from app.services.audit import build_audit_entry, format_batch_reason


logger = logging.getLogger("app.pipeline.bulk")
tracer = trace.get_tracer("app.pipeline.bulk")

CHANGE_TYPES = [FIELD_SALES_REP]
BATCH_ID_ALPHABET = string.ascii_lowercase + string.digits
BATCH_ID_SUFFIX_LENGTH = 9
BULK_SUCCESS_MESSAGE = "Bulk reassignment completed successfully"


def generate_batch_id(now_ms: int | None = None) -> str:
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(BATCH_ID_ALPHABET) for _ in range(BATCH_ID_SUFFIX_LENGTH))
    return f"bulk-{millis}-{suffix}"


def _resolve_changed_by(changed_by: str | None) -> str:
    if changed_by and changed_by.strip():
        return changed_by
    return get_settings().default_changed_by


def _validate_bulk_request(deal_ids: Sequence[int], target_rep_name: str, *, reason: str | None = None, require_reason: bool = False) -> None:
    problems: list[dict[str, str]] = []
    if not deal_ids:
        problems.append({"field": "dealIds", "message": "Must select at least one deal"})
    if not target_rep_name:
        problems.append({"field": "changes.sales_rep_name", "message": "Sales rep is required"})
    if require_reason and not reason:
        problems.append({"field": "reason", "message": "Reason is required for bulk operations"})
    if problems:
        raise ValidationError("Invalid request data", details=problems)


def _reconcile(requested_ids: Sequence[int], found_ids: Sequence[int]) -> None:
    found = set(found_ids)
    missing = [deal_id for deal_id in requested_ids if deal_id not in found]
    if missing:
        raise NotFoundError(f"Deals not found: {', '.join(str(deal_id) for deal_id in missing)}")


def to_workload_read(aggregate: WorkloadAggregate) -> WorkloadAggregateRead:
    return WorkloadAggregateRead(
        sales_rep=aggregate.sales_rep,
        deal_count=aggregate.deal_count,
        total_value=float(aggregate.total_value),
        avg_deal_value=aggregate.avg_deal_value,
        territories=sorted(aggregate.territories),
        territory_count=aggregate.territory_count,
        deals_by_stage=dict(aggregate.deals_by_stage),
        utilization_level=aggregate.utilization_level,
        recommendations=list(aggregate.recommendations),
    )


def _workload_map(workload: Mapping[str, WorkloadAggregate]) -> dict[str, WorkloadAggregateRead]:
    return {rep: to_workload_read(aggregate) for rep, aggregate in workload.items()}


@dataclass(slots=True)
class BulkReassignmentService:
    deal_repository: DealRepository = DealRepository()
    sales_rep_repository: SalesRepRepository = SalesRepRepository()
    change_writer: ChangeWriter = ChangeWriter()

    def preview(self, session: Session, deal_ids: Sequence[int], target_rep_name: str) -> BulkPreviewResponse:
        started = time.perf_counter()
        outcome = "error"
        with tracer.start_as_current_span("pipeline.bulk.preview") as span:
            span.set_attribute("deal_count", len(deal_ids))
            span.set_attribute("sales_rep", target_rep_name or "")
            try:
                result = self._preview(session, deal_ids, target_rep_name)
                outcome = "blocked" if result.conflicts else "ok"
                return result
            except PipelineError as exc:
                outcome = type(exc).__name__
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.message))
                raise
            finally:
                observe_bulk_operation("preview", outcome, time.perf_counter() - started)

    def execute(
        self,
        session: Session,
        deal_ids: Sequence[int],
        target_rep_name: str,
        reason: str,
        changed_by: str | None = None,
    ) -> BulkReassignResponse:
        started = time.perf_counter()
        outcome = "error"
        with tracer.start_as_current_span("pipeline.bulk.execute") as span:
            span.set_attribute("deal_count", len(deal_ids))
            span.set_attribute("sales_rep", target_rep_name or "")
            try:
                result = self._execute(session, deal_ids, target_rep_name, reason, changed_by)
                span.set_attribute("batch_id", result.batch_id)
                outcome = "applied" if result.updated_deals else "no_op"
                return result
            except PipelineError as exc:
                outcome = type(exc).__name__
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.message))
                raise
            finally:
                observe_bulk_operation("execute", outcome, time.perf_counter() - started)

    def _resolve_target(self, session: Session, target_rep_name: str) -> SalesRep:
        target = self.sales_rep_repository.find_by_name(session, target_rep_name)
        if target is None:
            raise NotFoundError(f"Sales rep not found: {target_rep_name}")
        return target

    def _preview(self, session: Session, deal_ids: Sequence[int], target_rep_name: str) -> BulkPreviewResponse:
        _validate_bulk_request(deal_ids, target_rep_name)
        requested = list(dict.fromkeys(deal_ids))
        settings = get_settings()
        utilization = UtilizationThresholds.from_settings(settings)

        target_rep = self._resolve_target(session, target_rep_name)
        target = TargetRep(id=target_rep.id, name=target_rep.name)

        selected = self.deal_repository.find_by_ids(session, requested)
        all_deals = self.deal_repository.find_all(session)
        _reconcile(requested, [deal.id for deal in selected])

        current = aggregate_workload(all_deals, thresholds=utilization)
        projected = aggregate_workload(simulate_reassignment(all_deals, requested, target), thresholds=utilization)
        conflicts = detect_conflicts(projected, utilization)
        warnings = detect_warnings(current, projected, ShiftThresholds.from_settings(settings))
        impact = summarize_impact(selected, target.name)

        observe_preview_conflicts(len(conflicts))
        logger.info(
            "bulk.preview",
            extra={
                "operation": "preview",
                "deal_count": len(requested),
                "sales_rep": target.name,
                "conflicts": len(conflicts),
                "warnings": len(warnings),
            },
        )

        return BulkPreviewResponse(
            impact=ImpactRead(
                deal_count=impact.deal_count,
                total_value=float(impact.total_value),
                territories_affected=impact.territories_affected,
                reps_affected=impact.reps_affected,
                changes=[
                    ImpactChangeRead(deal_id=change.deal_id, field=change.field, from_rep=change.from_rep, to_rep=change.to_rep)
                    for change in impact.changes
                ],
            ),
            current_workload=_workload_map(current),
            projected_workload=_workload_map(projected),
            conflicts=[
                ConflictRead(
                    type=item.type,
                    rep=item.rep,
                    severity=item.severity,
                    message=item.message,
                    suggestion=item.suggestion,
                )
                for item in conflicts
            ],
            warnings=[
                WarningRead(type=item.type, rep=item.rep, severity=item.severity, message=item.message, details=item.details)
                for item in warnings
            ],
            summary=BulkPreviewSummary(
                total_deals=len(deal_ids),
                total_value=float(sum((deal.value for deal in selected), Decimal(0))),
                affected_reps=affected_reps(selected, target.name),
                change_types=list(CHANGE_TYPES),
            ),
        )

    def _execute(
        self,
        session: Session,
        deal_ids: Sequence[int],
        target_rep_name: str,
        reason: str,
        changed_by: str | None,
    ) -> BulkReassignResponse:
        _validate_bulk_request(deal_ids, target_rep_name, reason=reason, require_reason=True)
        requested = list(dict.fromkeys(deal_ids))
        actor = _resolve_changed_by(changed_by)

        target = self._resolve_target(session, target_rep_name)
        deals = self.deal_repository.load_rows(session, requested)
        _reconcile(requested, [deal.id for deal in deals])
        current_reps = self.sales_rep_repository.find_by_ids(session, (deal.sales_rep_id for deal in deals))

        batch_id = generate_batch_id()
        batch_reason = format_batch_reason(reason, batch_id)
        updated: list[Deal] = []
        entries: list[AuditLog] = []

        for deal in deals:
            if deal.sales_rep_id == target.id:
                continue
            previous = current_reps.get(deal.sales_rep_id)
            entries.append(
                build_audit_entry(
                    deal_id=deal.id,
                    deal_identifier=deal.deal_id,
                    field_changed=FIELD_SALES_REP,
                    old_value=previous.name if previous is not None else UNASSIGNED,
                    new_value=target.name,
                    changed_by=actor,
                    reason=batch_reason,
                    change_type="bulk",
                )
            )
            deal.sales_rep_id = target.id
            deal.updated_date = utcnow_iso()
            updated.append(deal)

        self.change_writer.save(session, updated, entries)

        observe_deals_reassigned(len(updated))
        observe_audit_entries_written("bulk", len(entries))
        logger.info(
            "bulk.execute",
            extra={
                "operation": "execute",
                "batch_id": batch_id,
                "deal_count": len(requested),
                "updated_deals": len(updated),
                "audit_entries": len(entries),
                "sales_rep": target.name,
            },
        )
        if updated:
            events.publish(
                events.build_envelope(
                    "deals.bulk_reassigned",
                    {
                        "batch_id": batch_id,
                        "deal_ids": [deal.id for deal in updated],
                        "sales_rep_id": target.id,
                        "sales_rep_name": target.name,
                    },
                    actor=actor,
                )
            )

        return BulkReassignResponse(
            message=BULK_SUCCESS_MESSAGE,
            batch_id=batch_id,
            updated_deals=len(updated),
            audit_entries=len(entries),
            summary=BulkReassignSummary(
                total_deals=len(deal_ids),
                changed_deals=len(updated),
                changes=list(CHANGE_TYPES),
            ),
        )


@dataclass(slots=True)
class DealAssignmentService:
    deal_repository: DealRepository = DealRepository()
    sales_rep_repository: SalesRepRepository = SalesRepRepository()
    change_writer: ChangeWriter = ChangeWriter()

    def reassign_sales_rep(
        self,
        session: Session,
        deal_id: int,
        sales_rep_name: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> DealAssignmentResponse:
        if not sales_rep_name:
            raise ValidationError("Invalid request data", details=[{"field": "sales_rep", "message": "Sales rep cannot be empty"}])

        deal = self._get_deal(session, deal_id)
        new_rep = self.sales_rep_repository.find_by_name(session, sales_rep_name)
        if new_rep is None:
            raise NotFoundError(f"Sales rep not found: {sales_rep_name}")

        if deal.sales_rep_id == new_rep.id:
            return self._to_response(deal, new_rep, changed=False)

        actor = _resolve_changed_by(changed_by)
        previous = self.sales_rep_repository.find_by_ids(session, [deal.sales_rep_id]).get(deal.sales_rep_id)
        entry = build_audit_entry(
            deal_id=deal.id,
            deal_identifier=deal.deal_id,
            field_changed=FIELD_SALES_REP,
            old_value=previous.name if previous is not None else UNASSIGNED,
            new_value=new_rep.name,
            changed_by=actor,
            reason=reason or DEFAULT_REASSIGN_REASON,
            change_type="manual",
        )
        deal.sales_rep_id = new_rep.id
        deal.updated_date = utcnow_iso()
        self.change_writer.save(session, [deal], [entry])
        observe_audit_entries_written("manual")

        events.publish(
            events.build_envelope(
                "deal.sales_rep.changed",
                {
                    "deal_id": deal.id,
                    "from": previous.name if previous is not None else None,
                    "to": new_rep.name,
                },
                actor=actor,
            )
        )
        return self._to_response(deal, new_rep, changed=True)

    def update_territory(
        self,
        session: Session,
        deal_id: int,
        territory: str,
        reason: str | None = None,
        changed_by: str | None = None,
    ) -> DealAssignmentResponse:
        if territory not in TERRITORIES:
            raise ValidationError(
                "Invalid request data",
                details=[{"field": "territory", "message": f"Territory must be one of: {', '.join(TERRITORIES)}"}],
            )

        deal = self._get_deal(session, deal_id)
        rep = self.sales_rep_repository.find_by_ids(session, [deal.sales_rep_id]).get(deal.sales_rep_id)
        if deal.territory == territory:
            return self._to_response(deal, rep, changed=False)

        actor = _resolve_changed_by(changed_by)
        entry = build_audit_entry(
            deal_id=deal.id,
            deal_identifier=deal.deal_id,
            field_changed=FIELD_TERRITORY,
            old_value=deal.territory,
            new_value=territory,
            changed_by=actor,
            reason=reason or DEFAULT_TERRITORY_REASON,
            change_type="manual",
        )
        previous_territory = deal.territory
        deal.territory = territory
        deal.updated_date = utcnow_iso()
        self.change_writer.save(session, [deal], [entry])
        observe_audit_entries_written("manual")

        events.publish(
            events.build_envelope(
                "deal.territory.changed",
                {"deal_id": deal.id, "from": previous_territory, "to": territory},
                actor=actor,
            )
        )
        return self._to_response(deal, rep, changed=True)

    def _get_deal(self, session: Session, deal_id: int) -> Deal:
        deal = self.deal_repository.find_by_id(session, deal_id)
        if deal is None:
            raise NotFoundError("Deal not found")
        return deal

    @staticmethod
    def _to_response(deal: Deal, rep: SalesRep | None, *, changed: bool) -> DealAssignmentResponse:
        return DealAssignmentResponse(
            deal_id=deal.deal_id,
            sales_rep=SalesRepRead.model_validate(rep) if rep is not None else None,
            territory=deal.territory,
            updated_date=deal.updated_date,
            changed=changed,
        )


@dataclass(slots=True)
class WorkloadAnalyticsService:
    deal_repository: DealRepository = DealRepository()
    sales_rep_repository: SalesRepRepository = SalesRepRepository()

    def get_analytics(self, session: Session) -> WorkloadAnalyticsResponse:
        reps = self.sales_rep_repository.list_active(session)
        deals = self.deal_repository.find_all(session)
        active_ids = {rep.id for rep in reps}
        # deals owned by inactive reps count toward totals but not toward any workload
        workload = aggregate_workload(
            [deal for deal in deals if deal.sales_rep_id in active_ids],
            known_reps=[rep.name for rep in reps],
            thresholds=UtilizationThresholds.from_settings(),
        )
        ranked = sorted(workload.values(), key=lambda item: item.deal_count, reverse=True)
        overloaded = [item.sales_rep for item in ranked if item.utilization_level == "over"]
        underutilized = [item.sales_rep for item in ranked if item.utilization_level == "under"]

        recommendations: list[WorkloadRecommendationRead] = []
        if overloaded and underutilized:
            recommendations.append(
                WorkloadRecommendationRead(
                    type="redistribute",
                    priority="high",
                    description=f"Redistribute deals from {', '.join(overloaded)} to {', '.join(underutilized)}",
                    affected_reps=[*overloaded, *underutilized],
                )
            )
        if len(overloaded) > len(underutilized):
            recommendations.append(
                WorkloadRecommendationRead(
                    type="hire",
                    priority="medium",
                    description="Consider hiring additional sales reps to handle current workload",
                    affected_reps=list(overloaded),
                )
            )

        total_value = sum((deal.value for deal in deals), Decimal(0))
        rep_count = len(reps)
        return WorkloadAnalyticsResponse(
            summary=WorkloadAnalyticsSummary(
                total_deals=len(deals),
                total_value=float(total_value),
                total_reps=rep_count,
                avg_deals_per_rep=round_half_up(Decimal(len(deals)) / rep_count) if rep_count else 0,
                avg_value_per_rep=round_half_up(total_value / rep_count) if rep_count else 0,
                overloaded_reps=len(overloaded),
                underutilized_reps=len(underutilized),
            ),
            rep_workloads=[to_workload_read(item) for item in ranked],
            recommendations=recommendations,
        )

    def list_sales_rep_names(self, session: Session) -> list[str]:
        return sorted(rep.name for rep in self.sales_rep_repository.list_active(session))


@dataclass(slots=True)
class AuditTrailService:
    audit_log_repository: AuditLogRepository = AuditLogRepository()

    def list_audit_logs(self, session: Session, *, deal_id: int | None = None, limit: int = 50) -> AuditTrailResponse:
        rows = self.audit_log_repository.list_recent(session, deal_id=deal_id, limit=limit)
        logs = [
            AuditLogRead(
                id=row.id,
                deal_id=row.deal_id,
                deal_identifier=row.deal_identifier,
                field_changed=row.field_changed,
                old_value=row.old_value,
                new_value=row.new_value,
                changed_by=row.changed_by,
                reason=row.reason,
                change_type=row.change_type,
                changed_at=row.changed_at,
            )
            for row in rows
        ]
        return AuditTrailResponse(audit_logs=logs, count=len(logs))


bulk_reassignment_service = BulkReassignmentService()
deal_assignment_service = DealAssignmentService()
workload_analytics_service = WorkloadAnalyticsService()
audit_trail_service = AuditTrailService()
