from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.pipeline.constants import Territory


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BulkChanges(_WireModel):
    sales_rep_name: str = Field(min_length=1)


class BulkPreviewRequest(_WireModel):
    deal_ids: list[int] = Field(alias="dealIds", min_length=1)
    changes: BulkChanges


class BulkReassignRequest(_WireModel):
    deal_ids: list[int] = Field(alias="dealIds", min_length=1)
    changes: BulkChanges
    reason: str = Field(min_length=1)
    changed_by: str = "System User"


class WorkloadAggregateRead(_WireModel):
    sales_rep: str = Field(alias="salesRep")
    deal_count: int = Field(alias="dealCount")
    total_value: float = Field(alias="totalValue")
    avg_deal_value: int = Field(alias="avgDealValue")
    territories: list[str]
    territory_count: int = Field(alias="territoryCount")
    deals_by_stage: dict[str, int] = Field(alias="dealsByStage")
    utilization_level: str = Field(alias="utilizationLevel")
    recommendations: list[str]


class ConflictRead(_WireModel):
    type: str
    rep: str
    severity: str
    message: str
    suggestion: str


class WarningRead(_WireModel):
    type: str
    rep: str
    severity: str
    message: str
    details: str


class ImpactChangeRead(_WireModel):
    deal_id: str = Field(alias="dealId")
    field: str
    from_rep: str | None = Field(alias="from")
    to_rep: str = Field(alias="to")


class ImpactRead(_WireModel):
    deal_count: int = Field(alias="dealCount")
    total_value: float = Field(alias="totalValue")
    territories_affected: list[str] = Field(alias="territoriesAffected")
    reps_affected: list[str] = Field(alias="repsAffected")
    changes: list[ImpactChangeRead]


class BulkPreviewSummary(_WireModel):
    total_deals: int = Field(alias="totalDeals")
    total_value: float = Field(alias="totalValue")
    affected_reps: list[str] = Field(alias="affectedReps")
    change_types: list[str] = Field(alias="changeTypes")


class BulkPreviewResponse(_WireModel):
    impact: ImpactRead
    current_workload: dict[str, WorkloadAggregateRead] = Field(alias="currentWorkload")
    projected_workload: dict[str, WorkloadAggregateRead] = Field(alias="projectedWorkload")
    conflicts: list[ConflictRead]
    warnings: list[WarningRead]
    summary: BulkPreviewSummary


class BulkReassignSummary(_WireModel):
    total_deals: int = Field(alias="totalDeals")
    changed_deals: int = Field(alias="changedDeals")
    changes: list[str]


class BulkReassignResponse(_WireModel):
    message: str
    batch_id: str = Field(alias="batchId")
    updated_deals: int = Field(alias="updatedDeals")
    audit_entries: int = Field(alias="auditEntries")
    summary: BulkReassignSummary


class SalesRepUpdateRequest(_WireModel):
    sales_rep: str = Field(min_length=1)
    reason: str | None = None
    changed_by: str = "System User"


class TerritoryUpdateRequest(_WireModel):
    territory: Territory
    reason: str | None = None
    changed_by: str = "System User"


class SalesRepRead(_WireModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    name: str
    email: str | None = None
    territory: str | None = None
    active: bool = True


class DealAssignmentResponse(_WireModel):
    deal_id: str
    sales_rep: SalesRepRead | None
    territory: str | None
    updated_date: str
    changed: bool


class AuditLogRead(_WireModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    deal_id: int = Field(alias="dealId")
    deal_identifier: str = Field(alias="dealIdentifier")
    field_changed: str = Field(alias="fieldChanged")
    old_value: str | None = Field(alias="oldValue")
    new_value: str | None = Field(alias="newValue")
    changed_by: str = Field(alias="changedBy")
    reason: str | None
    change_type: str = Field(alias="changeType")
    changed_at: datetime = Field(alias="changedAt")


class AuditTrailResponse(_WireModel):
    audit_logs: list[AuditLogRead] = Field(alias="auditLogs")
    count: int


class WorkloadRecommendationRead(_WireModel):
    type: str
    priority: str
    description: str
    affected_reps: list[str] = Field(alias="affectedReps")


class WorkloadAnalyticsSummary(_WireModel):
    total_deals: int = Field(alias="totalDeals")
    total_value: float = Field(alias="totalValue")
    total_reps: int = Field(alias="totalReps")
    avg_deals_per_rep: int = Field(alias="avgDealsPerRep")
    avg_value_per_rep: int = Field(alias="avgValuePerRep")
    overloaded_reps: int = Field(alias="overloadedReps")
    underutilized_reps: int = Field(alias="underutilizedReps")


class WorkloadAnalyticsResponse(_WireModel):
    summary: WorkloadAnalyticsSummary
    rep_workloads: list[WorkloadAggregateRead] = Field(alias="repWorkloads")
    recommendations: list[WorkloadRecommendationRead]


class SalesRepListResponse(_WireModel):
    sales_reps: list[str]


class TerritoryOptionsResponse(_WireModel):
    territories: list[str]
