from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.database import get_db
from app.pipeline.constants import TERRITORIES
from app.pipeline.errors import PipelineError
from app.pipeline.schemas import (
    AuditTrailResponse,
    BulkPreviewRequest,
    BulkPreviewResponse,
    BulkReassignRequest,
    BulkReassignResponse,
    DealAssignmentResponse,
    SalesRepListResponse,
    SalesRepUpdateRequest,
    TerritoryOptionsResponse,
    TerritoryUpdateRequest,
    WorkloadAnalyticsResponse,
)
from app.pipeline.service import (
    audit_trail_service,
    bulk_reassignment_service,
    deal_assignment_service,
    workload_analytics_service,
)


logger = logging.getLogger("app.pipeline.api")

deals_router = APIRouter(prefix="/api/deals", tags=["pipeline.deals"])
workload_router = APIRouter(prefix="/api", tags=["pipeline.workload"])
audit_router = APIRouter(prefix="/api", tags=["pipeline.audit"])

INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class ErrorEnvelope:
    error: str
    details: Any
    correlation_id: str | None


def error_response(request: Request, *, status_code: int, error: str, details: Any = None) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(error=error, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def handle_failure(request: Request, exc: Exception, *, operation: str) -> JSONResponse:
    if isinstance(exc, PipelineError) and exc.status_code < 500:
        return error_response(request, status_code=exc.status_code, error=exc.message, details=exc.details)

    logger.exception("request.failed", extra={"operation": operation, "error": str(exc)})
    return error_response(request, status_code=500, error=INTERNAL_ERROR_MESSAGE)


@deals_router.post("/preview-bulk", response_model=BulkPreviewResponse)
def preview_bulk(
    request: Request,
    dto: BulkPreviewRequest,
    db: Session = Depends(get_db),
) -> BulkPreviewResponse | JSONResponse:
    try:
        return bulk_reassignment_service.preview(db, dto.deal_ids, dto.changes.sales_rep_name)
    except Exception as exc:
        return handle_failure(request, exc, operation="bulk_preview")


@deals_router.post("/bulk-reassign", response_model=BulkReassignResponse)
def bulk_reassign(
    request: Request,
    dto: BulkReassignRequest,
    db: Session = Depends(get_db),
) -> BulkReassignResponse | JSONResponse:
    try:
        return bulk_reassignment_service.execute(
            db,
            dto.deal_ids,
            dto.changes.sales_rep_name,
            reason=dto.reason,
            changed_by=dto.changed_by,
        )
    except Exception as exc:
        return handle_failure(request, exc, operation="bulk_reassign")


@deals_router.patch("/{deal_id}/sales-rep", response_model=DealAssignmentResponse)
def update_deal_sales_rep(
    request: Request,
    deal_id: int,
    dto: SalesRepUpdateRequest,
    db: Session = Depends(get_db),
) -> DealAssignmentResponse | JSONResponse:
    try:
        return deal_assignment_service.reassign_sales_rep(
            db,
            deal_id,
            dto.sales_rep,
            reason=dto.reason,
            changed_by=dto.changed_by,
        )
    except Exception as exc:
        return handle_failure(request, exc, operation="deal_sales_rep_update")


@deals_router.patch("/{deal_id}/territory", response_model=DealAssignmentResponse)
def update_deal_territory(
    request: Request,
    deal_id: int,
    dto: TerritoryUpdateRequest,
    db: Session = Depends(get_db),
) -> DealAssignmentResponse | JSONResponse:
    try:
        return deal_assignment_service.update_territory(
            db,
            deal_id,
            dto.territory,
            reason=dto.reason,
            changed_by=dto.changed_by,
        )
    except Exception as exc:
        return handle_failure(request, exc, operation="deal_territory_update")


@workload_router.get("/workload-analytics", response_model=WorkloadAnalyticsResponse)
def get_workload_analytics(
    request: Request,
    db: Session = Depends(get_db),
) -> WorkloadAnalyticsResponse | JSONResponse:
    try:
        return workload_analytics_service.get_analytics(db)
    except Exception as exc:
        return handle_failure(request, exc, operation="workload_analytics")


@workload_router.get("/sales-reps", response_model=SalesRepListResponse)
def list_sales_reps(
    request: Request,
    db: Session = Depends(get_db),
) -> SalesRepListResponse | JSONResponse:
    try:
        return SalesRepListResponse(sales_reps=workload_analytics_service.list_sales_rep_names(db))
    except Exception as exc:
        return handle_failure(request, exc, operation="sales_rep_list")


@workload_router.get("/territories/options", response_model=TerritoryOptionsResponse)
def list_territory_options() -> TerritoryOptionsResponse:
    return TerritoryOptionsResponse(territories=list(TERRITORIES))


@audit_router.get("/audit-trail", response_model=AuditTrailResponse)
def list_audit_trail(
    request: Request,
    deal_id: int | None = Query(default=None, alias="dealId"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> AuditTrailResponse | JSONResponse:
    try:
        return audit_trail_service.list_audit_logs(db, deal_id=deal_id, limit=limit)
    except Exception as exc:
        return handle_failure(request, exc, operation="audit_trail_list")
