from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

pipeline_bulk_operations_total = Counter(
    "pipeline_bulk_operations_total",
    "Total bulk reassignment operations by outcome",
    ["operation", "outcome"],
)

pipeline_bulk_operation_duration_seconds = Histogram(
    "pipeline_bulk_operation_duration_seconds",
    "Bulk reassignment operation duration in seconds",
    ["operation"],
)

pipeline_bulk_deals_reassigned_total = Counter(
    "pipeline_bulk_deals_reassigned_total",
    "Total deals moved to a new sales rep by bulk reassignment",
)

pipeline_audit_entries_written_total = Counter(
    "pipeline_audit_entries_written_total",
    "Total audit log entries written by change type",
    ["change_type"],
)

pipeline_preview_conflicts_total = Counter(
    "pipeline_preview_conflicts_total",
    "Total overload conflicts reported by bulk previews",
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_bulk_operation(operation: str, outcome: str, duration: float) -> None:
    pipeline_bulk_operations_total.labels(operation=operation, outcome=outcome).inc()
    pipeline_bulk_operation_duration_seconds.labels(operation=operation).observe(duration)


def observe_deals_reassigned(count: int) -> None:
    if count > 0:
        pipeline_bulk_deals_reassigned_total.inc(count)


def observe_audit_entries_written(change_type: str, count: int = 1) -> None:
    if count > 0:
        pipeline_audit_entries_written_total.labels(change_type=change_type).inc(count)


def observe_preview_conflicts(count: int) -> None:
    if count > 0:
        pipeline_preview_conflicts_total.inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
