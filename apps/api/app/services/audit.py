from __future__ import annotations

from app.models.audit import AuditLog
from app.pipeline.constants import ChangeType


def format_batch_reason(reason: str, batch_id: str) -> str:
    return f"{reason} (Batch: {batch_id})"


def build_audit_entry(
    *,
    deal_id: int,
    deal_identifier: str,
    field_changed: str,
    old_value: str | None,
    new_value: str | None,
    changed_by: str,
    reason: str | None,
    change_type: ChangeType,
) -> AuditLog:
    """Create an unsaved audit row; callers persist it with the deal change."""
    return AuditLog(
        deal_id=deal_id,
        deal_identifier=deal_identifier,
        field_changed=field_changed,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
        reason=reason,
        change_type=change_type,
    )
