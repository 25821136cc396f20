"""EAV audit trail - append-only record of attribute value changes.

Rows are written in the caller's transaction, so a rolled-back change
leaves no audit entry behind. Values are stored as JSON text.
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_eav.core.config import settings
from campus_eav.db.enums import AuditAction
from campus_eav.db.models import EavAuditLog
from campus_eav.services.entity_type_service import EntityRef


def serialize_value(value: Any) -> str | None:
    """JSON text for an audit column (dates and decimals via str)."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def record_change(
    db: Session,
    ref: EntityRef,
    attribute_name: str,
    action: AuditAction,
    *,
    old_value: Any = None,
    new_value: Any = None,
    changed_by_id: UUID | None = None,
    change_reason: str | None = None,
) -> EavAuditLog | None:
    """Add an audit row to the session. Returns None when auditing is disabled."""
    if not settings.EAV_AUDIT_ENABLED:
        return None

    entry = EavAuditLog(
        entity_type=ref.entity_type,
        entity_id=ref.entity_id,
        attribute_name=attribute_name,
        action=action.value,
        old_value=serialize_value(old_value),
        new_value=serialize_value(new_value),
        changed_by_id=changed_by_id,
        change_reason=change_reason,
    )
    db.add(entry)
    return entry


def get_audit_logs(
    db: Session,
    ref: EntityRef,
    *,
    attribute_name: str | None = None,
    since: datetime | None = None,
    limit: int = 100,
) -> list[EavAuditLog]:
    """Audit rows for one entity, newest first."""
    query = select(EavAuditLog).where(
        EavAuditLog.entity_type == ref.entity_type,
        EavAuditLog.entity_id == ref.entity_id,
    )
    if attribute_name:
        query = query.where(EavAuditLog.attribute_name == attribute_name)
    if since is not None:
        query = query.where(EavAuditLog.created_at >= since)

    query = query.order_by(EavAuditLog.created_at.desc(), EavAuditLog.id).limit(limit)
    return list(db.execute(query).scalars())
