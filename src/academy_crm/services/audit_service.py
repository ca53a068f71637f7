"""Audit trail service.

Records import job state changes alongside the change itself and lists them
back per entity.
"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy_crm.models.audit_log import AuditLog

async def record_activity(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: Any,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    actor_type: str = "SYSTEM",
    actor_id: str | None = None,
) -> AuditLog:
    """Add an audit record to the session without committing.

    The caller commits it together with the change it describes, so a
    rolled-back change leaves no audit record behind.

    Args:
        session: The database session.
        action: What happened (e.g. ``CRM_IMPORT_COMMITTED``).
        entity_type: Kind of entity changed.
        entity_id: Identifier of the entity; stored as a string.
        before: Entity state before the change.
        after: Entity state after the change.
        metadata: Additional context such as counts.
        actor_type: Who acted: ADMIN, CRM or SYSTEM.
        actor_id: Identifier of the acting user, when known.

    Returns:
        The pending AuditLog record.

    """

    audit_log = AuditLog(
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before=before,
        after=after,
        audit_metadata=metadata,
    )
    session.add(audit_log)
    return audit_log


async def list_activities(
    session: AsyncSession,
    *,
    entity_type: str | None = None,
    entity_id: Any = None,
    action: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[AuditLog], int]:
    """List audit records newest first.

    Returns:
        Tuple of (audit log records, total count).
    """
    query = select(AuditLog)
    count_query = select(func.count(AuditLog.id))

    if entity_type is not None:
        query = query.where(AuditLog.entity_type == entity_type)
        count_query = count_query.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == str(entity_id))
        count_query = count_query.where(AuditLog.entity_id == str(entity_id))
    if action is not None:
        query = query.where(AuditLog.action == action)
        count_query = count_query.where(AuditLog.action == action)

    total = (await session.execute(count_query)).scalar_one()

    offset = (page - 1) * page_size
    query = query.order_by(AuditLog.occurred_at.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    return list(result.scalars().all()), total
