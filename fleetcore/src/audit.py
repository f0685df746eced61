"""
Audit trail writes and queries.

Entries are added to the caller's session, so they commit or roll back
together with the change they describe.
"""

from typing import Optional
from sqlalchemy.orm.session import Session

from fleetcore.src import exceptions
from fleetcore.src.db import AuditLog
from fleetcore.src.enums import AuditAction, EntityType
from fleetcore.src.schemas import Identity, RequestInfo
from fleetcore.src.tenancy import TenantRepository, TenantScope


def record(
    session: Session,
    scope: Optional[TenantScope],
    action: AuditAction,
    entityType: EntityType,
    entityId: int,
    userId: Optional[int] = None,
    oldValue: Optional[dict] = None,
    newValue: Optional[dict] = None,
    details: Optional[dict] = None,
    requestInfo: Optional[RequestInfo] = None,
) -> AuditLog:
    """
    Append an audit entry for a mutating action.

    Raises:
        exceptions.TenantContextRequired: If no tenant scope is given.
    """
    if not isinstance(scope, TenantScope):
        raise exceptions.TenantContextRequired()
    return TenantRepository(session, scope, AuditLog).create(
        user_id=userId,
        action=action,
        entity_type=entityType,
        entity_id=entityId,
        old_value=oldValue,
        new_value=newValue,
        details=details,
        ip_address=requestInfo.ip_address if requestInfo else None,
        user_agent=requestInfo.user_agent if requestInfo else None,
    )


def recordAction(
    session: Session,
    identity: Identity,
    requestInfo: Optional[RequestInfo],
    action: AuditAction,
    entityType: EntityType,
    entityId: int,
    oldValue: Optional[dict] = None,
    newValue: Optional[dict] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """Shorthand for actions performed by an authenticated caller."""
    return record(
        session,
        TenantScope(identity.company_id),
        action,
        entityType,
        entityId,
        userId=identity.user_id,
        oldValue=oldValue,
        newValue=newValue,
        details=details,
        requestInfo=requestInfo,
    )


def entityHistory(
    session: Session, scope: TenantScope, entityType: EntityType, entityId: int
) -> list:
    return (
        TenantRepository(session, scope, AuditLog)
        .query()
        .filter(AuditLog.entity_type == entityType, AuditLog.entity_id == entityId)
        .order_by(AuditLog.created_on.desc(), AuditLog.id.desc())
        .all()
    )
