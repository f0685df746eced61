from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import AuditLog, sessionMaker
from fleetcore.src import audit, exceptions, validators, getters
from fleetcore.src.enums import AuditAction, EntityType, OrderIn
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.functions import enumStr, makeExceptionResponses, paginationMeta
from fleetcore.src.urls import URL_AUDIT, URL_AUDIT_ENTITY

route_fleet = APIRouter()


## Output Schema
class AuditSchema(BaseModel):
    id: int
    company_id: int
    user_id: Optional[int]
    action: int
    entity_type: int
    entity_id: int
    old_value: Optional[dict]
    new_value: Optional[dict]
    details: Optional[dict]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_on: datetime


class AuditListSchema(BaseModel):
    items: List[AuditSchema]
    pagination: dict


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    created_on = 2


class QueryParams(BaseModel):
    action: AuditAction | None = Field(Query(default=None, description=enumStr(AuditAction)))
    entity_type: EntityType | None = Field(
        Query(default=None, description=enumStr(EntityType))
    )
    entity_id: int | None = Field(Query(default=None))
    user_id: int | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(
        Query(default=OrderBy.created_on, description=enumStr(OrderBy))
    )
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=20, gt=0, le=100))


class EntityParams(BaseModel):
    entity_type: EntityType = Field(Query(description=enumStr(EntityType)))
    entity_id: int = Field(Query())


## Function
def searchAudit(logs: TenantRepository, qParam: QueryParams) -> dict:
    query = logs.query()

    # Filters
    if qParam.action is not None:
        query = query.filter(AuditLog.action == qParam.action)
    if qParam.entity_type is not None:
        query = query.filter(AuditLog.entity_type == qParam.entity_type)
    if qParam.entity_id is not None:
        query = query.filter(AuditLog.entity_id == qParam.entity_id)
    if qParam.user_id is not None:
        query = query.filter(AuditLog.user_id == qParam.user_id)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(AuditLog.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(AuditLog.created_on <= qParam.created_on_le)

    # Ordering, ties broken by insertion order
    orderingAttribute = getattr(AuditLog, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc(), AuditLog.id.asc())
    else:
        query = query.order_by(orderingAttribute.desc(), AuditLog.id.desc())

    items, total = logs.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.get(
    URL_AUDIT,
    tags=["Audit"],
    response_model=AuditListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Lists the audit trail of the caller's company, newest first. Requires `view_audit`.
    """,
)
async def fetch_audit_logs(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "view_audit")

        logs = TenantRepository(session, TenantScope(identity.company_id), AuditLog)
        return searchAudit(logs, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_AUDIT_ENTITY,
    tags=["Audit"],
    response_model=List[AuditSchema],
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Every audit entry of one entity of the caller's company, newest first. Requires `view_audit`.
    """,
)
async def fetch_entity_history(
    qParam: EntityParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "view_audit")

        return audit.entityHistory(
            session, TenantScope(identity.company_id), qParam.entity_type, qParam.entity_id
        )
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
