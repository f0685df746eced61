from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import Route, Trip, sessionMaker
from fleetcore.src import audit, exceptions, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import AuditAction, EntityType, OrderIn, TripStatus, VehicleType
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
)
from fleetcore.src.urls import URL_ROUTE

route_fleet = APIRouter()


## Shared Schema
class RoutePoint(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    stop_duration_min: int = Field(default=0, ge=0)


class Toll(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    cost: float = Field(ge=0)


## Output Schema
class RouteSchema(BaseModel):
    id: int
    company_id: int
    name: str
    source: dict
    destination: dict
    waypoints: List[dict]
    distance_km: float
    estimated_duration_hr: float
    tolls: List[dict]
    preferred_vehicle_types: List[int]
    is_active: bool
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class RouteListSchema(BaseModel):
    items: List[RouteSchema]
    pagination: dict


## Input Forms
class CreateForm(BaseModel):
    name: str | None = Field(Body(min_length=2, max_length=128, default=None))
    source: RoutePoint = Field(Body())
    destination: RoutePoint = Field(Body())
    waypoints: List[RoutePoint] = Field(Body(default=[]))
    distance_km: float = Field(Body(ge=1))
    estimated_duration_hr: float = Field(Body(ge=0.1))
    tolls: List[Toll] = Field(Body(default=[]))
    preferred_vehicle_types: List[VehicleType] = Field(
        Body(default=[], description=enumStr(VehicleType))
    )
    is_active: bool = Field(Body(default=True))


class UpdateForm(BaseModel):
    id: int = Field(Body())
    name: str | None = Field(Body(min_length=2, max_length=128, default=None))
    source: RoutePoint | None = Field(Body(default=None))
    destination: RoutePoint | None = Field(Body(default=None))
    waypoints: List[RoutePoint] | None = Field(Body(default=None))
    distance_km: float | None = Field(Body(ge=1, default=None))
    estimated_duration_hr: float | None = Field(Body(ge=0.1, default=None))
    tolls: List[Toll] | None = Field(Body(default=None))
    preferred_vehicle_types: List[VehicleType] | None = Field(
        Body(default=None, description=enumStr(VehicleType))
    )
    is_active: bool | None = Field(Body(default=None))


class DeleteForm(BaseModel):
    id: int = Field(Body(embed=True))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    distance_km = 4


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    is_active: bool | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # distance based
    distance_km_ge: float | None = Field(Query(default=None))
    distance_km_le: float | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=20, gt=0, le=100))


## Function
def routeName(source: RoutePoint, destination: RoutePoint) -> str:
    return f"{source.name} → {destination.name}"


def checkUnused(session, scope: TenantScope, route: Route) -> None:
    """Routes referenced by a trip that was not cancelled are immutable."""
    inUse = TenantRepository(session, scope, Trip).exists(
        Trip.route_id == route.id, Trip.status != TripStatus.CANCELLED
    )
    if inUse:
        raise exceptions.DataInUse(Route, "Route is used by a trip")


def updateRoute(route: Route, fParam: UpdateForm):
    changes = fParam.model_dump(exclude={"id"}, exclude_none=True, mode="json")
    for field, value in changes.items():
        if getattr(route, field) != value:
            setattr(route, field, value)


def searchRoute(routes: TenantRepository, qParam: QueryParams) -> dict:
    query = routes.query()

    # Filters
    if qParam.name is not None:
        query = query.filter(Route.name.ilike(f"%{qParam.name}%"))
    if qParam.is_active is not None:
        query = query.filter(Route.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(Route.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Route.id.in_(qParam.id_list))
    # distance based
    if qParam.distance_km_ge is not None:
        query = query.filter(Route.distance_km >= qParam.distance_km_ge)
    if qParam.distance_km_le is not None:
        query = query.filter(Route.distance_km <= qParam.distance_km_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Route.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Route.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Route, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = routes.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.post(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.CompanySuspended,
            exceptions.UniqueViolation("Route name already exists"),
        ]
    ),
    description="""
    Creates a route in the caller's company. Requires `create_route`.
    Without a name the route is named "Source → Destination". Names are unique inside the company.
    """,
)
async def create_route(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_route")
        validators.companyStatus(getters.company(identity, session))

        routes = TenantRepository(session, TenantScope(identity.company_id), Route)
        name = fParam.name or routeName(fParam.source, fParam.destination)
        if routes.exists(Route.name == name):
            raise exceptions.UniqueViolation("Route name already exists")
        data = fParam.model_dump(exclude={"name"}, mode="json")
        route = routes.create(name=name, created_by=identity.user_id, **data)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.ROUTE_CREATION,
            EntityType.ROUTE,
            route.id,
            newValue=snapshot(route),
        )
        session.commit()
        session.refresh(route)

        routeData = jsonable_encoder(route)
        logEvent(identity, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.DataInUse(Route, "Route is used by a trip"),
        ]
    ),
    description="""
    Updates a route of the caller's company. Requires `update_route`.
    A route used by any trip that was not cancelled cannot be changed.
    """,
)
async def update_route(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_route")

        scope = TenantScope(identity.company_id)
        routes = TenantRepository(session, scope, Route)
        route = routes.get(fParam.id)
        if route is None:
            raise exceptions.InvalidIdentifier()
        checkUnused(session, scope, route)
        if fParam.name is not None and routes.exists(
            Route.name == fParam.name, Route.id != route.id
        ):
            raise exceptions.UniqueViolation("Route name already exists")

        oldValue = snapshot(route)
        updateRoute(route, fParam)
        haveUpdates = session.is_modified(route)
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.ROUTE_UPDATE,
                EntityType.ROUTE,
                route.id,
                oldValue=oldValue,
                newValue=snapshot(route),
            )
            session.commit()
            session.refresh(route)

        routeData = jsonable_encoder(route)
        if haveUpdates:
            logEvent(identity, request_info, routeData)
        return routeData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_ROUTE,
    tags=["Route"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.DataInUse(Route, "Route is used by a trip"),
        ]
    ),
    description="""
    Deletes a route of the caller's company. Requires `delete_route`.
    A route used by any trip that was not cancelled cannot be deleted.
    """,
)
async def delete_route(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_route")

        scope = TenantScope(identity.company_id)
        routes = TenantRepository(session, scope, Route)
        route = routes.get(fParam.id)
        if route is not None:
            checkUnused(session, scope, route)
            oldValue = snapshot(route)
            routes.delete(route)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.ROUTE_DELETION,
                EntityType.ROUTE,
                fParam.id,
                oldValue=oldValue,
            )
            session.commit()
            logEvent(identity, request_info, oldValue)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_ROUTE,
    tags=["Route"],
    response_model=RouteListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the routes of the caller's company, with filters and pagination.
    """,
)
async def fetch_routes(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        routes = TenantRepository(session, TenantScope(identity.company_id), Route)
        return searchRoute(routes, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
