from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import DriverProfile, Trip, sessionMaker
from fleetcore.src import audit, exceptions, trips, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    CompanyRole,
    EntityType,
    OrderIn,
    ProgressStatus,
    TripStatus,
)
from fleetcore.src.realtime import broadcaster
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import MAX_BULK_DELETE, REGEX_TRIP_CODE
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
)
from fleetcore.src.urls import (
    URL_TRIP,
    URL_TRIP_BULK_DELETE,
    URL_TRIP_CANCEL,
    URL_TRIP_COMPLETE,
    URL_TRIP_DEPENDENCY,
    URL_TRIP_DETAILS,
    URL_TRIP_PROGRESS,
)

route_fleet = APIRouter()


## Output Schema
class TripSchema(BaseModel):
    id: int
    company_id: int
    trip_code: str
    route_id: Optional[int]
    client_id: Optional[int]
    vehicle_ids: List[int]
    driver_ids: List[int]
    goods_info: Optional[str]
    load_weight_kg: Optional[float]
    trip_cost: Optional[float]
    status: int
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    remarks: Optional[str]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class TripDetailSchema(TripSchema):
    route: Optional[dict]
    client: Optional[dict]
    vehicles: List[dict]
    drivers: List[dict]
    progress: List[dict]


class TripListSchema(BaseModel):
    items: List[TripSchema]
    pagination: dict


class ProgressSchema(BaseModel):
    id: int
    company_id: int
    trip_id: int
    latitude: Optional[float]
    longitude: Optional[float]
    note: Optional[str]
    status: int
    recorded_by: Optional[int]
    created_on: datetime


class DependencySchema(BaseModel):
    id: int
    can_delete: bool
    reason: Optional[str]


class BulkFailureSchema(BaseModel):
    id: int
    code: str
    reason: str


class BulkDeleteSchema(BaseModel):
    deleted: List[int]
    failed: List[BulkFailureSchema]


## Input Forms
class CreateForm(BaseModel):
    trip_code: str = Field(Body(min_length=2, max_length=32))
    route_id: int = Field(Body())
    vehicle_ids: List[int] = Field(Body(min_length=1))
    driver_ids: List[int] = Field(Body(min_length=1))
    client_id: int | None = Field(Body(default=None))
    goods_info: str | None = Field(Body(max_length=512, default=None))
    load_weight_kg: float | None = Field(Body(ge=0, default=None))
    trip_cost: float | None = Field(Body(ge=0, default=None))
    remarks: str | None = Field(Body(max_length=2048, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Body())
    trip_code: str | None = Field(Body(min_length=2, max_length=32, default=None))
    route_id: int | None = Field(Body(default=None))
    vehicle_ids: List[int] | None = Field(Body(min_length=1, default=None))
    driver_ids: List[int] | None = Field(Body(min_length=1, default=None))
    client_id: int | None = Field(Body(default=None))
    goods_info: str | None = Field(Body(max_length=512, default=None))
    load_weight_kg: float | None = Field(Body(ge=0, default=None))
    trip_cost: float | None = Field(Body(ge=0, default=None))
    remarks: str | None = Field(Body(max_length=2048, default=None))
    status: TripStatus | None = Field(Body(description=enumStr(TripStatus), default=None))
    clear_client: bool = Field(Body(description="Detach the client, overrides `client_id`", default=False))


class ProgressForm(BaseModel):
    trip_id: int = Field(Body())
    lat: float | None = Field(Body(default=None))
    lng: float | None = Field(Body(default=None))
    note: str | None = Field(Body(max_length=512, default=None))
    status: ProgressStatus = Field(
        Body(description=enumStr(ProgressStatus), default=ProgressStatus.IN_TRANSIT)
    )


class TripForm(BaseModel):
    id: int = Field(Body(embed=True))


class BulkDeleteForm(BaseModel):
    ids: List[int] = Field(Body(embed=True, min_length=1, max_length=MAX_BULK_DELETE))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    start_time = 4
    end_time = 5
    trip_cost = 6


class QueryParams(BaseModel):
    trip_code: str | None = Field(Query(default=None))
    status: TripStatus | None = Field(Query(default=None, description=enumStr(TripStatus)))
    route_id: int | None = Field(Query(default=None))
    client_id: int | None = Field(Query(default=None))
    created_by: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # start_time based
    start_time_ge: datetime | None = Field(Query(default=None))
    start_time_le: datetime | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=20, gt=0, le=100))


class DetailParams(BaseModel):
    id: int = Field(Query())


## Function
def tripCode(value: str | None) -> str | None:
    if value is None:
        return None
    return validators.pattern(value.strip().upper(), REGEX_TRIP_CODE, "trip_code")


def getTrip(engine: trips.TripEngine, tripId: int) -> Trip:
    trip = engine.get(tripId)
    if trip is None:
        raise exceptions.InvalidIdentifier()
    return trip


def checkAssignedDriver(session, identity, trip: Trip) -> None:
    """Drivers may only report progress on trips they are assigned to."""
    if identity.company_role != CompanyRole.DRIVER:
        return
    driver = TenantRepository(
        session, TenantScope(identity.company_id), DriverProfile
    ).findOne(DriverProfile.user_id == identity.user_id)
    if driver is None or driver.id not in (trip.driver_ids or []):
        raise exceptions.NoPermission()


def searchTrip(session, scope: TenantScope, qParam: QueryParams) -> dict:
    repository = TenantRepository(session, scope, Trip)
    query = repository.query()

    # Filters
    if qParam.trip_code is not None:
        query = query.filter(Trip.trip_code.ilike(f"%{qParam.trip_code}%"))
    if qParam.status is not None:
        query = query.filter(Trip.status == qParam.status)
    if qParam.route_id is not None:
        query = query.filter(Trip.route_id == qParam.route_id)
    if qParam.client_id is not None:
        query = query.filter(Trip.client_id == qParam.client_id)
    if qParam.created_by is not None:
        query = query.filter(Trip.created_by == qParam.created_by)
    # id based
    if qParam.id is not None:
        query = query.filter(Trip.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Trip.id.in_(qParam.id_list))
    # start_time based
    if qParam.start_time_ge is not None:
        query = query.filter(Trip.start_time >= qParam.start_time_ge)
    if qParam.start_time_le is not None:
        query = query.filter(Trip.start_time <= qParam.start_time_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Trip.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Trip.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Trip, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = repository.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.post(
    URL_TRIP,
    tags=["Trip"],
    response_model=TripSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.QuotaExceeded("trip", 100),
            exceptions.CompanySuspended,
            exceptions.UniqueViolation("Trip code already exists"),
            exceptions.ResourceConflict("Vehicle is already assigned to another trip"),
        ]
    ),
    description="""
    Creates a scheduled trip and reserves its vehicles and drivers. Requires `create_trip`.
    Counts against the monthly trips quota. Every vehicle must be available and no driver may be on another trip;
    the first conflict aborts the whole creation and nothing is kept.
    """,
)
async def create_trip(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_trip")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = engine.create(
            tripCode(fParam.trip_code),
            fParam.route_id,
            fParam.vehicle_ids,
            fParam.driver_ids,
            clientId=fParam.client_id,
            goodsInfo=fParam.goods_info,
            loadWeightKg=fParam.load_weight_kg,
            tripCost=fParam.trip_cost,
            remarks=fParam.remarks,
            createdBy=identity.user_id,
        )
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.TRIP_CREATION,
            EntityType.TRIP,
            trip.id,
            newValue=snapshot(trip),
        )
        session.commit()
        session.refresh(trip)

        tripData = jsonable_encoder(trip)
        logEvent(identity, request_info, tripData)
        await broadcaster.publishMany(engine.events)
        return tripData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_TRIP,
    tags=["Trip"],
    response_model=TripSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
            exceptions.ResourceConflict("Vehicle is already assigned to another trip"),
        ]
    ),
    description="""
    Updates a trip. Requires `update_trip`.
    Changed vehicle or driver lists are reconciled by difference: removed entries are released,
    added entries are reserved and entries present in both lists are left untouched.
    Every addition is validated before anything is written.
    Null fields are left unchanged; send `clear_client` to detach the client.
    Status changes follow scheduled > started > in-transit > completed, with cancelled reachable from any open state.
    """,
)
async def update_trip(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_trip")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = getTrip(engine, fParam.id)
        oldValue = snapshot(trip)
        changes = fParam.model_dump(exclude={"id", "clear_client"})
        changes["trip_code"] = tripCode(fParam.trip_code)
        engine.update(trip, clearClient=fParam.clear_client, **changes)
        haveUpdates = snapshot(trip) != oldValue
        if haveUpdates:
            completed = (
                trip.status == TripStatus.COMPLETED
                and oldValue["status"] != TripStatus.COMPLETED
            )
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.TRIP_COMPLETION if completed else AuditAction.TRIP_UPDATE,
                EntityType.TRIP,
                trip.id,
                oldValue=oldValue,
                newValue=snapshot(trip),
            )
            session.commit()
            session.refresh(trip)

        tripData = jsonable_encoder(trip)
        if haveUpdates:
            logEvent(identity, request_info, tripData)
            await broadcaster.publishMany(engine.events)
        return tripData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_TRIP,
    tags=["Trip"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.DataInUse(Trip, "Cannot delete trip in in-transit status"),
        ]
    ),
    description="""
    Deletes a trip that is not started or in transit. Requires `delete_trip`.
    Every vehicle and driver still held by the trip is released first.
    """,
)
async def delete_trip(
    fParam: TripForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_trip")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = engine.get(fParam.id)
        if trip is not None:
            oldValue = snapshot(trip)
            engine.delete(trip)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.TRIP_DELETION,
                EntityType.TRIP,
                fParam.id,
                oldValue=oldValue,
            )
            session.commit()
            logEvent(identity, request_info, oldValue)
            await broadcaster.publishMany(engine.events)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_TRIP_BULK_DELETE,
    tags=["Trip"],
    response_model=BulkDeleteSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Deletes several trips, each in its own transaction. Requires `delete_trip`.
    The call never fails as a whole: it reports the deleted ids and, for every other id,
    a failure code (`not_found`, `blocked` or `error`) with a reason.
    """,
)
async def bulk_delete_trip(
    fParam: BulkDeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_trip")
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()

    result = trips.bulkDelete(sessionMaker, identity, fParam.ids, request_info)
    events = result.pop("events")
    if result["deleted"]:
        logEvent(identity, request_info, result)
    await broadcaster.publishMany(events)
    return result


@route_fleet.get(
    URL_TRIP,
    tags=["Trip"],
    response_model=TripListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the trips of the caller's company, with filters and pagination.
    """,
)
async def fetch_trips(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        return searchTrip(session, TenantScope(identity.company_id), qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_TRIP_DETAILS,
    tags=["Trip"],
    response_model=TripDetailSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.InvalidIdentifier]),
    description="""
    Fetches one trip joined with its route, client, vehicles, drivers and progress log.
    """,
)
async def fetch_trip_details(
    qParam: DetailParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        return engine.details(getTrip(engine, qParam.id))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.post(
    URL_TRIP_PROGRESS,
    tags=["Trip"],
    response_model=ProgressSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidLocation,
        ]
    ),
    description="""
    Appends a progress entry to a trip. Requires `add_trip_progress`;
    drivers may only report on trips they are assigned to.
    The trip status itself is not changed.
    """,
)
async def create_trip_progress(
    fParam: ProgressForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "add_trip_progress")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = getTrip(engine, fParam.trip_id)
        checkAssignedDriver(session, identity, trip)
        entry = engine.addProgress(
            trip,
            fParam.lat,
            fParam.lng,
            note=fParam.note,
            status=fParam.status,
            recordedBy=identity.user_id,
        )
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.TRIP_UPDATE,
            EntityType.TRIP,
            trip.id,
            newValue=snapshot(entry),
            details={"progress_id": entry.id},
        )
        session.commit()
        session.refresh(entry)

        entryData = jsonable_encoder(entry)
        logEvent(identity, request_info, entryData)
        return entryData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.post(
    URL_TRIP_COMPLETE,
    tags=["Trip"],
    response_model=TripSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Completes a started or in-transit trip. Requires `update_trip`.
    Every vehicle becomes available and every driver active again.
    Completing a trip twice fails.
    """,
)
async def complete_trip(
    fParam: TripForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_trip")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = getTrip(engine, fParam.id)
        oldValue = snapshot(trip)
        engine.complete(trip)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.TRIP_COMPLETION,
            EntityType.TRIP,
            trip.id,
            oldValue=oldValue,
            newValue=snapshot(trip),
        )
        session.commit()
        session.refresh(trip)

        tripData = jsonable_encoder(trip)
        logEvent(identity, request_info, tripData)
        await broadcaster.publishMany(engine.events)
        return tripData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.post(
    URL_TRIP_CANCEL,
    tags=["Trip"],
    response_model=TripSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Cancels a trip that is not finished yet. Requires `update_trip`.
    Every vehicle and driver held by the trip is released.
    """,
)
async def cancel_trip(
    fParam: TripForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_trip")

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        trip = getTrip(engine, fParam.id)
        oldValue = snapshot(trip)
        engine.cancel(trip)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.TRIP_UPDATE,
            EntityType.TRIP,
            trip.id,
            oldValue=oldValue,
            newValue=snapshot(trip),
        )
        session.commit()
        session.refresh(trip)

        tripData = jsonable_encoder(trip)
        logEvent(identity, request_info, tripData)
        await broadcaster.publishMany(engine.events)
        return tripData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_TRIP_DEPENDENCY,
    tags=["Trip"],
    response_model=DependencySchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.InvalidIdentifier]),
    description="""
    Tells whether a trip can be deleted, and why not. Nothing is changed.
    """,
)
async def fetch_trip_dependency(
    qParam: DetailParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        engine = trips.TripEngine(session, TenantScope(identity.company_id))
        return engine.canDelete(getTrip(engine, qParam.id))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
