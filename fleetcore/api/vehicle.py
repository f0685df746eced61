from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import Vehicle, sessionMaker
from fleetcore.src import audit, exceptions, validators, getters
from fleetcore.src.trips import setVehicleStatus
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    EntityType,
    OrderIn,
    QuotaResource,
    VehicleStatus,
    VehicleType,
)
from fleetcore.src.realtime import broadcaster, vehicleStatusEvent
from fleetcore.src.subscription import enforceQuota, recordUsage
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import REGEX_VEHICLE_NUMBER
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
    toUTC,
    updateIfChanged,
    utcNow,
)
from fleetcore.src.urls import URL_VEHICLE

route_fleet = APIRouter()

# Manual status changes; IN_TRIP is owned by the trip engine
vehicleStatusTransition = {
    VehicleStatus.AVAILABLE: [VehicleStatus.MAINTENANCE],
    VehicleStatus.MAINTENANCE: [VehicleStatus.AVAILABLE],
    VehicleStatus.IN_TRIP: [],
}


## Output Schema
class VehicleSchema(BaseModel):
    id: int
    company_id: int
    vehicle_number: str
    model: Optional[str]
    type: int
    capacity_kg: int
    status: int
    insurance_policy: Optional[str]
    insurance_expiry: Optional[datetime]
    insurance_expired: bool
    current_trip_id: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class VehicleListSchema(BaseModel):
    items: List[VehicleSchema]
    pagination: dict


## Input Forms
class CreateForm(BaseModel):
    vehicle_number: str = Field(Form(min_length=2, max_length=16))
    model: str | None = Field(Form(max_length=64, default=None))
    type: VehicleType = Field(
        Form(description=enumStr(VehicleType), default=VehicleType.TRUCK)
    )
    capacity_kg: int = Field(Form(ge=100))
    insurance_policy: str | None = Field(Form(max_length=64, default=None))
    insurance_expiry: datetime | None = Field(Form(default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    model: str | None = Field(Form(max_length=64, default=None))
    type: VehicleType | None = Field(Form(description=enumStr(VehicleType), default=None))
    capacity_kg: int | None = Field(Form(ge=100, default=None))
    insurance_policy: str | None = Field(Form(max_length=64, default=None))
    insurance_expiry: datetime | None = Field(Form(default=None))
    status: VehicleStatus | None = Field(
        Form(description=enumStr(VehicleStatus), default=None)
    )


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    capacity_kg = 4


class QueryParams(BaseModel):
    vehicle_number: str | None = Field(Query(default=None))
    model: str | None = Field(Query(default=None))
    type: VehicleType | None = Field(Query(default=None, description=enumStr(VehicleType)))
    status: VehicleStatus | None = Field(
        Query(default=None, description=enumStr(VehicleStatus))
    )
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # capacity based
    capacity_kg_ge: int | None = Field(Query(default=None))
    capacity_kg_le: int | None = Field(Query(default=None))
    # insurance_expiry based
    insurance_expiry_ge: datetime | None = Field(Query(default=None))
    insurance_expiry_le: datetime | None = Field(Query(default=None))
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
def vehicleData(vehicle: Vehicle) -> dict:
    data = jsonable_encoder(vehicle)
    expiry = toUTC(vehicle.insurance_expiry)
    data["insurance_expired"] = expiry is not None and expiry < utcNow()
    return data


def updateVehicle(vehicle: Vehicle, fParam: UpdateForm):
    updateIfChanged(
        vehicle,
        fParam,
        [
            Vehicle.model.key,
            Vehicle.type.key,
            Vehicle.capacity_kg.key,
            Vehicle.insurance_policy.key,
            Vehicle.insurance_expiry.key,
        ],
    )


def searchVehicle(vehicles: TenantRepository, qParam: QueryParams) -> dict:
    query = vehicles.query()

    # Filters
    if qParam.vehicle_number is not None:
        query = query.filter(Vehicle.vehicle_number.ilike(f"%{qParam.vehicle_number}%"))
    if qParam.model is not None:
        query = query.filter(Vehicle.model.ilike(f"%{qParam.model}%"))
    if qParam.type is not None:
        query = query.filter(Vehicle.type == qParam.type)
    if qParam.status is not None:
        query = query.filter(Vehicle.status == qParam.status)
    # id based
    if qParam.id is not None:
        query = query.filter(Vehicle.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Vehicle.id.in_(qParam.id_list))
    # capacity based
    if qParam.capacity_kg_ge is not None:
        query = query.filter(Vehicle.capacity_kg >= qParam.capacity_kg_ge)
    if qParam.capacity_kg_le is not None:
        query = query.filter(Vehicle.capacity_kg <= qParam.capacity_kg_le)
    # insurance_expiry based
    if qParam.insurance_expiry_ge is not None:
        query = query.filter(Vehicle.insurance_expiry >= qParam.insurance_expiry_ge)
    if qParam.insurance_expiry_le is not None:
        query = query.filter(Vehicle.insurance_expiry <= qParam.insurance_expiry_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Vehicle.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Vehicle.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Vehicle, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = vehicles.paginate(query, qParam.page, qParam.limit)
    return {
        "items": [vehicleData(vehicle) for vehicle in items],
        "pagination": paginationMeta(total, qParam.page, qParam.limit),
    }


## API endpoints [Fleet]
@route_fleet.post(
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.QuotaExceeded("vehicle", 5),
            exceptions.CompanySuspended,
            exceptions.UniqueViolation("Vehicle number already exists"),
        ]
    ),
    description="""
    Registers a vehicle in the caller's company. New vehicles are available.
    Requires the `create_vehicle` permission and counts against the vehicles quota.
    The vehicle number is stored upper-case and must be unique inside the company.
    """,
)
async def create_vehicle(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_vehicle")

        scope = TenantScope(identity.company_id)
        company = enforceQuota(session, scope, QuotaResource.VEHICLE)
        vehicles = TenantRepository(session, scope, Vehicle)
        vehicleNumber = validators.pattern(
            fParam.vehicle_number.strip().upper(), REGEX_VEHICLE_NUMBER, "vehicle_number"
        )
        if vehicles.exists(Vehicle.vehicle_number == vehicleNumber):
            raise exceptions.UniqueViolation("Vehicle number already exists")
        vehicle = vehicles.create(
            vehicle_number=vehicleNumber,
            model=fParam.model,
            type=fParam.type,
            capacity_kg=fParam.capacity_kg,
            insurance_policy=fParam.insurance_policy,
            insurance_expiry=fParam.insurance_expiry,
            status=VehicleStatus.AVAILABLE,
        )
        recordUsage(company, QuotaResource.VEHICLE)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.VEHICLE_CREATION,
            EntityType.VEHICLE,
            vehicle.id,
            newValue=snapshot(vehicle),
        )
        session.commit()
        session.refresh(vehicle)

        data = vehicleData(vehicle)
        logEvent(identity, request_info, data)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Updates a vehicle of the caller's company. Requires `update_vehicle`.
    The status can only be switched between available and maintenance;
    vehicles enter and leave trips through the trip endpoints.
    """,
)
async def update_vehicle(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_vehicle")

        vehicles = TenantRepository(session, TenantScope(identity.company_id), Vehicle)
        vehicle = vehicles.get(fParam.id)
        if vehicle is None:
            raise exceptions.InvalidIdentifier()

        oldValue = snapshot(vehicle)
        statusChanged = fParam.status is not None and fParam.status != vehicle.status
        if statusChanged:
            validators.stateTransition(
                vehicleStatusTransition, vehicle.status, fParam.status, Vehicle.status.name
            )
            setVehicleStatus(vehicles, vehicle, fParam.status)
        updateVehicle(vehicle, fParam)
        haveUpdates = statusChanged or session.is_modified(vehicle)
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.VEHICLE_STATUS_CHANGE if statusChanged else AuditAction.VEHICLE_UPDATE,
                EntityType.VEHICLE,
                vehicle.id,
                oldValue=oldValue,
                newValue=snapshot(vehicle),
            )
            session.commit()
            session.refresh(vehicle)

        data = vehicleData(vehicle)
        if haveUpdates:
            logEvent(identity, request_info, data)
        if statusChanged:
            event, payload = vehicleStatusEvent(vehicle.company_id, vehicle.id, vehicle.status)
            await broadcaster.publish(vehicle.company_id, event, payload)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_VEHICLE,
    tags=["Vehicle"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.DataInUse(Vehicle, "Vehicle is assigned to a trip"),
        ]
    ),
    description="""
    Deletes a vehicle of the caller's company. Requires `delete_vehicle`.
    A vehicle that is in a trip cannot be deleted.
    """,
)
async def delete_vehicle(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_vehicle")

        vehicles = TenantRepository(session, TenantScope(identity.company_id), Vehicle)
        vehicle = vehicles.get(fParam.id)
        if vehicle is not None:
            if vehicle.status == VehicleStatus.IN_TRIP:
                raise exceptions.DataInUse(Vehicle, "Vehicle is assigned to a trip")
            oldValue = snapshot(vehicle)
            vehicles.delete(vehicle)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.VEHICLE_DELETION,
                EntityType.VEHICLE,
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
    URL_VEHICLE,
    tags=["Vehicle"],
    response_model=VehicleListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the vehicles of the caller's company, with filters and pagination.
    Each vehicle reports whether its insurance has expired.
    """,
)
async def fetch_vehicles(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        vehicles = TenantRepository(session, TenantScope(identity.company_id), Vehicle)
        return searchVehicle(vehicles, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
