from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import MaintenanceLog, Vehicle, sessionMaker
from fleetcore.src import audit, exceptions, validators, getters
from fleetcore.src.trips import setVehicleStatus
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    EntityType,
    OrderIn,
    ServiceType,
    VehicleStatus,
)
from fleetcore.src.realtime import broadcaster, vehicleStatusEvent
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
    updateIfChanged,
)
from fleetcore.src.urls import URL_MAINTENANCE

route_fleet = APIRouter()


## Output Schema
class MaintenanceSchema(BaseModel):
    id: int
    company_id: int
    vehicle_id: int
    service_type: int
    description: Optional[str]
    service_date: datetime
    cost: float
    next_due_date: Optional[datetime]
    odometer_km: Optional[int]
    vendor_name: Optional[str]
    vendor_contact: Optional[str]
    vendor_address: Optional[str]
    remarks: Optional[str]
    reminder_sent_on: Optional[datetime]
    created_by: Optional[int]
    updated_on: Optional[datetime]
    created_on: datetime


class MaintenanceListSchema(BaseModel):
    items: List[MaintenanceSchema]
    pagination: dict


## Input Forms
class CreateForm(BaseModel):
    vehicle_id: int = Field(Form())
    service_type: ServiceType = Field(
        Form(description=enumStr(ServiceType), default=ServiceType.GENERAL_SERVICE)
    )
    description: str | None = Field(Form(max_length=1024, default=None))
    service_date: datetime = Field(Form())
    cost: float = Field(Form(ge=0, default=0))
    next_due_date: datetime | None = Field(Form(default=None))
    odometer_km: int | None = Field(Form(ge=0, default=None))
    vendor_name: str | None = Field(Form(max_length=128, default=None))
    vendor_contact: str | None = Field(Form(max_length=64, default=None))
    vendor_address: str | None = Field(Form(max_length=512, default=None))
    remarks: str | None = Field(Form(max_length=2048, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    service_type: ServiceType | None = Field(
        Form(description=enumStr(ServiceType), default=None)
    )
    description: str | None = Field(Form(max_length=1024, default=None))
    service_date: datetime | None = Field(Form(default=None))
    cost: float | None = Field(Form(ge=0, default=None))
    next_due_date: datetime | None = Field(Form(default=None))
    odometer_km: int | None = Field(Form(ge=0, default=None))
    vendor_name: str | None = Field(Form(max_length=128, default=None))
    vendor_contact: str | None = Field(Form(max_length=64, default=None))
    vendor_address: str | None = Field(Form(max_length=512, default=None))
    remarks: str | None = Field(Form(max_length=2048, default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    service_date = 4
    next_due_date = 5
    cost = 6


class QueryParams(BaseModel):
    vehicle_id: int | None = Field(Query(default=None))
    service_type: ServiceType | None = Field(
        Query(default=None, description=enumStr(ServiceType))
    )
    vendor_name: str | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # service_date based
    service_date_ge: datetime | None = Field(Query(default=None))
    service_date_le: datetime | None = Field(Query(default=None))
    # next_due_date based
    next_due_date_ge: datetime | None = Field(Query(default=None))
    next_due_date_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=20, gt=0, le=100))


## Function
def updateMaintenance(log: MaintenanceLog, fParam: UpdateForm):
    nextDueDate = log.next_due_date
    updateIfChanged(
        log,
        fParam,
        [
            MaintenanceLog.service_type.key,
            MaintenanceLog.description.key,
            MaintenanceLog.service_date.key,
            MaintenanceLog.cost.key,
            MaintenanceLog.next_due_date.key,
            MaintenanceLog.odometer_km.key,
            MaintenanceLog.vendor_name.key,
            MaintenanceLog.vendor_contact.key,
            MaintenanceLog.vendor_address.key,
            MaintenanceLog.remarks.key,
        ],
    )
    # A moved due date needs a fresh reminder
    if log.next_due_date != nextDueDate:
        log.reminder_sent_on = None


def searchMaintenance(logs: TenantRepository, qParam: QueryParams) -> dict:
    query = logs.query()

    # Filters
    if qParam.vehicle_id is not None:
        query = query.filter(MaintenanceLog.vehicle_id == qParam.vehicle_id)
    if qParam.service_type is not None:
        query = query.filter(MaintenanceLog.service_type == qParam.service_type)
    if qParam.vendor_name is not None:
        query = query.filter(MaintenanceLog.vendor_name.ilike(f"%{qParam.vendor_name}%"))
    # id based
    if qParam.id is not None:
        query = query.filter(MaintenanceLog.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(MaintenanceLog.id.in_(qParam.id_list))
    # service_date based
    if qParam.service_date_ge is not None:
        query = query.filter(MaintenanceLog.service_date >= qParam.service_date_ge)
    if qParam.service_date_le is not None:
        query = query.filter(MaintenanceLog.service_date <= qParam.service_date_le)
    # next_due_date based
    if qParam.next_due_date_ge is not None:
        query = query.filter(MaintenanceLog.next_due_date >= qParam.next_due_date_ge)
    if qParam.next_due_date_le is not None:
        query = query.filter(MaintenanceLog.next_due_date <= qParam.next_due_date_le)

    # Ordering
    orderingAttribute = getattr(MaintenanceLog, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = logs.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.post(
    URL_MAINTENANCE,
    tags=["Maintenance"],
    response_model=MaintenanceSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.CompanySuspended,
            exceptions.UnknownValue(Vehicle),
            exceptions.DataInUse(Vehicle, "Vehicle is assigned to a trip"),
        ]
    ),
    description="""
    Records a maintenance log for a vehicle of the caller's company. Requires `create_maintenance`.
    An available vehicle is moved to maintenance; a vehicle in a trip is refused.
    """,
)
async def create_maintenance(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_maintenance")
        validators.companyStatus(getters.company(identity, session))

        scope = TenantScope(identity.company_id)
        vehicles = TenantRepository(session, scope, Vehicle)
        vehicle = vehicles.get(fParam.vehicle_id)
        if vehicle is None:
            raise exceptions.UnknownValue(Vehicle, fParam.vehicle_id)
        if vehicle.status == VehicleStatus.IN_TRIP:
            raise exceptions.DataInUse(Vehicle, "Vehicle is assigned to a trip")

        log = TenantRepository(session, scope, MaintenanceLog).create(
            created_by=identity.user_id,
            **fParam.model_dump(),
        )
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.MAINTENANCE_CREATION,
            EntityType.MAINTENANCE,
            log.id,
            newValue=snapshot(log),
            details={"vehicle_id": vehicle.id},
        )
        statusChanged = vehicle.status != VehicleStatus.MAINTENANCE
        if statusChanged:
            oldValue = snapshot(vehicle)
            setVehicleStatus(vehicles, vehicle, VehicleStatus.MAINTENANCE)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.VEHICLE_STATUS_CHANGE,
                EntityType.VEHICLE,
                vehicle.id,
                oldValue=oldValue,
                newValue=snapshot(vehicle),
                details={"maintenance_id": log.id},
            )
        session.commit()
        session.refresh(log)

        logData = jsonable_encoder(log)
        logEvent(identity, request_info, logData)
        if statusChanged:
            event, payload = vehicleStatusEvent(
                vehicle.company_id, vehicle.id, VehicleStatus.MAINTENANCE
            )
            await broadcaster.publish(vehicle.company_id, event, payload)
        return logData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_MAINTENANCE,
    tags=["Maintenance"],
    response_model=MaintenanceSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
        ]
    ),
    description="""
    Updates a maintenance log of the caller's company. Requires `update_maintenance`.
    Moving the next due date re-arms its reminder.
    """,
)
async def update_maintenance(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_maintenance")

        logs = TenantRepository(session, TenantScope(identity.company_id), MaintenanceLog)
        log = logs.get(fParam.id)
        if log is None:
            raise exceptions.InvalidIdentifier()

        oldValue = snapshot(log)
        updateMaintenance(log, fParam)
        haveUpdates = session.is_modified(log)
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.MAINTENANCE_UPDATE,
                EntityType.MAINTENANCE,
                log.id,
                oldValue=oldValue,
                newValue=snapshot(log),
            )
            session.commit()
            session.refresh(log)

        logData = jsonable_encoder(log)
        if haveUpdates:
            logEvent(identity, request_info, logData)
        return logData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_MAINTENANCE,
    tags=["Maintenance"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Deletes a maintenance log of the caller's company. Requires `delete_maintenance`.
    The vehicle status is left as it is.
    """,
)
async def delete_maintenance(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_maintenance")

        logs = TenantRepository(session, TenantScope(identity.company_id), MaintenanceLog)
        log = logs.get(fParam.id)
        if log is not None:
            oldValue = snapshot(log)
            logs.delete(log)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.MAINTENANCE_DELETION,
                EntityType.MAINTENANCE,
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
    URL_MAINTENANCE,
    tags=["Maintenance"],
    response_model=MaintenanceListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the maintenance logs of the caller's company, with filters and pagination.
    """,
)
async def fetch_maintenance(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        logs = TenantRepository(session, TenantScope(identity.company_id), MaintenanceLog)
        return searchMaintenance(logs, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
