from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, EmailStr, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import DriverProfile, User, Vehicle, sessionMaker
from fleetcore.src import argon2, audit, exceptions, validators, getters
from fleetcore.src.trips import setDriverStatus
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    CompanyRole,
    DriverStatus,
    EntityType,
    OrderIn,
    QuotaResource,
)
from fleetcore.src.realtime import broadcaster, locationEvent
from fleetcore.src.subscription import enforceQuota, recordUsage
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import REGEX_PASSWORD
from fleetcore.src.schemas import Phone
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
    updateIfChanged,
    utcNow,
)
from fleetcore.src.urls import URL_DRIVER, URL_DRIVER_LOCATION

route_fleet = APIRouter()

# Manual status changes; ON_TRIP is owned by the trip engine
driverStatusTransition = {
    DriverStatus.INACTIVE: [DriverStatus.ACTIVE],
    DriverStatus.ACTIVE: [DriverStatus.INACTIVE],
    DriverStatus.ON_TRIP: [],
}


## Output Schema
class DriverSchema(BaseModel):
    id: int
    company_id: int
    user_id: int
    name: Optional[str]
    email: Optional[str]
    license_number: str
    phone: str
    address: Optional[str]
    experience_years: int
    status: int
    assigned_vehicle_id: Optional[int]
    active_trip_id: Optional[int]
    location: Optional[dict]
    updated_on: Optional[datetime]
    created_on: datetime


class DriverListSchema(BaseModel):
    items: List[DriverSchema]
    pagination: dict


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=2, max_length=100))
    email: EmailStr = Field(Form(max_length=254))
    password: str = Field(Form(min_length=8, max_length=64, pattern=REGEX_PASSWORD))
    license_number: str = Field(Form(min_length=4, max_length=32))
    phone: Phone = Field(Form())
    address: str | None = Field(Form(max_length=256, default=None))
    experience_years: int = Field(Form(ge=0, le=60, default=0))
    assigned_vehicle_id: int | None = Field(Form(default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=2, max_length=100, default=None))
    license_number: str | None = Field(Form(min_length=4, max_length=32, default=None))
    phone: Phone | None = Field(Form(default=None))
    address: str | None = Field(Form(max_length=256, default=None))
    experience_years: int | None = Field(Form(ge=0, le=60, default=None))
    assigned_vehicle_id: int | None = Field(Form(default=None))
    status: DriverStatus | None = Field(
        Form(description=enumStr(DriverStatus), default=None)
    )


class DeleteForm(BaseModel):
    id: int = Field(Form())


class LocationForm(BaseModel):
    id: int | None = Field(Form(default=None, description="Driver id, defaults to the caller"))
    lat: float = Field(Form(ge=-90, le=90))
    lng: float = Field(Form(ge=-180, le=180))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    experience_years = 4


class QueryParams(BaseModel):
    license_number: str | None = Field(Query(default=None))
    phone: str | None = Field(Query(default=None))
    status: DriverStatus | None = Field(
        Query(default=None, description=enumStr(DriverStatus))
    )
    assigned_vehicle_id: int | None = Field(Query(default=None))
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # experience based
    experience_years_ge: int | None = Field(Query(default=None))
    experience_years_le: int | None = Field(Query(default=None))
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
def driverData(driver: DriverProfile, user: Optional[User]) -> dict:
    data = jsonable_encoder(driver)
    data["name"] = user.name if user else None
    data["email"] = user.email if user else None
    data["location"] = (
        {
            "lat": driver.latitude,
            "lng": driver.longitude,
            "last_updated": jsonable_encoder(driver.location_updated_on),
        }
        if driver.latitude is not None
        else None
    )
    return data


def checkVehicle(session, scope: TenantScope, vehicleId: Optional[int]) -> None:
    if vehicleId is not None and TenantRepository(session, scope, Vehicle).get(vehicleId) is None:
        raise exceptions.UnknownValue(Vehicle, vehicleId)


def updateDriver(driver: DriverProfile, fParam: UpdateForm):
    updateIfChanged(
        driver,
        fParam,
        [
            DriverProfile.license_number.key,
            DriverProfile.phone.key,
            DriverProfile.address.key,
            DriverProfile.experience_years.key,
            DriverProfile.assigned_vehicle_id.key,
        ],
    )


def searchDriver(session, scope: TenantScope, qParam: QueryParams) -> dict:
    drivers = TenantRepository(session, scope, DriverProfile)
    query = drivers.query()

    # Filters
    if qParam.license_number is not None:
        query = query.filter(DriverProfile.license_number.ilike(f"%{qParam.license_number}%"))
    if qParam.phone is not None:
        query = query.filter(DriverProfile.phone.ilike(f"%{qParam.phone}%"))
    if qParam.status is not None:
        query = query.filter(DriverProfile.status == qParam.status)
    if qParam.assigned_vehicle_id is not None:
        query = query.filter(DriverProfile.assigned_vehicle_id == qParam.assigned_vehicle_id)
    # id based
    if qParam.id is not None:
        query = query.filter(DriverProfile.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(DriverProfile.id.in_(qParam.id_list))
    # experience based
    if qParam.experience_years_ge is not None:
        query = query.filter(DriverProfile.experience_years >= qParam.experience_years_ge)
    if qParam.experience_years_le is not None:
        query = query.filter(DriverProfile.experience_years <= qParam.experience_years_le)
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(DriverProfile.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(DriverProfile.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(DriverProfile, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = drivers.paginate(query, qParam.page, qParam.limit)
    users = {
        user.id: user
        for user in TenantRepository(session, scope, User).getMany(
            [driver.user_id for driver in items]
        )
    }
    return {
        "items": [driverData(driver, users.get(driver.user_id)) for driver in items],
        "pagination": paginationMeta(total, qParam.page, qParam.limit),
    }


## API endpoints [Fleet]
@route_fleet.post(
    URL_DRIVER,
    tags=["Driver"],
    response_model=DriverSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.QuotaExceeded("driver", 3),
            exceptions.CompanySuspended,
            exceptions.UniqueViolation("License number already exists"),
        ]
    ),
    description="""
    Creates a driver: a user account with the driver role and its driver profile, in one transaction.
    Requires `create_driver` and counts against the drivers quota.
    License number and email must be unique inside the company. New drivers are inactive.
    """,
)
async def create_driver(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_driver")

        scope = TenantScope(identity.company_id)
        company = enforceQuota(session, scope, QuotaResource.DRIVER)
        users = TenantRepository(session, scope, User)
        drivers = TenantRepository(session, scope, DriverProfile)
        email = fParam.email.lower()
        licenseNumber = fParam.license_number.strip().upper()
        if users.exists(User.email == email):
            raise exceptions.UniqueViolation("Email already exists in this company")
        if drivers.exists(DriverProfile.license_number == licenseNumber):
            raise exceptions.UniqueViolation("License number already exists")
        checkVehicle(session, scope, fParam.assigned_vehicle_id)

        user = users.create(
            name=fParam.name,
            email=email,
            password=argon2.makePassword(fParam.password),
            company_role=CompanyRole.DRIVER,
        )
        driver = drivers.create(
            user_id=user.id,
            license_number=licenseNumber,
            phone=fParam.phone,
            address=fParam.address,
            experience_years=fParam.experience_years,
            assigned_vehicle_id=fParam.assigned_vehicle_id,
            status=DriverStatus.INACTIVE,
        )
        recordUsage(company, QuotaResource.DRIVER)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.DRIVER_CREATION,
            EntityType.DRIVER,
            driver.id,
            newValue=snapshot(driver),
            details={"user_id": user.id},
        )
        session.commit()
        session.refresh(driver)
        session.refresh(user)

        data = driverData(driver, user)
        logEvent(identity, request_info, data)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_DRIVER,
    tags=["Driver"],
    response_model=DriverSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Updates a driver of the caller's company. Requires `update_driver`.
    The status can only be switched between active and inactive.
    An assigned vehicle must belong to the same company.
    """,
)
async def update_driver(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_driver")

        scope = TenantScope(identity.company_id)
        drivers = TenantRepository(session, scope, DriverProfile)
        driver = drivers.get(fParam.id)
        if driver is None:
            raise exceptions.InvalidIdentifier()
        user = TenantRepository(session, scope, User).get(driver.user_id)

        if fParam.license_number is not None:
            fParam.license_number = fParam.license_number.strip().upper()
            if drivers.exists(
                DriverProfile.license_number == fParam.license_number,
                DriverProfile.id != driver.id,
            ):
                raise exceptions.UniqueViolation("License number already exists")
        checkVehicle(session, scope, fParam.assigned_vehicle_id)

        oldValue = snapshot(driver)
        statusChanged = fParam.status is not None and fParam.status != driver.status
        if statusChanged:
            validators.stateTransition(
                driverStatusTransition, driver.status, fParam.status, DriverProfile.status.name
            )
            setDriverStatus(drivers, driver, fParam.status)
        updateDriver(driver, fParam)
        if user is not None and fParam.name is not None:
            user.name = fParam.name
        haveUpdates = statusChanged or session.is_modified(driver) or (
            user is not None and session.is_modified(user)
        )
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.DRIVER_ASSIGNMENT
                if oldValue["assigned_vehicle_id"] != driver.assigned_vehicle_id
                else AuditAction.DRIVER_UPDATE,
                EntityType.DRIVER,
                driver.id,
                oldValue=oldValue,
                newValue=snapshot(driver),
            )
            session.commit()
            session.refresh(driver)

        data = driverData(driver, user)
        if haveUpdates:
            logEvent(identity, request_info, data)
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_DRIVER,
    tags=["Driver"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.DataInUse(DriverProfile, "Driver is on a trip"),
        ]
    ),
    description="""
    Deletes a driver profile and its user account. Requires `delete_driver`.
    A driver who is on a trip cannot be deleted.
    """,
)
async def delete_driver(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_driver")

        scope = TenantScope(identity.company_id)
        drivers = TenantRepository(session, scope, DriverProfile)
        driver = drivers.get(fParam.id)
        if driver is not None:
            if driver.status == DriverStatus.ON_TRIP:
                raise exceptions.DataInUse(DriverProfile, "Driver is on a trip")
            oldValue = snapshot(driver)
            users = TenantRepository(session, scope, User)
            user = users.get(driver.user_id)
            drivers.delete(driver)
            if user is not None:
                users.delete(user)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.DRIVER_DELETION,
                EntityType.DRIVER,
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
    URL_DRIVER,
    tags=["Driver"],
    response_model=DriverListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the drivers of the caller's company with their names, emails and last known location.
    """,
)
async def fetch_drivers(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        return searchDriver(session, TenantScope(identity.company_id), qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.post(
    URL_DRIVER_LOCATION,
    tags=["Driver"],
    response_model=DriverSchema,
    responses=makeExceptionResponses(
        [exceptions.InvalidToken, exceptions.NoPermission, exceptions.InvalidIdentifier]
    ),
    description="""
    Records the current location of a driver and broadcasts it to the company.
    Drivers report their own location; reporting for another driver requires `update_driver`.
    """,
)
async def update_driver_location(
    fParam: LocationForm = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        scope = TenantScope(identity.company_id)
        drivers = TenantRepository(session, scope, DriverProfile)

        if fParam.id is None:
            driver = drivers.findOne(DriverProfile.user_id == identity.user_id)
        else:
            driver = drivers.get(fParam.id)
            if driver is not None and driver.user_id != identity.user_id:
                validators.companyPermission(getters.companyRole(identity), "update_driver")
        if driver is None:
            raise exceptions.InvalidIdentifier()

        validators.location(fParam.lat, fParam.lng)
        driver.latitude = fParam.lat
        driver.longitude = fParam.lng
        driver.location_updated_on = utcNow()
        session.commit()
        session.refresh(driver)

        event, payload = locationEvent(driver.company_id, driver.id, fParam.lat, fParam.lng)
        await broadcaster.publish(driver.company_id, event, payload)
        user = TenantRepository(session, scope, User).get(driver.user_id)
        return driverData(driver, user)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
