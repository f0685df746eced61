from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import DriverProfile, MaintenanceLog, Trip, Vehicle, sessionMaker
from fleetcore.src import exceptions, validators, getters
from fleetcore.src.enums import DriverStatus, Feature, TripStatus, VehicleStatus
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.functions import makeExceptionResponses
from fleetcore.src.urls import URL_ANALYTICS

route_fleet = APIRouter()


## Output Schema
class MaintenanceSpendSchema(BaseModel):
    vehicle_id: int
    vehicle_number: Optional[str]
    services: int
    total_cost: float


class AnalyticsSchema(BaseModel):
    trips: Dict[str, int]
    total_trips: int
    revenue: float
    maintenance: List[MaintenanceSpendSchema]
    maintenance_cost: float
    vehicles: Dict[str, int]
    drivers: Dict[str, int]


## Query Parameters
class QueryParams(BaseModel):
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))


## Function
def enumCounts(enumClass, rows) -> Dict[str, int]:
    counts = {member.name.lower(): 0 for member in enumClass}
    for value, count in rows:
        counts[enumClass(value).name.lower()] = count
    return counts


def tripReport(session, scope: TenantScope, qParam: QueryParams) -> dict:
    trips = TenantRepository(session, scope, Trip)
    byStatus = trips.aggregate(Trip.status, func.count(Trip.id))
    revenue = trips.aggregate(func.coalesce(func.sum(Trip.trip_cost), 0)).filter(
        Trip.status == TripStatus.COMPLETED
    )
    if qParam.created_on_ge is not None:
        byStatus = byStatus.filter(Trip.created_on >= qParam.created_on_ge)
        revenue = revenue.filter(Trip.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        byStatus = byStatus.filter(Trip.created_on <= qParam.created_on_le)
        revenue = revenue.filter(Trip.created_on <= qParam.created_on_le)

    counts = enumCounts(TripStatus, byStatus.group_by(Trip.status).all())
    return {
        "trips": counts,
        "total_trips": sum(counts.values()),
        "revenue": float(revenue.scalar() or 0),
    }


def maintenanceReport(session, scope: TenantScope, qParam: QueryParams) -> dict:
    logs = TenantRepository(session, scope, MaintenanceLog)
    query = logs.aggregate(
        MaintenanceLog.vehicle_id,
        func.count(MaintenanceLog.id),
        func.coalesce(func.sum(MaintenanceLog.cost), 0),
    )
    if qParam.created_on_ge is not None:
        query = query.filter(MaintenanceLog.service_date >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(MaintenanceLog.service_date <= qParam.created_on_le)
    rows = query.group_by(MaintenanceLog.vehicle_id).all()

    vehicles = {
        vehicle.id: vehicle.vehicle_number
        for vehicle in TenantRepository(session, scope, Vehicle).getMany(
            [row[0] for row in rows]
        )
    }
    spend = [
        {
            "vehicle_id": vehicleId,
            "vehicle_number": vehicles.get(vehicleId),
            "services": services,
            "total_cost": float(cost),
        }
        for vehicleId, services, cost in rows
    ]
    spend.sort(key=lambda item: item["total_cost"], reverse=True)
    return {
        "maintenance": spend,
        "maintenance_cost": sum(item["total_cost"] for item in spend),
    }


def fleetReport(session, scope: TenantScope) -> dict:
    vehicles = TenantRepository(session, scope, Vehicle).aggregate(
        Vehicle.status, func.count(Vehicle.id)
    )
    drivers = TenantRepository(session, scope, DriverProfile).aggregate(
        DriverProfile.status, func.count(DriverProfile.id)
    )
    return {
        "vehicles": enumCounts(VehicleStatus, vehicles.group_by(Vehicle.status).all()),
        "drivers": enumCounts(DriverStatus, drivers.group_by(DriverProfile.status).all()),
    }


## API endpoints [Fleet]
@route_fleet.get(
    URL_ANALYTICS,
    tags=["Analytics"],
    response_model=AnalyticsSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.FeatureNotAvailable("analytics"),
        ]
    ),
    description="""
    Trip counts per status, revenue of completed trips, maintenance spend per vehicle
    and the current status distribution of vehicles and drivers.
    Requires `view_analytics` and a plan with the analytics feature.
    The date range applies to trip creation and maintenance service dates.
    """,
)
async def fetch_analytics(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "view_analytics")
        validators.planFeature(getters.company(identity, session), Feature.ANALYTICS)

        scope = TenantScope(identity.company_id)
        return {
            **tripReport(session, scope, qParam),
            **maintenanceReport(session, scope, qParam),
            **fleetReport(session, scope),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
