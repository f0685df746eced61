"""
Trip lifecycle engine.

Coordinates trip state with the availability of the vehicles and drivers the
trip holds. Reservation and release are single conditional UPDATE statements
guarded by the expected prior state, and every change of one operation runs
in the caller's transaction, so a conflict detected half way leaves nothing
behind once the caller rolls back.

Trip states:
    SCHEDULED -> STARTED -> IN_TRANSIT -> COMPLETED
    CANCELLED is reachable from every non-terminal state.
"""

from logging import getLogger
from typing import Callable, Iterable, List, Optional
from sqlalchemy import or_
from sqlalchemy.orm.session import Session

from fleetcore.src import audit, exceptions, validators
from fleetcore.src.db import (
    Client,
    Company,
    DriverProfile,
    Route,
    Trip,
    TripProgress,
    User,
    Vehicle,
)
from fleetcore.src.enums import (
    AuditAction,
    DriverStatus,
    EntityType,
    ProgressStatus,
    QuotaResource,
    TripStatus,
    VehicleStatus,
)
from fleetcore.src.functions import snapshot, utcNow
from fleetcore.src.realtime import vehicleStatusEvent
from fleetcore.src.schemas import Identity, RequestInfo
from fleetcore.src.subscription import enforceQuota
from fleetcore.src.tenancy import TenantRepository, TenantScope

logger = getLogger("fleetcore.trips")

tripStatusTransition = {
    TripStatus.SCHEDULED: [TripStatus.STARTED, TripStatus.CANCELLED],
    TripStatus.STARTED: [
        TripStatus.IN_TRANSIT,
        TripStatus.COMPLETED,
        TripStatus.CANCELLED,
    ],
    TripStatus.IN_TRANSIT: [TripStatus.COMPLETED, TripStatus.CANCELLED],
    TripStatus.COMPLETED: [],
    TripStatus.CANCELLED: [],
}

ACTIVE_STATUSES = (TripStatus.STARTED, TripStatus.IN_TRANSIT)
TERMINAL_STATUSES = (TripStatus.COMPLETED, TripStatus.CANCELLED)

# Bulk delete failure codes
NOT_FOUND = "not_found"
BLOCKED = "blocked"
ERROR = "error"


def uniqueIds(ids: Optional[Iterable[int]]) -> List[int]:
    """Drop duplicates, keeping the first occurrence order."""
    seen = set()
    result = []
    for id in ids or []:
        if id not in seen:
            seen.add(id)
            result.append(id)
    return result


def statusName(status: int) -> str:
    return TripStatus(status).name.lower().replace("_", "-")


def setVehicleStatus(vehicles: TenantRepository, vehicle: Vehicle, status: VehicleStatus) -> None:
    """
    Manual status change of a vehicle outside any trip. Written only while the
    vehicle still has the status it was read with and holds no trip.

    Raises:
        exceptions.ResourceConflict: If a trip reserved it, or its status moved, since the read.
    """
    updated = vehicles.conditionalUpdate(
        [
            Vehicle.id == vehicle.id,
            Vehicle.status == vehicle.status,
            Vehicle.current_trip_id.is_(None),
        ],
        {Vehicle.status.key: status},
    )
    if updated != 1:
        raise exceptions.ResourceConflict(
            f"Vehicle {vehicle.vehicle_number} was changed by another request"
        )


def setDriverStatus(drivers: TenantRepository, driver: DriverProfile, status: DriverStatus) -> None:
    """Driver counterpart of `setVehicleStatus`."""
    updated = drivers.conditionalUpdate(
        [
            DriverProfile.id == driver.id,
            DriverProfile.status == driver.status,
            DriverProfile.active_trip_id.is_(None),
        ],
        {DriverProfile.status.key: status},
    )
    if updated != 1:
        raise exceptions.ResourceConflict(
            f"Driver {driver.id} was changed by another request"
        )


class TripEngine:
    """
    Trip operations for one tenant.

    Vehicle status changes are collected in `events` so the caller can
    broadcast them once the transaction has committed.
    """

    def __init__(self, session: Session, scope: TenantScope):
        self.session = session
        self.scope = scope
        self.trips = TenantRepository(session, scope, Trip)
        self.vehicles = TenantRepository(session, scope, Vehicle)
        self.drivers = TenantRepository(session, scope, DriverProfile)
        self.routes = TenantRepository(session, scope, Route)
        self.clients = TenantRepository(session, scope, Client)
        self.progress = TenantRepository(session, scope, TripProgress)
        self.events: List[tuple] = []

    # -----------------------------------------------------------------------
    # Reference checks
    # -----------------------------------------------------------------------
    def _route(self, routeId: int) -> Route:
        route = self.routes.get(routeId)
        if route is None:
            raise exceptions.UnknownValue(Route, routeId)
        return route

    def _client(self, clientId: int) -> Client:
        client = self.clients.get(clientId)
        if client is None:
            raise exceptions.UnknownValue(Client, clientId)
        return client

    def _checkVehicles(self, trip: Optional[Trip], vehicleIds: List[int]) -> None:
        """
        Validate, one at a time, that every vehicle exists and is free.
        The first violation aborts.
        """
        tripId = trip.id if trip is not None else None
        for vehicleId in vehicleIds:
            vehicle = self.vehicles.get(vehicleId)
            if vehicle is None:
                raise exceptions.UnknownValue(Vehicle, vehicleId)
            if vehicle.status == VehicleStatus.IN_TRIP and (
                tripId is None or vehicle.current_trip_id != tripId
            ):
                raise exceptions.ResourceConflict(
                    f"Vehicle {vehicle.vehicle_number} is already assigned to another trip"
                )
            if vehicle.status == VehicleStatus.MAINTENANCE:
                raise exceptions.ResourceConflict(
                    f"Vehicle {vehicle.vehicle_number} is under maintenance"
                )

    def _checkDrivers(self, trip: Optional[Trip], driverIds: List[int]) -> None:
        tripId = trip.id if trip is not None else None
        for driverId in driverIds:
            driver = self.drivers.get(driverId)
            if driver is None:
                raise exceptions.UnknownValue(DriverProfile, driverId)
            if driver.status == DriverStatus.ON_TRIP and (
                tripId is None or driver.active_trip_id != tripId
            ):
                raise exceptions.ResourceConflict(
                    f"Driver {driver.id} is already assigned to another trip"
                )

    # -----------------------------------------------------------------------
    # Reservation and release
    # -----------------------------------------------------------------------
    def reserveVehicle(self, trip: Trip, vehicleId: int) -> None:
        updated = self.vehicles.conditionalUpdate(
            [
                Vehicle.id == vehicleId,
                or_(
                    Vehicle.status == VehicleStatus.AVAILABLE,
                    Vehicle.current_trip_id == trip.id,
                ),
            ],
            {
                Vehicle.status.key: VehicleStatus.IN_TRIP,
                Vehicle.current_trip_id.key: trip.id,
            },
        )
        if updated != 1:
            raise exceptions.ResourceConflict(
                f"Vehicle {vehicleId} is no longer available"
            )
        self.events.append(
            vehicleStatusEvent(
                self.scope.company_id, vehicleId, VehicleStatus.IN_TRIP, trip.id
            )
        )

    def reserveDriver(self, trip: Trip, driverId: int) -> None:
        updated = self.drivers.conditionalUpdate(
            [
                DriverProfile.id == driverId,
                or_(
                    DriverProfile.status != DriverStatus.ON_TRIP,
                    DriverProfile.active_trip_id == trip.id,
                ),
            ],
            {
                DriverProfile.status.key: DriverStatus.ON_TRIP,
                DriverProfile.active_trip_id.key: trip.id,
            },
        )
        if updated != 1:
            raise exceptions.ResourceConflict(
                f"Driver {driverId} is no longer available"
            )

    def releaseVehicles(self, trip: Trip, vehicleIds: List[int]) -> None:
        """Free the vehicles that still point at `trip`; others are left alone."""
        if not vehicleIds:
            return
        held = [
            vehicle.id
            for vehicle in self.vehicles.find(
                Vehicle.id.in_(vehicleIds), Vehicle.current_trip_id == trip.id
            )
        ]
        if not held:
            return
        self.vehicles.conditionalUpdate(
            [Vehicle.id.in_(held), Vehicle.current_trip_id == trip.id],
            {
                Vehicle.status.key: VehicleStatus.AVAILABLE,
                Vehicle.current_trip_id.key: None,
            },
        )
        for vehicleId in held:
            self.events.append(
                vehicleStatusEvent(
                    self.scope.company_id, vehicleId, VehicleStatus.AVAILABLE
                )
            )

    def releaseDrivers(self, trip: Trip, driverIds: List[int]) -> None:
        if not driverIds:
            return
        self.drivers.conditionalUpdate(
            [
                DriverProfile.id.in_(driverIds),
                DriverProfile.active_trip_id == trip.id,
            ],
            {
                DriverProfile.status.key: DriverStatus.ACTIVE,
                DriverProfile.active_trip_id.key: None,
            },
        )

    def releaseAll(self, trip: Trip) -> None:
        self.releaseVehicles(trip, list(trip.vehicle_ids or []))
        self.releaseDrivers(trip, list(trip.driver_ids or []))

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------
    def get(self, tripId: int) -> Optional[Trip]:
        return self.trips.get(tripId)

    def create(
        self,
        tripCode: str,
        routeId: int,
        vehicleIds: Iterable[int],
        driverIds: Iterable[int],
        clientId: Optional[int] = None,
        goodsInfo: Optional[str] = None,
        loadWeightKg: Optional[float] = None,
        tripCost: Optional[float] = None,
        remarks: Optional[str] = None,
        createdBy: Optional[int] = None,
    ) -> Trip:
        """
        Create a scheduled trip and reserve its vehicles and drivers.

        Raises:
            exceptions.QuotaExceeded: Monthly trip limit of the plan reached.
            exceptions.UnknownValue: A referenced record does not exist in the tenant.
            exceptions.UniqueViolation: The trip code is taken.
            exceptions.ResourceConflict: A vehicle or driver is committed elsewhere.
        """
        enforceQuota(self.session, self.scope, QuotaResource.TRIP)
        tripCode = tripCode.strip().upper()
        vehicleIds = uniqueIds(vehicleIds)
        driverIds = uniqueIds(driverIds)

        self._route(routeId)
        if clientId is not None:
            self._client(clientId)
        if self.trips.exists(Trip.trip_code == tripCode):
            raise exceptions.UniqueViolation("Trip code already exists")
        self._checkVehicles(None, vehicleIds)
        self._checkDrivers(None, driverIds)

        trip = self.trips.create(
            trip_code=tripCode,
            route_id=routeId,
            client_id=clientId,
            vehicle_ids=vehicleIds,
            driver_ids=driverIds,
            goods_info=goodsInfo,
            load_weight_kg=loadWeightKg,
            trip_cost=tripCost,
            remarks=remarks,
            status=TripStatus.SCHEDULED,
            created_by=createdBy,
        )
        for vehicleId in vehicleIds:
            self.reserveVehicle(trip, vehicleId)
        for driverId in driverIds:
            self.reserveDriver(trip, driverId)
        return trip

    def update(self, trip: Trip, clearClient: bool = False, **changes) -> Trip:
        """
        Apply a partial update. Assignment lists are reconciled by difference:
        removed entries are released, added entries are checked then reserved,
        untouched entries are not written.

        Accepted keys: trip_code, route_id, client_id, vehicle_ids, driver_ids,
        goods_info, load_weight_kg, trip_cost, remarks, status.
        None values are ignored; `clearClient` detaches the client instead.
        """
        changes = {key: value for key, value in changes.items() if value is not None}
        if clearClient:
            changes["client_id"] = None
        newStatus = changes.pop("status", None)
        vehicleIds = changes.pop("vehicle_ids", None)
        driverIds = changes.pop("driver_ids", None)

        if trip.status in TERMINAL_STATUSES and (
            vehicleIds is not None or driverIds is not None or "route_id" in changes
        ):
            raise exceptions.ResourceConflict(
                f"Assignments of a {statusName(trip.status)} trip cannot change"
            )
        if newStatus is not None and newStatus != trip.status:
            validators.stateTransition(
                tripStatusTransition, trip.status, newStatus, Trip.status.name
            )

        if "trip_code" in changes:
            tripCode = changes["trip_code"].strip().upper()
            if tripCode != trip.trip_code and self.trips.exists(
                Trip.trip_code == tripCode, Trip.id != trip.id
            ):
                raise exceptions.UniqueViolation("Trip code already exists")
            changes["trip_code"] = tripCode
        if "route_id" in changes:
            self._route(changes["route_id"])
        if changes.get("client_id") is not None:
            self._client(changes["client_id"])

        # Validate every addition before any write
        oldVehicles = list(trip.vehicle_ids or [])
        oldDrivers = list(trip.driver_ids or [])
        if vehicleIds is not None:
            vehicleIds = uniqueIds(vehicleIds)
            addedVehicles = [id for id in vehicleIds if id not in oldVehicles]
            removedVehicles = [id for id in oldVehicles if id not in vehicleIds]
            self._checkVehicles(trip, addedVehicles)
        if driverIds is not None:
            driverIds = uniqueIds(driverIds)
            addedDrivers = [id for id in driverIds if id not in oldDrivers]
            removedDrivers = [id for id in oldDrivers if id not in driverIds]
            self._checkDrivers(trip, addedDrivers)

        if vehicleIds is not None and vehicleIds != oldVehicles:
            self.releaseVehicles(trip, removedVehicles)
            for vehicleId in addedVehicles:
                self.reserveVehicle(trip, vehicleId)
            trip.vehicle_ids = vehicleIds
        if driverIds is not None and driverIds != oldDrivers:
            self.releaseDrivers(trip, removedDrivers)
            for driverId in addedDrivers:
                self.reserveDriver(trip, driverId)
            trip.driver_ids = driverIds

        self.trips.update(trip, **changes)

        if newStatus is not None and newStatus != trip.status:
            if newStatus == TripStatus.COMPLETED:
                return self.complete(trip)
            if newStatus == TripStatus.CANCELLED:
                return self.cancel(trip)
            if newStatus == TripStatus.STARTED and trip.start_time is None:
                trip.start_time = utcNow()
            trip.status = newStatus
            self.session.flush()
        return trip

    def addProgress(
        self,
        trip: Trip,
        latitude: Optional[float],
        longitude: Optional[float],
        note: Optional[str] = None,
        status: ProgressStatus = ProgressStatus.IN_TRANSIT,
        recordedBy: Optional[int] = None,
    ) -> TripProgress:
        """Append a progress entry. The trip's own status is not changed."""
        if trip.status in TERMINAL_STATUSES:
            raise exceptions.ResourceConflict(
                f"Progress cannot be added to a {statusName(trip.status)} trip"
            )
        if latitude is not None or longitude is not None:
            validators.location(latitude, longitude)
        return self.progress.create(
            trip_id=trip.id,
            latitude=latitude,
            longitude=longitude,
            note=note,
            status=status,
            recorded_by=recordedBy,
        )

    def complete(self, trip: Trip) -> Trip:
        """
        Finish the trip and release every vehicle and driver it holds.

        Raises:
            exceptions.InvalidStateTransition: If the trip is not started or in transit,
                including when it is already completed.
        """
        validators.stateTransition(
            tripStatusTransition, trip.status, TripStatus.COMPLETED, Trip.status.name
        )
        self.releaseAll(trip)
        trip.status = TripStatus.COMPLETED
        trip.end_time = utcNow()
        company = (
            self.session.query(Company)
            .filter(Company.id == self.scope.company_id)
            .first()
        )
        company.trips_completed_this_month = (company.trips_completed_this_month or 0) + 1
        self.session.flush()
        return trip

    def cancel(self, trip: Trip) -> Trip:
        validators.stateTransition(
            tripStatusTransition, trip.status, TripStatus.CANCELLED, Trip.status.name
        )
        self.releaseAll(trip)
        trip.status = TripStatus.CANCELLED
        trip.end_time = utcNow()
        self.session.flush()
        return trip

    def canDelete(self, trip: Trip) -> dict:
        """Pre-flight check for deletion. Never writes."""
        if trip.status in ACTIVE_STATUSES:
            return {
                "id": trip.id,
                "can_delete": False,
                "reason": f"Cannot delete trip in {statusName(trip.status)} status",
            }
        return {"id": trip.id, "can_delete": True, "reason": None}

    def delete(self, trip: Trip) -> None:
        check = self.canDelete(trip)
        if not check["can_delete"]:
            raise exceptions.DataInUse(Trip, check["reason"])
        self.releaseAll(trip)
        self.trips.delete(trip)

    # -----------------------------------------------------------------------
    # Read-time join
    # -----------------------------------------------------------------------
    def details(self, trip: Trip) -> dict:
        """The trip with its route, client, vehicles, drivers and progress log."""
        route = self.routes.get(trip.route_id)
        client = self.clients.get(trip.client_id)
        vehicles = {v.id: v for v in self.vehicles.getMany(trip.vehicle_ids or [])}
        drivers = {d.id: d for d in self.drivers.getMany(trip.driver_ids or [])}
        users = {
            u.id: u
            for u in TenantRepository(self.session, self.scope, User).getMany(
                [d.user_id for d in drivers.values()]
            )
        }
        progress = self.progress.find(
            TripProgress.trip_id == trip.id, orderBy=TripProgress.id.asc()
        )
        data = snapshot(trip)
        data["route"] = (
            {
                "id": route.id,
                "name": route.name,
                "distance_km": route.distance_km,
                "estimated_duration_hr": route.estimated_duration_hr,
            }
            if route
            else None
        )
        data["client"] = {"id": client.id, "name": client.name} if client else None
        data["vehicles"] = [
            {
                "id": vehicle.id,
                "vehicle_number": vehicle.vehicle_number,
                "type": vehicle.type,
                "status": vehicle.status,
            }
            for vehicle in (vehicles.get(id) for id in trip.vehicle_ids or [])
            if vehicle is not None
        ]
        data["drivers"] = [
            {
                "id": driver.id,
                "name": users[driver.user_id].name if driver.user_id in users else None,
                "license_number": driver.license_number,
                "phone": driver.phone,
                "status": driver.status,
            }
            for driver in (drivers.get(id) for id in trip.driver_ids or [])
            if driver is not None
        ]
        data["progress"] = [snapshot(entry) for entry in progress]
        return data


def bulkDelete(
    sessionFactory: Callable[[], Session],
    identity: Identity,
    tripIds: Iterable[int],
    requestInfo: Optional[RequestInfo] = None,
) -> dict:
    """
    Delete each trip in its own transaction and report per-id outcomes.

    Never raises for an individual trip. Returns
    `{"deleted": [ids], "failed": [{"id", "code", "reason"}], "events": [...]}`
    where `code` is one of not_found, blocked or error.
    """
    scope = TenantScope(identity.company_id)
    deleted, failed, events = [], [], []
    for tripId in uniqueIds(tripIds):
        session = sessionFactory()
        try:
            engine = TripEngine(session, scope)
            trip = engine.get(tripId)
            if trip is None:
                failed.append({"id": tripId, "code": NOT_FOUND, "reason": "Trip not found"})
                continue
            check = engine.canDelete(trip)
            if not check["can_delete"]:
                failed.append({"id": tripId, "code": BLOCKED, "reason": check["reason"]})
                continue
            oldValue = snapshot(trip)
            engine.delete(trip)
            audit.recordAction(
                session,
                identity,
                requestInfo,
                AuditAction.TRIP_DELETION,
                EntityType.TRIP,
                tripId,
                oldValue=oldValue,
                details={"bulk": True},
            )
            session.commit()
            deleted.append(tripId)
            events.extend(engine.events)
        except Exception as e:
            session.rollback()
            exceptions.logException(e)
            reason = e.detail if isinstance(e, exceptions.APIException) else "Unexpected error"
            failed.append({"id": tripId, "code": ERROR, "reason": reason})
        finally:
            session.close()
    return {"deleted": deleted, "failed": failed, "events": events}
