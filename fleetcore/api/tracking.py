from logging import getLogger
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from fleetcore.src.db import DriverProfile, sessionMaker
from fleetcore.src import exceptions, validators
from fleetcore.src.enums import CompanyRole
from fleetcore.src.realtime import broadcaster, driverStatusEvent, locationEvent
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.functions import utcNow
from fleetcore.src.urls import URL_TRACKING

route_fleet = APIRouter()
logger = getLogger("fleetcore.realtime")


## Function
def parseLocation(message: dict) -> tuple:
    try:
        return float(message["lat"]), float(message["lng"])
    except (KeyError, TypeError, ValueError):
        raise exceptions.InvalidLocation()


def driverOf(identity):
    """Driver profile id of a driver identity, else None."""
    if identity.company_role != CompanyRole.DRIVER:
        return None
    session = sessionMaker()
    try:
        driver = TenantRepository(
            session, TenantScope(identity.company_id), DriverProfile
        ).findOne(DriverProfile.user_id == identity.user_id)
        return driver.id if driver else None
    finally:
        session.close()


def saveLocation(identity, driverId: int, latitude: float, longitude: float) -> None:
    validators.location(latitude, longitude)
    session = sessionMaker()
    try:
        drivers = TenantRepository(session, TenantScope(identity.company_id), DriverProfile)
        driver = drivers.get(driverId)
        if driver is None:
            raise exceptions.InvalidIdentifier()
        drivers.update(
            driver,
            latitude=latitude,
            longitude=longitude,
            location_updated_on=utcNow(),
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


## API endpoints [Fleet]
@route_fleet.websocket(URL_TRACKING)
async def tracking(websocket: WebSocket, token: str = Query()):
    """
    Live tracking channel of the caller's company.

    Every connection joins its company room. Driver connections announce
    themselves online and offline, and may send
    `{"event": "location", "lat": .., "lng": ..}` to update their position.
    """
    session = sessionMaker()
    try:
        identity = validators.accessToken(token, session)
    except exceptions.APIException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    finally:
        session.close()

    companyId = identity.company_id
    driverId = driverOf(identity)
    await websocket.accept()
    broadcaster.join(companyId, websocket)
    if driverId is not None:
        await broadcaster.publish(companyId, *driverStatusEvent(companyId, driverId, True))

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict) or message.get("event") != "location":
                continue
            if driverId is None:
                await websocket.send_json(
                    {"event": "error", "message": exceptions.NoPermission.detail}
                )
                continue
            try:
                latitude, longitude = parseLocation(message)
                saveLocation(identity, driverId, latitude, longitude)
            except exceptions.APIException as e:
                await websocket.send_json({"event": "error", "message": e.detail})
                continue
            await broadcaster.publish(
                companyId, *locationEvent(companyId, driverId, latitude, longitude)
            )
    except WebSocketDisconnect:
        logger.debug(f"Tracking connection of user {identity.user_id} closed")
    finally:
        broadcaster.leave(companyId, websocket)
        if driverId is not None:
            await broadcaster.publish(
                companyId, *driverStatusEvent(companyId, driverId, False)
            )
