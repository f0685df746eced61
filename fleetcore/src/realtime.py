"""
Per-tenant real-time broadcasting over websockets.

Every connection joins the room `company:<company_id>` of its token. Events
published for a company reach that room only. Delivery is best-effort: a
socket that fails to receive is dropped from its room.
"""

from logging import getLogger
from typing import Dict, Set
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from fleetcore.src.functions import utcNow

logger = getLogger("fleetcore.realtime")

DRIVER_LOCATION_UPDATED = "driver:location:updated"
DRIVER_STATUS = "driver:status"
VEHICLE_STATUS_UPDATED = "vehicle:status:updated"


def roomName(companyId: int) -> str:
    return f"company:{companyId}"


class TenantBroadcaster:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, companyId: int, websocket: WebSocket) -> None:
        self.rooms.setdefault(roomName(companyId), set()).add(websocket)

    def leave(self, companyId: int, websocket: WebSocket) -> None:
        room = self.rooms.get(roomName(companyId))
        if room is None:
            return
        room.discard(websocket)
        if not room:
            del self.rooms[roomName(companyId)]

    def members(self, companyId: int) -> int:
        return len(self.rooms.get(roomName(companyId), ()))

    async def publish(self, companyId: int, event: str, data: dict) -> int:
        """Send an event to the company's room. Returns the number of deliveries."""
        message = jsonable_encoder({"event": event, "data": data})
        delivered = 0
        for websocket in list(self.rooms.get(roomName(companyId), ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping subscriber of {roomName(companyId)}: {e}")
                self.leave(companyId, websocket)
        return delivered

    async def publishMany(self, events: list) -> None:
        """Publish `(event, data)` pairs, each routed by its `company_id`."""
        for event, data in events:
            await self.publish(data["company_id"], event, data)


def locationEvent(companyId: int, driverId: int, latitude: float, longitude: float) -> tuple:
    return (
        DRIVER_LOCATION_UPDATED,
        {
            "company_id": companyId,
            "driver_id": driverId,
            "lat": latitude,
            "lng": longitude,
            "timestamp": utcNow().isoformat(),
        },
    )


def driverStatusEvent(companyId: int, driverId: int, online: bool) -> tuple:
    return (
        DRIVER_STATUS,
        {"company_id": companyId, "driver_id": driverId, "online": online},
    )


def vehicleStatusEvent(companyId: int, vehicleId: int, status: int, tripId=None) -> tuple:
    return (
        VEHICLE_STATUS_UPDATED,
        {
            "company_id": companyId,
            "vehicle_id": vehicleId,
            "status": status,
            "trip_id": tripId,
        },
    )


broadcaster = TenantBroadcaster()
