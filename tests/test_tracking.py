"""
Tests for the live tracking channel and tenant rooms
"""

import asyncio

import pytest
from fastapi import WebSocketDisconnect

from fleetcore.src import exceptions
from fleetcore.src.realtime import DRIVER_LOCATION_UPDATED, DRIVER_STATUS, TenantBroadcaster


class FakeSocket:
    def __init__(self, broken: bool = False):
        self.sent = []
        self.broken = broken

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(message)


@pytest.fixture
def driverToken(makeDriver, login, owner):
    driver = makeDriver(owner["headers"], 0)
    return driver, login("acme", "driver0@fleet.io").json()["access_token"]


class TestBroadcaster:
    """Room membership and delivery"""

    def test_events_stay_in_company(self):
        """Test an event only reaches the sockets of its company"""
        broadcaster = TenantBroadcaster()
        acme, acmeToo, globex = FakeSocket(), FakeSocket(), FakeSocket()
        broadcaster.join(1, acme)
        broadcaster.join(1, acmeToo)
        broadcaster.join(2, globex)

        delivered = asyncio.run(broadcaster.publish(1, DRIVER_LOCATION_UPDATED, {"company_id": 1}))
        assert delivered == 2
        assert acme.sent == [{"event": DRIVER_LOCATION_UPDATED, "data": {"company_id": 1}}]
        assert acmeToo.sent == acme.sent
        assert globex.sent == []

    def test_broken_socket_is_dropped(self):
        """Test a socket that fails to receive leaves its room"""
        broadcaster = TenantBroadcaster()
        broadcaster.join(1, FakeSocket(broken=True))
        broadcaster.join(1, FakeSocket())
        assert asyncio.run(broadcaster.publish(1, DRIVER_STATUS, {})) == 1
        assert broadcaster.members(1) == 1

    def test_publish_many_routes_by_company(self):
        """Test batched events are routed by their company id"""
        broadcaster = TenantBroadcaster()
        acme, globex = FakeSocket(), FakeSocket()
        broadcaster.join(1, acme)
        broadcaster.join(2, globex)
        asyncio.run(
            broadcaster.publishMany(
                [(DRIVER_STATUS, {"company_id": 2}), (DRIVER_STATUS, {"company_id": 2})]
            )
        )
        assert acme.sent == []
        assert len(globex.sent) == 2

    def test_leave(self):
        """Test the last member leaving removes the room"""
        broadcaster = TenantBroadcaster()
        socket = FakeSocket()
        broadcaster.join(1, socket)
        broadcaster.leave(1, socket)
        broadcaster.leave(1, socket)
        assert broadcaster.rooms == {}


class TestTrackingChannel:
    """Websocket endpoint"""

    def test_invalid_token(self, client):
        """Test a connection with a bad token is refused"""
        with pytest.raises(WebSocketDisconnect) as error:
            with client.websocket_connect("/fleet/tracking?token=not-a-token"):
                pass
        assert error.value.code == 1008

    def test_driver_location(self, client, driverToken, owner):
        """Test a driver's location is stored and broadcast to the company room"""
        driver, token = driverToken
        with client.websocket_connect(f"/fleet/tracking?token={token}") as websocket:
            online = websocket.receive_json()
            assert online["event"] == DRIVER_STATUS
            assert online["data"] == {
                "company_id": owner["company"]["id"],
                "driver_id": driver["id"],
                "online": True,
            }

            websocket.send_json({"event": "location", "lat": 9.97, "lng": 76.28})
            update = websocket.receive_json()
            assert update["event"] == DRIVER_LOCATION_UPDATED
            assert update["data"]["driver_id"] == driver["id"]
            assert update["data"]["company_id"] == owner["company"]["id"]
            assert update["data"]["lat"] == 9.97
            assert update["data"]["timestamp"]

        stored = client.get(
            "/fleet/driver", headers=owner["headers"], params={"id": driver["id"]}
        ).json()["items"][0]
        assert stored["location"]["lat"] == 9.97
        assert stored["location"]["lng"] == 76.28

    def test_invalid_coordinates(self, client, driverToken):
        """Test out of range or malformed coordinates are answered with an error"""
        _, token = driverToken
        with client.websocket_connect(f"/fleet/tracking?token={token}") as websocket:
            websocket.receive_json()
            websocket.send_json({"event": "location", "lat": 95, "lng": 0})
            assert websocket.receive_json()["event"] == "error"
            websocket.send_json({"event": "location", "lat": "north"})
            assert websocket.receive_json()["event"] == "error"

    def test_invalid_json(self, client, owner):
        """Test a message that is not JSON is answered with an error"""
        with client.websocket_connect(f"/fleet/tracking?token={owner['access_token']}") as websocket:
            websocket.send_text("{not json")
            assert websocket.receive_json() == {"event": "error", "message": "Invalid JSON"}

    def test_only_drivers_send_locations(self, client, owner):
        """Test a non-driver connection cannot publish a location"""
        with client.websocket_connect(f"/fleet/tracking?token={owner['access_token']}") as websocket:
            websocket.send_json({"event": "location", "lat": 10, "lng": 76})
            assert websocket.receive_json() == {
                "event": "error",
                "message": exceptions.NoPermission.detail,
            }
