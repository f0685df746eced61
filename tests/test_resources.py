"""
API tests for routes, clients and maintenance logs
"""

import pytest

from fleetcore.src.db import MaintenanceLog
from fleetcore.src.enums import TripStatus, VehicleStatus
from fleetcore.src.functions import utcNow

from tests.conftest import PHONES


@pytest.fixture
def makeClient(client):
    def _makeClient(headers: dict, name: str = "Malabar Traders", **extra) -> dict:
        response = client.post("/fleet/client", headers=headers, data={"name": name, **extra})
        assert response.status_code == 201, response.text
        return response.json()

    return _makeClient


class TestRoute:
    """Routes"""

    def test_default_name(self, makeRoute, owner):
        """Test a route without a name is named after its end points"""
        route = makeRoute(owner["headers"])
        assert route["name"] == "Kochi → Chennai"
        assert route["source"]["name"] == "Kochi"
        assert route["waypoints"] == []
        assert route["is_active"] is True

    def test_duplicate_name(self, client, makeRoute, owner):
        """Test route names are unique inside a company"""
        makeRoute(owner["headers"])
        response = client.post(
            "/fleet/route",
            headers=owner["headers"],
            json={
                "source": {"name": "Kochi"},
                "destination": {"name": "Chennai"},
                "distance_km": 700,
                "estimated_duration_hr": 13,
            },
        )
        assert response.status_code == 409

    def test_invalid_waypoint(self, client, owner):
        """Test a waypoint outside the coordinate ranges is refused"""
        response = client.post(
            "/fleet/route",
            headers=owner["headers"],
            json={
                "source": {"name": "Kochi"},
                "destination": {"name": "Chennai"},
                "waypoints": [{"name": "Nowhere", "lat": 120}],
                "distance_km": 700,
                "estimated_duration_hr": 13,
            },
        )
        assert response.status_code == 422

    def test_update_route(self, client, makeRoute, owner):
        """Test an unused route can be edited"""
        route = makeRoute(owner["headers"])
        response = client.patch(
            "/fleet/route",
            headers=owner["headers"],
            json={"id": route["id"], "tolls": [{"name": "Walayar", "cost": 155}]},
        )
        assert response.status_code == 200
        assert response.json()["tolls"] == [{"name": "Walayar", "cost": 155.0}]

    def test_route_of_a_trip_is_frozen(self, client, fleet, createTrip):
        """Test a route used by a live trip cannot be edited or deleted"""
        routeId = fleet["route"]["id"]
        trip = createTrip(
            fleet["headers"], "trip-001", routeId, [fleet["vehicles"][0]["id"]], [fleet["drivers"][0]["id"]]
        ).json()

        updated = client.patch(
            "/fleet/route", headers=fleet["headers"], json={"id": routeId, "distance_km": 10}
        )
        assert updated.status_code == 409
        deleted = client.request(
            "DELETE", "/fleet/route", headers=fleet["headers"], json={"id": routeId}
        )
        assert deleted.status_code == 409

        client.post("/fleet/trip/cancel", headers=fleet["headers"], json={"id": trip["id"]})
        deleted = client.request(
            "DELETE", "/fleet/route", headers=fleet["headers"], json={"id": routeId}
        )
        assert deleted.status_code == 204

    def test_routes_are_isolated(self, client, makeRoute, owner, rival):
        """Test another company's routes are neither listed nor editable"""
        route = makeRoute(owner["headers"])
        listed = client.get("/fleet/route", headers=rival["headers"])
        assert listed.json()["items"] == []
        response = client.patch(
            "/fleet/route", headers=rival["headers"], json={"id": route["id"], "name": "Mine"}
        )
        assert response.status_code == 404


class TestCustomer:
    """Clients"""

    def test_create_client(self, makeClient, owner):
        """Test a client is created with a normalized GST number and phone"""
        created = makeClient(
            owner["headers"],
            gst_number="32aaaca1234a1z5",
            phone=PHONES[2],
            email="accounts@malabar.in",
        )
        assert created["gst_number"] == "32AAACA1234A1Z5"
        assert created["phone"] == PHONES[2]
        assert created["is_active"] is True

    def test_invalid_gst_number(self, client, owner):
        """Test a malformed GST number is refused"""
        response = client.post(
            "/fleet/client",
            headers=owner["headers"],
            data={"name": "Broken", "gst_number": "32AAACA1234A1Z!"},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "gst_number"

    def test_duplicate_name(self, client, makeClient, owner):
        """Test client names are unique inside a company"""
        makeClient(owner["headers"])
        response = client.post(
            "/fleet/client", headers=owner["headers"], data={"name": "Malabar Traders"}
        )
        assert response.status_code == 409

    def test_monthly_client_quota(self, client, makeClient, owner):
        """Test the free plan accepts 50 clients a month"""
        for index in range(50):
            makeClient(owner["headers"], f"Client {index}")
        response = client.post("/fleet/client", headers=owner["headers"], data={"name": "One more"})
        assert response.status_code == 403
        assert response.json()["resource"] == "client"

    def test_client_with_open_trip(self, client, fleet, makeClient, createTrip):
        """Test a client with a trip in progress cannot be deleted"""
        customer = makeClient(fleet["headers"])
        trip = createTrip(
            fleet["headers"],
            "trip-001",
            fleet["route"]["id"],
            [fleet["vehicles"][0]["id"]],
            [fleet["drivers"][0]["id"]],
            client_id=customer["id"],
        ).json()
        response = client.request(
            "DELETE", "/fleet/client", headers=fleet["headers"], data={"id": customer["id"]}
        )
        assert response.status_code == 409

        client.post("/fleet/trip/cancel", headers=fleet["headers"], json={"id": trip["id"]})
        response = client.request(
            "DELETE", "/fleet/client", headers=fleet["headers"], data={"id": customer["id"]}
        )
        assert response.status_code == 204
        details = client.get(
            "/fleet/trip/details", headers=fleet["headers"], params={"id": trip["id"]}
        ).json()
        assert details["client_id"] is None
        assert details["status"] == TripStatus.CANCELLED

    def test_detach_client_from_trip(self, client, fleet, makeClient, createTrip):
        """Test a null client_id keeps the client and clear_client detaches it"""
        customer = makeClient(fleet["headers"])
        trip = createTrip(
            fleet["headers"],
            "trip-001",
            fleet["route"]["id"],
            [fleet["vehicles"][0]["id"]],
            [fleet["drivers"][0]["id"]],
            client_id=customer["id"],
        ).json()

        response = client.patch(
            "/fleet/trip",
            headers=fleet["headers"],
            json={"id": trip["id"], "client_id": None, "remarks": "Fragile"},
        )
        assert response.status_code == 200
        assert response.json()["client_id"] == customer["id"]
        assert response.json()["remarks"] == "Fragile"

        response = client.patch(
            "/fleet/trip", headers=fleet["headers"], json={"id": trip["id"], "clear_client": True}
        )
        assert response.status_code == 200
        assert response.json()["client_id"] is None
        assert response.json()["remarks"] == "Fragile"


class TestMaintenance:
    """Maintenance logs"""

    def test_maintenance_parks_the_vehicle(self, client, makeVehicle, owner):
        """Test logging maintenance puts an available vehicle in maintenance"""
        vehicle = makeVehicle(owner["headers"])
        response = client.post(
            "/fleet/maintenance",
            headers=owner["headers"],
            data={
                "vehicle_id": vehicle["id"],
                "service_date": "2026-01-10T09:00:00",
                "next_due_date": "2026-07-10T09:00:00",
                "cost": 4500,
                "vendor_name": "Kerala Motors",
            },
        )
        assert response.status_code == 201, response.text
        assert response.json()["reminder_sent_on"] is None

        parked = client.get(
            "/fleet/vehicle", headers=owner["headers"], params={"id": vehicle["id"]}
        ).json()["items"][0]
        assert parked["status"] == VehicleStatus.MAINTENANCE

    def test_vehicle_in_trip(self, client, fleet, createTrip):
        """Test a vehicle on a trip cannot be sent to maintenance"""
        vehicleId = fleet["vehicles"][0]["id"]
        createTrip(fleet["headers"], "trip-001", fleet["route"]["id"], [vehicleId], [fleet["drivers"][0]["id"]])
        response = client.post(
            "/fleet/maintenance",
            headers=fleet["headers"],
            data={"vehicle_id": vehicleId, "service_date": "2026-01-10T09:00:00"},
        )
        assert response.status_code == 409

    def test_foreign_vehicle(self, client, makeVehicle, owner, rival):
        """Test maintenance cannot be logged on another company's vehicle"""
        vehicle = makeVehicle(rival["headers"])
        response = client.post(
            "/fleet/maintenance",
            headers=owner["headers"],
            data={"vehicle_id": vehicle["id"], "service_date": "2026-01-10T09:00:00"},
        )
        assert response.status_code == 404

    def test_moving_due_date_rearms_reminder(self, client, session, makeVehicle, owner):
        """Test a changed due date clears the reminder marker"""
        vehicle = makeVehicle(owner["headers"])
        log = client.post(
            "/fleet/maintenance",
            headers=owner["headers"],
            data={
                "vehicle_id": vehicle["id"],
                "service_date": "2026-01-10T09:00:00",
                "next_due_date": "2026-07-10T09:00:00",
            },
        ).json()
        session.query(MaintenanceLog).filter(MaintenanceLog.id == log["id"]).update(
            {"reminder_sent_on": utcNow()}
        )
        session.commit()

        response = client.patch(
            "/fleet/maintenance",
            headers=owner["headers"],
            data={"id": log["id"], "next_due_date": "2026-08-10T09:00:00"},
        )
        assert response.status_code == 200
        assert response.json()["reminder_sent_on"] is None
