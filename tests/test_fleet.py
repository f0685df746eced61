"""
API tests for vehicles and drivers: quotas, isolation and status rules
"""

from fleetcore.src.enums import DriverStatus, VehicleStatus

from tests.conftest import PASSWORD, PHONES


class TestVehicle:
    """Vehicle registration and updates"""

    def test_create_vehicle(self, makeVehicle, owner):
        """Test a new vehicle is available and its number normalized"""
        vehicle = makeVehicle(owner["headers"], " kl-07-ab-1 ", model="Tata 407")
        assert vehicle["vehicle_number"] == "KL-07-AB-1"
        assert vehicle["status"] == VehicleStatus.AVAILABLE
        assert vehicle["company_id"] == owner["company"]["id"]
        assert vehicle["insurance_expired"] is False

    def test_insurance_expired_flag(self, makeVehicle, owner):
        """Test a past insurance expiry is reported"""
        vehicle = makeVehicle(owner["headers"], insurance_expiry="2020-01-01T00:00:00")
        assert vehicle["insurance_expired"] is True

    def test_invalid_vehicle_number(self, client, owner):
        """Test a vehicle number with illegal characters is refused"""
        response = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "KL 01 #1", "capacity_kg": 1000},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "vehicle_number"

    def test_duplicate_number_per_company(self, client, makeVehicle, owner, rival):
        """Test numbers are unique inside a company but reusable across companies"""
        makeVehicle(owner["headers"], "KL-01-1001")
        response = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "kl-01-1001", "capacity_kg": 1000},
        )
        assert response.status_code == 409
        assert makeVehicle(rival["headers"], "KL-01-1001")["company_id"] == rival["company"]["id"]

    def test_vehicle_quota(self, client, makeVehicle, owner):
        """Test the free plan accepts a 5th vehicle and refuses the 6th"""
        for index in range(5):
            makeVehicle(owner["headers"], f"KL-01-{index}")
        response = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "KL-01-6", "capacity_kg": 1000},
        )
        assert response.status_code == 403
        body = response.json()
        assert body["resource"] == "vehicle"
        assert body["limit"] == 5
        assert "Upgrade your plan" in body["message"]

    def test_quota_after_delete(self, client, makeVehicle, owner):
        """Test deleting a vehicle frees a seat"""
        vehicles = [makeVehicle(owner["headers"], f"KL-01-{index}") for index in range(5)]
        client.request(
            "DELETE", "/fleet/vehicle", headers=owner["headers"], data={"id": vehicles[0]["id"]}
        )
        makeVehicle(owner["headers"], "KL-01-6")

    def test_status_transitions(self, client, makeVehicle, owner):
        """Test a vehicle may switch between available and maintenance only"""
        vehicle = makeVehicle(owner["headers"])
        response = client.patch(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"id": vehicle["id"], "status": int(VehicleStatus.MAINTENANCE)},
        )
        assert response.status_code == 200
        assert response.json()["status"] == VehicleStatus.MAINTENANCE

        response = client.patch(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"id": vehicle["id"], "status": int(VehicleStatus.IN_TRIP)},
        )
        assert response.status_code == 409

    def test_update_without_changes(self, client, makeVehicle, owner):
        """Test an update repeating current values writes no audit entry"""
        vehicle = makeVehicle(owner["headers"], model="Tata 407")
        client.patch(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"id": vehicle["id"], "model": "Tata 407"},
        )
        response = client.get(
            "/fleet/audit/entity",
            headers=owner["headers"],
            params={"entity_type": 3, "entity_id": vehicle["id"]},
        )
        assert len(response.json()) == 1

    def test_delete_unknown_vehicle(self, client, owner):
        """Test deleting a missing vehicle is silently accepted"""
        response = client.request(
            "DELETE", "/fleet/vehicle", headers=owner["headers"], data={"id": 999}
        )
        assert response.status_code == 204

    def test_list_and_filter(self, client, makeVehicle, owner):
        """Test listing with a filter and pagination metadata"""
        for index in range(3):
            makeVehicle(owner["headers"], f"KL-01-{index}")
        makeVehicle(owner["headers"], "TN-09-1")
        response = client.get(
            "/fleet/vehicle",
            headers=owner["headers"],
            params={"vehicle_number": "kl", "limit": 2, "order_in": 1},
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["vehicle_number"] for item in body["items"]] == ["KL-01-0", "KL-01-1"]
        assert body["pagination"] == {
            "total": 3,
            "page": 1,
            "limit": 2,
            "total_pages": 2,
            "has_next": True,
            "has_prev": False,
        }


class TestIsolation:
    """Cross-tenant access"""

    def test_foreign_vehicle_is_invisible(self, client, makeVehicle, owner, rival):
        """Test another company's vehicle cannot be listed, updated or deleted"""
        vehicle = makeVehicle(owner["headers"])

        listed = client.get("/fleet/vehicle", headers=rival["headers"], params={"id": vehicle["id"]})
        assert listed.json()["items"] == []

        updated = client.patch(
            "/fleet/vehicle", headers=rival["headers"], data={"id": vehicle["id"], "model": "X"}
        )
        assert updated.status_code == 404

        client.request("DELETE", "/fleet/vehicle", headers=rival["headers"], data={"id": vehicle["id"]})
        still = client.get("/fleet/vehicle", headers=owner["headers"], params={"id": vehicle["id"]})
        assert len(still.json()["items"]) == 1

    def test_foreign_vehicle_cannot_be_assigned(self, client, makeVehicle, makeDriver, owner, rival):
        """Test a driver cannot be bound to another company's vehicle"""
        vehicle = makeVehicle(rival["headers"])
        response = client.post(
            "/fleet/driver",
            headers=owner["headers"],
            data={
                "name": "Driver",
                "email": "driver@acme.io",
                "password": PASSWORD,
                "license_number": "DL-1234",
                "phone": PHONES[0],
                "assigned_vehicle_id": vehicle["id"],
            },
        )
        assert response.status_code == 404

    def test_foreign_audit_is_invisible(self, client, makeVehicle, owner, rival):
        """Test the audit trail only shows the caller's company"""
        makeVehicle(owner["headers"])
        response = client.get("/fleet/audit", headers=rival["headers"])
        assert response.status_code == 200
        entries = response.json()["items"]
        assert all(entry["company_id"] == rival["company"]["id"] for entry in entries)


class TestDriver:
    """Driver profiles"""

    def test_create_driver(self, makeDriver, login, owner):
        """Test a driver starts inactive and can log in with the driver role"""
        driver = makeDriver(owner["headers"], 0, experience_years=4)
        assert driver["status"] == DriverStatus.INACTIVE
        assert driver["name"] == "Driver 0"
        assert driver["phone"] == PHONES[0]
        assert driver["location"] is None

        response = login("acme", "driver0@fleet.io")
        assert response.status_code == 201
        assert response.json()["company_role"] == 4

    def test_invalid_phone(self, client, owner):
        """Test a phone number that is not an international number is refused"""
        response = client.post(
            "/fleet/driver",
            headers=owner["headers"],
            data={
                "name": "Driver",
                "email": "driver@acme.io",
                "password": PASSWORD,
                "license_number": "DL-1234",
                "phone": "12345",
            },
        )
        assert response.status_code == 422

    def test_driver_quota(self, client, makeDriver, owner):
        """Test the free plan allows three drivers"""
        for index in range(3):
            makeDriver(owner["headers"], index)
        response = client.post(
            "/fleet/driver",
            headers=owner["headers"],
            data={
                "name": "Driver 3",
                "email": "driver3@fleet.io",
                "password": PASSWORD,
                "license_number": "DL-0003",
                "phone": PHONES[0],
            },
        )
        assert response.status_code == 403
        assert response.json()["resource"] == "driver"

    def test_duplicate_license(self, client, makeDriver, owner):
        """Test license numbers are unique inside a company"""
        makeDriver(owner["headers"], 0)
        response = client.post(
            "/fleet/driver",
            headers=owner["headers"],
            data={
                "name": "Copy",
                "email": "copy@fleet.io",
                "password": PASSWORD,
                "license_number": "dl-0000",
                "phone": PHONES[1],
            },
        )
        assert response.status_code == 409

    def test_activate_driver(self, client, makeDriver, owner):
        """Test a driver may be switched between inactive and active"""
        driver = makeDriver(owner["headers"], 0)
        response = client.patch(
            "/fleet/driver",
            headers=owner["headers"],
            data={"id": driver["id"], "status": int(DriverStatus.ACTIVE)},
        )
        assert response.status_code == 200
        assert response.json()["status"] == DriverStatus.ACTIVE

        response = client.patch(
            "/fleet/driver",
            headers=owner["headers"],
            data={"id": driver["id"], "status": int(DriverStatus.ON_TRIP)},
        )
        assert response.status_code == 409

    def test_driver_reports_own_location(self, client, makeDriver, login, owner):
        """Test a driver can record their own location"""
        makeDriver(owner["headers"], 0)
        token = login("acme", "driver0@fleet.io").json()["access_token"]
        response = client.post(
            "/fleet/driver/location",
            headers={"Authorization": f"Bearer {token}"},
            data={"lat": 10.5, "lng": 76.2},
        )
        assert response.status_code == 200
        location = response.json()["location"]
        assert location["lat"] == 10.5
        assert location["lng"] == 76.2

    def test_location_out_of_range(self, client, makeDriver, owner):
        """Test coordinates outside the valid ranges are refused"""
        driver = makeDriver(owner["headers"], 0)
        response = client.post(
            "/fleet/driver/location",
            headers=owner["headers"],
            data={"id": driver["id"], "lat": 91, "lng": 0},
        )
        assert response.status_code == 422

    def test_delete_driver_removes_account(self, client, makeDriver, login, owner):
        """Test deleting a driver also removes the login"""
        driver = makeDriver(owner["headers"], 0)
        response = client.request(
            "DELETE", "/fleet/driver", headers=owner["headers"], data={"id": driver["id"]}
        )
        assert response.status_code == 204
        assert login("acme", "driver0@fleet.io").status_code == 401
