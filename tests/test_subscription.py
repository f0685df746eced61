"""
API tests for subscriptions, usage, analytics, the audit trail and platform administration
"""

from fleetcore.src.enums import AuditAction, CompanyStatus, EntityType, PlanType

from tests.conftest import PHONES


class TestUsage:
    """Usage summary and plan estimates"""

    def test_usage_summary(self, client, makeVehicle, makeDriver, owner):
        """Test usage reports current counts against the plan limits"""
        makeVehicle(owner["headers"], "KL-01-1")
        makeVehicle(owner["headers"], "KL-01-2")
        makeDriver(owner["headers"], 0)

        response = client.get("/fleet/subscription/usage", headers=owner["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["plan"] == PlanType.FREE
        assert body["plan_name"] == "Free"
        assert body["features"] == []
        assert body["resources"]["vehicles"] == {
            "current": 2,
            "limit": 5,
            "remaining": 3,
            "usage_percentage": 40,
            "unlimited": False,
        }
        assert body["resources"]["drivers"]["usage_percentage"] == 33
        assert body["resources"]["users"]["current"] == 1

    def test_drivers_do_not_take_user_seats(self, client, makeDriver, owner):
        """Test driver accounts are not counted as users"""
        makeDriver(owner["headers"], 0)
        body = client.get("/fleet/subscription/usage", headers=owner["headers"]).json()
        assert body["resources"]["users"]["current"] == 1

    def test_estimate(self, client, makeVehicle, owner):
        """Test the estimate projects growth and recommends a fitting plan"""
        for index in range(5):
            makeVehicle(owner["headers"], f"KL-01-{index}")
        response = client.get("/fleet/subscription/estimate", headers=owner["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["projected"]["vehicles"] == 6
        assert body["recommended_plan"] == PlanType.STARTER
        assert body["upgrade_needed"] is True

    def test_feature_check(self, client, owner):
        """Test feature availability follows the plan"""
        response = client.get(
            "/fleet/subscription/feature", headers=owner["headers"], params={"feature": 1}
        )
        assert response.json() == {"feature": "analytics", "available": False}

        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        response = client.get(
            "/fleet/subscription/feature", headers=owner["headers"], params={"feature": 1}
        )
        assert response.json()["available"] is True

    def test_plan_comparison_is_public(self, client):
        """Test the plan table needs no authentication"""
        response = client.get("/platform/plan")
        assert response.status_code == 200
        assert [entry["name"] for entry in response.json()] == [
            "Free",
            "Starter",
            "Professional",
            "Enterprise",
        ]


class TestSubscription:
    """Plan upgrade, billing and cancellation"""

    def test_upgrade(self, client, owner):
        """Test an owner can move to a higher plan"""
        response = client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 3})
        assert response.status_code == 200
        body = response.json()
        assert body["plan"] == PlanType.PROFESSIONAL
        assert body["plan_changed_on"] is not None

    def test_downgrade_is_refused(self, client, owner):
        """Test the current plan and lower plans are refused"""
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 3})
        same = client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 3})
        assert same.status_code == 406
        lower = client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        assert lower.status_code == 406
        assert "downgrade" in lower.json()["message"].lower()

    def test_upgrade_is_audited(self, client, owner):
        """Test a plan change leaves an audit entry on the company"""
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        response = client.get(
            "/fleet/audit/entity",
            headers=owner["headers"],
            params={"entity_type": int(EntityType.COMPANY), "entity_id": owner["company"]["id"]},
        )
        entries = response.json()
        assert entries[0]["action"] == AuditAction.COMPANY_PLAN_CHANGE
        assert entries[0]["old_value"]["plan"] == PlanType.FREE
        assert entries[0]["new_value"]["plan"] == PlanType.STARTER

    def test_only_owner_manages_subscription(self, client, owner, login):
        """Test an admin cannot change the plan"""
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Admin",
                "email": "admin@acme.io",
                "password": "password123",
                "company_role": 2,
            },
        )
        token = login("acme", "admin@acme.io").json()["access_token"]
        response = client.patch(
            "/fleet/subscription",
            headers={"Authorization": f"Bearer {token}"},
            data={"plan": 3},
        )
        assert response.status_code == 403

    def test_billing_email(self, client, owner):
        """Test the billing email is stored lower-case"""
        response = client.patch(
            "/fleet/subscription/billing",
            headers=owner["headers"],
            data={"billing_email": "Billing@Acme.io"},
        )
        assert response.status_code == 200
        assert response.json()["billing_email"] == "billing@acme.io"
        fetched = client.get("/fleet/subscription/billing", headers=owner["headers"])
        assert fetched.json()["billing_email"] == "billing@acme.io"

    def test_cancel_blocks_creation(self, client, owner):
        """Test a cancelled company keeps read access but cannot create"""
        response = client.delete("/fleet/subscription", headers=owner["headers"])
        assert response.status_code == 200
        assert response.json()["status"] == CompanyStatus.CANCELLED

        created = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "KL-01-1", "capacity_kg": 1000},
        )
        assert created.status_code == 403
        assert created.headers["X-Error"] == "CompanyCancelled"
        assert client.get("/fleet/vehicle", headers=owner["headers"]).status_code == 200

        again = client.delete("/fleet/subscription", headers=owner["headers"])
        assert again.status_code == 409


class TestAnalytics:
    """Analytics report"""

    def test_free_plan_has_no_analytics(self, client, owner):
        """Test analytics is gated by the plan"""
        response = client.get("/fleet/analytics", headers=owner["headers"])
        assert response.status_code == 403
        assert response.json()["feature"] == "analytics"

    def test_report(self, client, fleet, createTrip):
        """Test the report counts trips, revenue and resource states"""
        client.patch("/fleet/subscription", headers=fleet["headers"], data={"plan": 2})
        done = createTrip(
            fleet["headers"],
            "trip-001",
            fleet["route"]["id"],
            [fleet["vehicles"][0]["id"]],
            [fleet["drivers"][0]["id"]],
            trip_cost=25000,
        ).json()
        client.patch("/fleet/trip", headers=fleet["headers"], json={"id": done["id"], "status": 2})
        client.post("/fleet/trip/complete", headers=fleet["headers"], json={"id": done["id"]})
        createTrip(
            fleet["headers"],
            "trip-002",
            fleet["route"]["id"],
            [fleet["vehicles"][1]["id"]],
            [fleet["drivers"][1]["id"]],
            trip_cost=9000,
        )

        response = client.get("/fleet/analytics", headers=fleet["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["total_trips"] == 2
        assert body["trips"]["completed"] == 1
        assert body["trips"]["scheduled"] == 1
        assert body["revenue"] == 25000
        assert body["vehicles"] == {"available": 1, "in_trip": 1, "maintenance": 0}
        assert body["drivers"] == {"inactive": 0, "active": 1, "on_trip": 1}
        assert body["maintenance_cost"] == 0


class TestAuditTrail:
    """Audit listing"""

    def test_listing_filters(self, client, makeVehicle, makeDriver, owner):
        """Test the audit list can be filtered by entity type"""
        makeVehicle(owner["headers"])
        makeDriver(owner["headers"], 0, phone=PHONES[1])
        response = client.get(
            "/fleet/audit",
            headers=owner["headers"],
            params={"entity_type": int(EntityType.DRIVER)},
        )
        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["action"] for item in items] == [AuditAction.DRIVER_CREATION]
        assert items[0]["user_id"] == owner["user"]["id"]
        assert "password" not in (items[0]["new_value"] or {})

    def test_user_role_cannot_read_audit(self, client, owner, login):
        """Test the plain user role has no audit access"""
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 2})
        client.post(
            "/fleet/account",
            headers=owner["headers"],
            data={
                "name": "Viewer",
                "email": "viewer@acme.io",
                "password": "password123",
                "company_role": 5,
            },
        )
        token = login("acme", "viewer@acme.io").json()["access_token"]
        response = client.get("/fleet/audit", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403


class TestPlatform:
    """Platform administration"""

    def test_list_companies(self, client, platformAdmin, owner, rival):
        """Test a platform admin sees every company"""
        response = client.get("/platform/company", headers=platformAdmin)
        assert response.status_code == 200
        slugs = {company["slug"] for company in response.json()["items"]}
        assert {"acme", "globex", "platform"} <= slugs

    def test_company_owner_is_not_platform_admin(self, client, owner):
        """Test a company owner cannot use platform endpoints"""
        response = client.get("/platform/company", headers=owner["headers"])
        assert response.status_code == 403

    def test_suspend_and_reactivate(self, client, platformAdmin, owner):
        """Test a suspended company cannot create until reactivated"""
        companyId = owner["company"]["id"]
        response = client.patch(
            "/platform/company/suspension",
            headers=platformAdmin,
            data={"id": companyId, "reason": "Unpaid invoices"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == CompanyStatus.SUSPENDED

        blocked = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "KL-01-1", "capacity_kg": 1000},
        )
        assert blocked.status_code == 403
        assert "suspended" in blocked.json()["message"]

        again = client.patch(
            "/platform/company/suspension", headers=platformAdmin, data={"id": companyId}
        )
        assert again.status_code == 409

        response = client.request(
            "DELETE", "/platform/company/suspension", headers=platformAdmin, data={"id": companyId}
        )
        assert response.status_code == 200
        assert response.json()["status"] == CompanyStatus.ACTIVE

        created = client.post(
            "/fleet/vehicle",
            headers=owner["headers"],
            data={"vehicle_number": "KL-01-1", "capacity_kg": 1000},
        )
        assert created.status_code == 201

    def test_admin_may_downgrade(self, client, platformAdmin, owner):
        """Test a platform admin can move a company to any plan"""
        companyId = owner["company"]["id"]
        client.patch("/fleet/subscription", headers=owner["headers"], data={"plan": 3})
        response = client.patch(
            "/platform/company/plan", headers=platformAdmin, data={"id": companyId, "plan": 1}
        )
        assert response.status_code == 200
        assert response.json()["plan"] == PlanType.FREE

    def test_unknown_company(self, client, platformAdmin):
        """Test actions on a missing company report an invalid id"""
        response = client.patch(
            "/platform/company/plan", headers=platformAdmin, data={"id": 999, "plan": 2}
        )
        assert response.status_code == 404


class TestHealth:
    """Service health"""

    def test_health(self, client):
        """Test the health endpoint reports the version"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "OK", "version": "1.0.0"}
