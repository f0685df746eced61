"""
Unit tests for the plan table and the role table
"""

import pytest

from fleetcore.src import plans
from fleetcore.src.enums import CompanyRole, Feature, PlanType, QuotaResource
from fleetcore.src.roles import ROLES, roleOf


class TestPlanLimits:
    """Plan ceilings and features"""

    def test_free_plan_limits(self):
        """Test the free plan carries the smallest ceilings"""
        limits = plans.getPlanLimits(PlanType.FREE)
        assert limits.max_vehicles == 5
        assert limits.max_drivers == 3
        assert limits.max_users == 1
        assert limits.max_trips_per_month == 100
        assert limits.max_clients_per_month == 50
        assert limits.features == frozenset()

    def test_enterprise_is_unlimited(self):
        """Test every enterprise ceiling is unbounded"""
        for resource in QuotaResource:
            assert plans.isUnlimited(plans.limitFor(PlanType.ENTERPRISE, resource))
        assert plans.getPlanLimits(PlanType.ENTERPRISE).features == frozenset(Feature)

    def test_unknown_plan_falls_back_to_free(self):
        """Test an unknown plan value resolves to the free plan"""
        assert plans.getPlanLimits(99) == plans.getPlanLimits(PlanType.FREE)

    def test_limits_grow_with_tier(self):
        """Test each higher paid tier allows at least as much as the one below"""
        tiers = [PlanType.FREE, PlanType.STARTER, PlanType.PROFESSIONAL]
        for resource in QuotaResource:
            values = [plans.limitFor(plan, resource) for plan in tiers]
            assert values == sorted(values)

    def test_feature_lookup(self):
        """Test feature membership per plan"""
        assert not plans.hasFeature(PlanType.FREE, Feature.ANALYTICS)
        assert plans.hasFeature(PlanType.STARTER, Feature.ANALYTICS)
        assert not plans.hasFeature(PlanType.STARTER, Feature.WEBHOOKS)
        assert plans.hasFeature(PlanType.ENTERPRISE, Feature.WEBHOOKS)

    def test_plan_table_is_read_only(self):
        """Test the shared plan table cannot be mutated"""
        with pytest.raises(TypeError):
            plans.PLAN_LIMITS[PlanType.FREE] = plans.PLAN_LIMITS[PlanType.ENTERPRISE]
        with pytest.raises(Exception):
            plans.PLAN_LIMITS[PlanType.FREE].max_vehicles = 500


class TestUsageMath:
    """Remaining quota, percentages and plan recommendation"""

    def test_remaining_quota(self):
        """Test remaining quota never goes below zero"""
        assert plans.remainingQuota(5, 3) == 2
        assert plans.remainingQuota(5, 7) == 0
        assert plans.remainingQuota(None, 1000) is None

    def test_usage_percentage_rounds_half_up(self):
        """Test the usage percentage is rounded half up"""
        assert plans.usagePercentage(3, 1) == 33
        assert plans.usagePercentage(3, 2) == 67
        assert plans.usagePercentage(8, 1) == 13
        assert plans.usagePercentage(5, 5) == 100

    def test_usage_percentage_of_unbounded_limit(self):
        """Test an unlimited resource always reports zero percent"""
        assert plans.usagePercentage(None, 10_000) == 0

    def test_recommend_smallest_fitting_plan(self):
        """Test the recommendation is the smallest plan whose every limit fits"""
        assert plans.recommendPlan({QuotaResource.VEHICLE: 5}) == PlanType.FREE
        assert plans.recommendPlan({QuotaResource.VEHICLE: 6}) == PlanType.STARTER
        assert (
            plans.recommendPlan({QuotaResource.VEHICLE: 6, QuotaResource.USER: 6})
            == PlanType.PROFESSIONAL
        )
        assert plans.recommendPlan({QuotaResource.DRIVER: 51}) == PlanType.ENTERPRISE

    def test_plan_comparison(self):
        """Test the comparison lists every plan and renders unbounded limits"""
        comparison = plans.planComparison()
        assert [entry["plan"] for entry in comparison] == list(PlanType)
        enterprise = comparison[-1]
        assert enterprise["max_vehicles"] == "Unlimited"
        assert "analytics" in enterprise["features"]


class TestRoles:
    """Company role permissions"""

    def test_owner_holds_every_permission(self):
        """Test the owner role grants everything"""
        owner = ROLES[CompanyRole.OWNER]
        assert all(owner.model_dump(exclude={"name"}).values())

    def test_admin_cannot_manage_subscription(self):
        """Test admins manage everything except the subscription"""
        admin = ROLES[CompanyRole.ADMIN]
        assert admin.manage_account
        assert not admin.manage_subscription

    def test_driver_only_reports_progress(self):
        """Test drivers can only add trip progress"""
        granted = [
            field
            for field, value in ROLES[CompanyRole.DRIVER].model_dump(exclude={"name"}).items()
            if value
        ]
        assert granted == ["add_trip_progress"]

    def test_unknown_role(self):
        """Test an unknown role value has no permissions"""
        assert roleOf(42) is None
