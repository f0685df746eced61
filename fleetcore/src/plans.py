"""
Subscription plan table.

Each plan tier maps to resource ceilings and a set of enabled features.
A ceiling of `UNLIMITED` (None) means the resource is not bounded.
The table is immutable and shared by every request and worker.
"""

from math import floor
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional
from pydantic import BaseModel, ConfigDict

from fleetcore.src.enums import Feature, PlanType, QuotaResource

UNLIMITED = None


class PlanLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    max_vehicles: Optional[int]
    max_drivers: Optional[int]
    max_users: Optional[int]
    max_trips_per_month: Optional[int]
    max_clients_per_month: Optional[int]
    features: FrozenSet[Feature]


PLAN_LIMITS: Mapping[PlanType, PlanLimits] = MappingProxyType(
    {
        PlanType.FREE: PlanLimits(
            name="Free",
            max_vehicles=5,
            max_drivers=3,
            max_users=1,
            max_trips_per_month=100,
            max_clients_per_month=50,
            features=frozenset(),
        ),
        PlanType.STARTER: PlanLimits(
            name="Starter",
            max_vehicles=25,
            max_drivers=15,
            max_users=5,
            max_trips_per_month=1000,
            max_clients_per_month=500,
            features=frozenset({Feature.ANALYTICS, Feature.API_ACCESS}),
        ),
        PlanType.PROFESSIONAL: PlanLimits(
            name="Professional",
            max_vehicles=100,
            max_drivers=50,
            max_users=20,
            max_trips_per_month=10000,
            max_clients_per_month=5000,
            features=frozenset(
                {
                    Feature.ANALYTICS,
                    Feature.API_ACCESS,
                    Feature.CUSTOM_ROLES,
                    Feature.ADVANCED_REPORTING,
                    Feature.PRIORITY_SUPPORT,
                }
            ),
        ),
        PlanType.ENTERPRISE: PlanLimits(
            name="Enterprise",
            max_vehicles=UNLIMITED,
            max_drivers=UNLIMITED,
            max_users=UNLIMITED,
            max_trips_per_month=UNLIMITED,
            max_clients_per_month=UNLIMITED,
            features=frozenset(Feature),
        ),
    }
)

DEFAULT_PLAN = PlanType.FREE

# Resource -> (PlanLimits attribute, display name)
QUOTA_FIELDS: Mapping[QuotaResource, tuple] = MappingProxyType(
    {
        QuotaResource.VEHICLE: ("max_vehicles", "vehicle"),
        QuotaResource.DRIVER: ("max_drivers", "driver"),
        QuotaResource.USER: ("max_users", "user"),
        QuotaResource.TRIP: ("max_trips_per_month", "trip"),
        QuotaResource.CLIENT: ("max_clients_per_month", "client"),
    }
)


def getPlanLimits(plan: int) -> PlanLimits:
    """Limits of a plan, falling back to the free plan for unknown values."""
    try:
        return PLAN_LIMITS[PlanType(plan)]
    except ValueError:
        return PLAN_LIMITS[DEFAULT_PLAN]


def limitFor(plan: int, resource: QuotaResource) -> Optional[int]:
    field, _ = QUOTA_FIELDS[resource]
    return getattr(getPlanLimits(plan), field)


def resourceName(resource: QuotaResource) -> str:
    return QUOTA_FIELDS[resource][1]


def hasFeature(plan: int, feature: Feature) -> bool:
    return feature in getPlanLimits(plan).features


def isUnlimited(limit: Optional[int]) -> bool:
    return limit is UNLIMITED


def remainingQuota(limit: Optional[int], count: int) -> Optional[int]:
    if isUnlimited(limit):
        return UNLIMITED
    return max(0, limit - count)


def usagePercentage(limit: Optional[int], count: int) -> int:
    """Rounded share of the limit in use, half up. Zero for unbounded limits."""
    if isUnlimited(limit) or limit == 0:
        return 0
    return floor(count / limit * 100 + 0.5)


def recommendPlan(counts: Mapping[QuotaResource, int]) -> PlanType:
    """Smallest plan whose every limit fits the given resource counts."""
    for plan in sorted(PLAN_LIMITS):
        if all(
            isUnlimited(limitFor(plan, resource)) or count <= limitFor(plan, resource)
            for resource, count in counts.items()
        ):
            return plan
    return PlanType.ENTERPRISE


def planComparison() -> list[dict]:
    """Every plan with its limits and features, for display."""
    comparison = []
    for plan, limits in PLAN_LIMITS.items():
        entry = {"plan": plan, "name": limits.name}
        for resource, (field, _) in QUOTA_FIELDS.items():
            value = getattr(limits, field)
            entry[field] = "Unlimited" if isUnlimited(value) else value
        entry["features"] = sorted(feature.name.lower() for feature in limits.features)
        comparison.append(entry)
    return comparison
