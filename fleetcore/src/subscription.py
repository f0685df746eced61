"""
Plan limit enforcement and subscription management.

Quota checks run in the same transaction as the insert they guard. The
company row is locked (`SELECT ... FOR UPDATE`) first, so concurrent
creations inside one tenant are serialized and cannot both pass the check.
"""

from math import ceil
from typing import Optional
from sqlalchemy.orm.session import Session

from fleetcore.src import exceptions, plans, validators
from fleetcore.src.db import Client, Company, DriverProfile, Trip, User, Vehicle
from fleetcore.src.enums import CompanyRole, CompanyStatus, PlanType, QuotaResource
from fleetcore.src.functions import monthStart, utcNow
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import USAGE_ESTIMATE_FACTOR

USAGE_COUNTERS = {
    QuotaResource.VEHICLE: Company.vehicles_created_this_month.key,
    QuotaResource.DRIVER: Company.drivers_created_this_month.key,
    QuotaResource.USER: Company.users_created_this_month.key,
}

SUMMARY_RESOURCES = {
    "vehicles": QuotaResource.VEHICLE,
    "drivers": QuotaResource.DRIVER,
    "users": QuotaResource.USER,
    "trips": QuotaResource.TRIP,
    "clients": QuotaResource.CLIENT,
}


def lockedCompany(session: Session, scope: TenantScope) -> Company:
    company = (
        session.query(Company)
        .filter(Company.id == scope.company_id)
        .with_for_update()
        .first()
    )
    if company is None:
        raise exceptions.TenantContextRequired()
    return company


def resourceCount(session: Session, scope: TenantScope, resource: QuotaResource) -> int:
    """Current usage of a quota-bound resource. Trips and clients count per month."""
    if resource == QuotaResource.VEHICLE:
        return TenantRepository(session, scope, Vehicle).count()
    if resource == QuotaResource.DRIVER:
        return TenantRepository(session, scope, DriverProfile).count()
    if resource == QuotaResource.USER:
        return TenantRepository(session, scope, User).count(
            User.company_role != CompanyRole.DRIVER
        )
    since = monthStart(utcNow())
    if resource == QuotaResource.TRIP:
        return TenantRepository(session, scope, Trip).count(Trip.created_on >= since)
    return TenantRepository(session, scope, Client).count(Client.created_on >= since)


def enforceQuota(session: Session, scope: TenantScope, resource: QuotaResource) -> Company:
    """
    Guard the creation of one more `resource` for the tenant.

    Raises:
        exceptions.CompanySuspended / exceptions.CompanyCancelled: If the company is not active.
        exceptions.QuotaExceeded: If the current count already reached the plan limit.
    """
    company = lockedCompany(session, scope)
    validators.companyStatus(company)
    limit = plans.limitFor(company.plan, resource)
    if plans.isUnlimited(limit):
        return company
    if resourceCount(session, scope, resource) >= limit:
        raise exceptions.QuotaExceeded(plans.resourceName(resource), limit)
    return company


def recordUsage(company: Company, resource: QuotaResource) -> None:
    counter = USAGE_COUNTERS.get(resource)
    if counter is not None:
        setattr(company, counter, (getattr(company, counter) or 0) + 1)


def usageSummary(session: Session, company: Company) -> dict:
    scope = TenantScope(company.id)
    limits = plans.getPlanLimits(company.plan)
    resources = {}
    for name, resource in SUMMARY_RESOURCES.items():
        limit = plans.limitFor(company.plan, resource)
        current = resourceCount(session, scope, resource)
        resources[name] = {
            "current": current,
            "limit": limit,
            "remaining": plans.remainingQuota(limit, current),
            "usage_percentage": plans.usagePercentage(limit, current),
            "unlimited": plans.isUnlimited(limit),
        }
    return {
        "plan": company.plan,
        "plan_name": limits.name,
        "status": company.status,
        "resources": resources,
        "features": sorted(feature.name.lower() for feature in limits.features),
    }


def estimateUsage(session: Session, company: Company) -> dict:
    """Current counts projected by the growth factor and the plan that would fit them."""
    scope = TenantScope(company.id)
    projected = {
        resource: ceil(resourceCount(session, scope, resource) * USAGE_ESTIMATE_FACTOR)
        for resource in SUMMARY_RESOURCES.values()
    }
    recommended = plans.recommendPlan(projected)
    return {
        "current_plan": company.plan,
        "projected": {
            name: projected[resource] for name, resource in SUMMARY_RESOURCES.items()
        },
        "recommended_plan": recommended,
        "recommended_plan_name": plans.getPlanLimits(recommended).name,
        "upgrade_needed": recommended > company.plan,
    }


def billingInfo(company: Company) -> dict:
    return {
        "plan": company.plan,
        "plan_name": plans.getPlanLimits(company.plan).name,
        "status": company.status,
        "billing_email": company.billing_email,
        "billing_cycle": company.billing_cycle,
        "subscription_id": company.subscription_id,
        "subscription_started_on": company.subscription_started_on,
        "subscription_ends_on": company.subscription_ends_on,
        "trial_ends_on": company.trial_ends_on,
        "plan_changed_on": company.plan_changed_on,
    }


# ---------------------------------------------------------------------------
# Plan and status changes
# ---------------------------------------------------------------------------
def upgradePlan(company: Company, newPlan: PlanType) -> Company:
    """
    Move the company to a higher plan.

    Raises:
        exceptions.InvalidPlanChange: For the current plan or any lower plan.
    """
    if newPlan == company.plan:
        raise exceptions.InvalidPlanChange("The company is already on this plan")
    if newPlan < company.plan:
        raise exceptions.InvalidPlanChange(
            "Plan downgrade not allowed. Contact support."
        )
    return changePlan(company, newPlan)


def changePlan(company: Company, newPlan: PlanType) -> Company:
    company.plan = newPlan
    company.plan_changed_on = utcNow()
    return company


def suspend(company: Company, reason: Optional[str]) -> Company:
    if company.status == CompanyStatus.SUSPENDED:
        raise exceptions.InvalidStateTransition("status")
    company.status = CompanyStatus.SUSPENDED
    company.suspension_reason = reason
    company.suspended_on = utcNow()
    return company


def reactivate(company: Company) -> Company:
    if company.status != CompanyStatus.SUSPENDED:
        raise exceptions.InvalidStateTransition("status")
    company.status = CompanyStatus.ACTIVE
    company.suspension_reason = None
    company.suspended_on = None
    return company


def cancel(company: Company) -> Company:
    if company.status == CompanyStatus.CANCELLED:
        raise exceptions.InvalidStateTransition("status")
    company.status = CompanyStatus.CANCELLED
    company.subscription_ends_on = utcNow()
    return company
