from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status, Form
from pydantic import BaseModel, EmailStr, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import sessionMaker
from fleetcore.src import audit, exceptions, plans, subscription, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import AuditAction, EntityType, Feature, PlanType
from fleetcore.src.functions import enumStr, makeExceptionResponses, snapshot
from fleetcore.src.urls import (
    URL_SUBSCRIPTION,
    URL_SUBSCRIPTION_BILLING,
    URL_SUBSCRIPTION_ESTIMATE,
    URL_SUBSCRIPTION_FEATURE,
    URL_SUBSCRIPTION_USAGE,
)

route_fleet = APIRouter()


## Output Schema
class ResourceUsageSchema(BaseModel):
    current: int
    limit: Optional[int]
    remaining: Optional[int]
    usage_percentage: int
    unlimited: bool


class UsageSchema(BaseModel):
    plan: int
    plan_name: str
    status: int
    resources: Dict[str, ResourceUsageSchema]
    features: List[str]


class EstimateSchema(BaseModel):
    current_plan: int
    projected: Dict[str, int]
    recommended_plan: int
    recommended_plan_name: str
    upgrade_needed: bool


class FeatureSchema(BaseModel):
    feature: str
    available: bool


class BillingSchema(BaseModel):
    plan: int
    plan_name: str
    status: int
    billing_email: Optional[str]
    billing_cycle: int
    subscription_id: Optional[str]
    subscription_started_on: Optional[datetime]
    subscription_ends_on: Optional[datetime]
    trial_ends_on: Optional[datetime]
    plan_changed_on: Optional[datetime]


## Input Forms
class UpgradeForm(BaseModel):
    plan: PlanType = Field(Form(description=enumStr(PlanType)))


class BillingForm(BaseModel):
    billing_email: EmailStr = Field(Form(max_length=254))


## Query Parameters
class FeatureParams(BaseModel):
    feature: Feature = Field(Query(description=enumStr(Feature)))


## Function
def ownCompany(identity, session):
    company = getters.company(identity, session)
    if company is None:
        raise exceptions.TenantContextRequired()
    return company


def recordCompanyChange(session, identity, request_info, action, company, oldValue):
    audit.recordAction(
        session,
        identity,
        request_info,
        action,
        EntityType.COMPANY,
        company.id,
        oldValue=oldValue,
        newValue=snapshot(company),
    )


## API endpoints [Fleet]
@route_fleet.get(
    URL_SUBSCRIPTION_USAGE,
    tags=["Subscription"],
    response_model=UsageSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Usage of every quota-bound resource against the plan limits, and the enabled features.
    An unlimited resource reports no limit, no remaining quota and 0 percent usage.
    """,
)
async def fetch_usage(bearer=Depends(bearer_fleet)):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        return subscription.usageSummary(session, ownCompany(identity, session))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_SUBSCRIPTION_ESTIMATE,
    tags=["Subscription"],
    response_model=EstimateSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Projects the current usage by 20 percent and recommends the smallest plan that fits it.
    """,
)
async def fetch_estimate(bearer=Depends(bearer_fleet)):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        return subscription.estimateUsage(session, ownCompany(identity, session))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_SUBSCRIPTION_FEATURE,
    tags=["Subscription"],
    response_model=FeatureSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Tells whether the company's plan includes a feature.
    """,
)
async def fetch_feature(
    qParam: FeatureParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        company = ownCompany(identity, session)
        return {
            "feature": qParam.feature.name.lower(),
            "available": plans.hasFeature(company.plan, qParam.feature),
        }
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_SUBSCRIPTION,
    tags=["Subscription"],
    response_model=BillingSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidPlanChange("Plan downgrade not allowed. Contact support."),
        ]
    ),
    description="""
    Upgrades the company to a higher plan. Only the owner holds `manage_subscription`.
    Downgrades and re-selecting the current plan are refused.
    """,
)
async def upgrade_plan(
    fParam: UpgradeForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_subscription")

        company = ownCompany(identity, session)
        oldValue = snapshot(company)
        subscription.upgradePlan(company, fParam.plan)
        recordCompanyChange(
            session, identity, request_info, AuditAction.COMPANY_PLAN_CHANGE, company, oldValue
        )
        session.commit()
        session.refresh(company)

        data = subscription.billingInfo(company)
        logEvent(identity, request_info, {"plan": company.plan, "old_plan": oldValue["plan"]})
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_SUBSCRIPTION,
    tags=["Subscription"],
    response_model=BillingSchema,
    status_code=status.HTTP_200_OK,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Cancels the company's subscription. Only the owner holds `manage_subscription`.
    A cancelled company can no longer create resources.
    """,
)
async def cancel_subscription(
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_subscription")

        company = ownCompany(identity, session)
        oldValue = snapshot(company)
        subscription.cancel(company)
        recordCompanyChange(
            session, identity, request_info, AuditAction.COMPANY_STATUS_CHANGE, company, oldValue
        )
        session.commit()
        session.refresh(company)

        data = subscription.billingInfo(company)
        logEvent(identity, request_info, {"status": company.status})
        return data
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_SUBSCRIPTION_BILLING,
    tags=["Subscription"],
    response_model=BillingSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Billing details of the company. Requires `manage_subscription`.
    """,
)
async def fetch_billing(bearer=Depends(bearer_fleet)):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_subscription")
        return subscription.billingInfo(ownCompany(identity, session))
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_SUBSCRIPTION_BILLING,
    tags=["Subscription"],
    response_model=BillingSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Changes the billing email of the company. Requires `manage_subscription`.
    Maintenance reminders are sent to this address.
    """,
)
async def update_billing(
    fParam: BillingForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_subscription")

        company = ownCompany(identity, session)
        email = fParam.billing_email.lower()
        if company.billing_email != email:
            oldValue = snapshot(company)
            company.billing_email = email
            recordCompanyChange(
                session, identity, request_info, AuditAction.COMPANY_UPDATE, company, oldValue
            )
            session.commit()
            session.refresh(company)
            logEvent(identity, request_info, {"billing_email": email})
        return subscription.billingInfo(company)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
