from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm.session import Session

from fleetcore.api.bearer import bearer_platform
from fleetcore.src.db import Company, sessionMaker
from fleetcore.src import accounts, audit, exceptions, plans, subscription, validators, getters
from fleetcore.src.enums import AuditAction, CompanyStatus, EntityType, OrderIn, PlanType
from fleetcore.src.loggers import logEvent
from fleetcore.src.tenancy import TenantScope
from fleetcore.src.constants import REGEX_PASSWORD, REGEX_SLUG
from fleetcore.src.functions import enumStr, makeExceptionResponses, paginationMeta, snapshot
from fleetcore.src.urls import (
    URL_COMPANY,
    URL_COMPANY_PLAN,
    URL_COMPANY_SUSPENSION,
    URL_PLAN,
    URL_SIGNUP,
)

route_platform = APIRouter()


## Output Schema
class CompanySchema(BaseModel):
    id: int
    name: str
    slug: str
    owner_id: Optional[int]
    plan: int
    status: int
    billing_email: Optional[str]
    billing_cycle: int
    plan_changed_on: Optional[datetime]
    suspension_reason: Optional[str]
    suspended_on: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


class OwnerSchema(BaseModel):
    id: int
    company_id: int
    name: str
    email: str
    company_role: int
    platform_role: int
    created_on: datetime


class SignupSchema(BaseModel):
    user: OwnerSchema
    company: CompanySchema
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class CompanyListSchema(BaseModel):
    items: List[CompanySchema]
    pagination: dict


## Input Forms
class SignupForm(BaseModel):
    company_name: str = Field(Form(min_length=2, max_length=100))
    slug: str = Field(Form(min_length=3, max_length=64, pattern=REGEX_SLUG))
    name: str = Field(Form(min_length=2, max_length=100))
    email: EmailStr = Field(Form(max_length=254))
    password: str = Field(Form(min_length=8, max_length=64, pattern=REGEX_PASSWORD))
    billing_email: EmailStr | None = Field(Form(max_length=254, default=None))


class SuspendForm(BaseModel):
    id: int = Field(Form())
    reason: str | None = Field(Form(max_length=512, default=None))


class ReactivateForm(BaseModel):
    id: int = Field(Form())


class PlanForm(BaseModel):
    id: int = Field(Form())
    plan: PlanType = Field(Form(description=enumStr(PlanType)))


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    slug: str | None = Field(Query(default=None))
    plan: PlanType | None = Field(Query(default=None, description=enumStr(PlanType)))
    status: CompanyStatus | None = Field(
        Query(default=None, description=enumStr(CompanyStatus))
    )
    # id based
    id: int | None = Field(Query(default=None))
    id_list: List[int] | None = Field(Query(default=None))
    # created_on based
    created_on_ge: datetime | None = Field(Query(default=None))
    created_on_le: datetime | None = Field(Query(default=None))
    # Ordering
    order_by: OrderBy = Field(Query(default=OrderBy.id, description=enumStr(OrderBy)))
    order_in: OrderIn = Field(Query(default=OrderIn.DESC, description=enumStr(OrderIn)))
    # Pagination
    page: int = Field(Query(default=1, ge=1))
    limit: int = Field(Query(default=20, gt=0, le=100))


## Function
def searchCompany(session: Session, qParam: QueryParams) -> dict:
    query = session.query(Company)

    # Filters
    if qParam.name is not None:
        query = query.filter(Company.name.ilike(f"%{qParam.name}%"))
    if qParam.slug is not None:
        query = query.filter(Company.slug == qParam.slug)
    if qParam.plan is not None:
        query = query.filter(Company.plan == qParam.plan)
    if qParam.status is not None:
        query = query.filter(Company.status == qParam.status)
    # id based
    if qParam.id is not None:
        query = query.filter(Company.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Company.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Company.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Company.created_on <= qParam.created_on_le)

    total = query.count()

    # Ordering
    orderingAttribute = getattr(Company, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    # Pagination
    query = query.offset((qParam.page - 1) * qParam.limit).limit(qParam.limit)
    return {
        "items": query.all(),
        "pagination": paginationMeta(total, qParam.page, qParam.limit),
    }


def getCompany(session: Session, companyId: int) -> Company:
    company = session.query(Company).filter(Company.id == companyId).first()
    if company is None:
        raise exceptions.InvalidIdentifier()
    return company


def recordCompanyChange(session, identity, request_info, company, action, oldValue):
    # Platform actions are recorded in the affected tenant's trail
    audit.record(
        session,
        TenantScope(company.id),
        action,
        EntityType.COMPANY,
        company.id,
        oldValue=oldValue,
        newValue=snapshot(company),
        details={"platform_user_id": identity.user_id},
        requestInfo=request_info,
    )


## API endpoints [Public]
@route_platform.post(
    URL_SIGNUP,
    tags=["Signup"],
    response_model=SignupSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [exceptions.UniqueViolation("Company slug already exists")]
    ),
    description="""
    Creates a new company and its owner account in a single transaction.
    The slug identifies the company at login and must be unique.
    The owner is logged in immediately: the response carries an access and a refresh token.
    """,
)
async def signup(
    fParam: SignupForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        company, user, credentials = accounts.signup(
            session,
            companyName=fParam.company_name,
            slug=fParam.slug,
            ownerName=fParam.name,
            email=fParam.email,
            password=fParam.password,
            billingEmail=fParam.billing_email,
            requestInfo=request_info,
        )
        session.commit()
        session.refresh(company)
        session.refresh(user)

        companyData = jsonable_encoder(company)
        userData = jsonable_encoder(user, exclude={"password", "refresh_token_id"})
        logEvent(None, request_info, {"company": companyData, "user": userData})
        return {"user": userData, "company": companyData, **credentials}
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_platform.get(
    URL_PLAN,
    tags=["Plan"],
    description="""
    Lists every subscription plan with its resource limits and features.
    Unbounded limits are reported as "Unlimited".
    """,
)
async def fetch_plans():
    return plans.planComparison()


## API endpoints [Platform admin]
@route_platform.get(
    URL_COMPANY,
    tags=["Company"],
    response_model=CompanyListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken, exceptions.NoPermission]),
    description="""
    Lists companies across the platform.
    Only platform admins can access this endpoint.
    """,
)
async def fetch_companies(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_platform),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        validators.platformAdmin(identity)

        return searchCompany(session, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_platform.patch(
    URL_COMPANY_SUSPENSION,
    tags=["Company"],
    response_model=CompanySchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Suspends a company. A suspended company keeps read access but cannot create resources.
    Only platform admins can suspend. Suspending an already suspended company fails.
    """,
)
async def suspend_company(
    fParam: SuspendForm = Depends(),
    bearer=Depends(bearer_platform),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        validators.platformAdmin(identity)

        company = getCompany(session, fParam.id)
        oldValue = snapshot(company)
        subscription.suspend(company, fParam.reason)
        recordCompanyChange(
            session, identity, request_info, company, AuditAction.COMPANY_STATUS_CHANGE, oldValue
        )
        session.commit()
        session.refresh(company)

        companyData = jsonable_encoder(company)
        logEvent(identity, request_info, companyData)
        return companyData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_platform.delete(
    URL_COMPANY_SUSPENSION,
    tags=["Company"],
    response_model=CompanySchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.InvalidStateTransition("status"),
        ]
    ),
    description="""
    Reactivates a suspended company and clears the suspension details.
    Only platform admins can reactivate.
    """,
)
async def reactivate_company(
    fParam: ReactivateForm = Depends(),
    bearer=Depends(bearer_platform),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        validators.platformAdmin(identity)

        company = getCompany(session, fParam.id)
        oldValue = snapshot(company)
        subscription.reactivate(company)
        recordCompanyChange(
            session, identity, request_info, company, AuditAction.COMPANY_STATUS_CHANGE, oldValue
        )
        session.commit()
        session.refresh(company)

        companyData = jsonable_encoder(company)
        logEvent(identity, request_info, companyData)
        return companyData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_platform.patch(
    URL_COMPANY_PLAN,
    tags=["Company"],
    response_model=CompanySchema,
    responses=makeExceptionResponses(
        [exceptions.InvalidToken, exceptions.NoPermission, exceptions.InvalidIdentifier]
    ),
    description="""
    Moves a company to any plan, including lower ones.
    Only platform admins can change plans this way; owners can only upgrade.
    """,
)
async def change_company_plan(
    fParam: PlanForm = Depends(),
    bearer=Depends(bearer_platform),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        validators.platformAdmin(identity)

        company = getCompany(session, fParam.id)
        if company.plan != fParam.plan:
            oldValue = snapshot(company)
            subscription.changePlan(company, fParam.plan)
            recordCompanyChange(
                session, identity, request_info, company, AuditAction.COMPANY_PLAN_CHANGE, oldValue
            )
            session.commit()
            session.refresh(company)
            logEvent(identity, request_info, jsonable_encoder(company))
        return jsonable_encoder(company)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
