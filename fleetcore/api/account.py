from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, EmailStr, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import DriverProfile, User, sessionMaker
from fleetcore.src import argon2, audit, exceptions, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    CompanyRole,
    DriverStatus,
    EntityType,
    OrderIn,
    QuotaResource,
)
from fleetcore.src.roles import ROLES
from fleetcore.src.subscription import enforceQuota, recordUsage
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import REGEX_PASSWORD
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
    updateIfChanged,
)
from fleetcore.src.urls import URL_ACCOUNT, URL_ROLE

route_fleet = APIRouter()

# Roles that can be granted through account management
ASSIGNABLE_ROLES = (CompanyRole.ADMIN, CompanyRole.MANAGER, CompanyRole.USER)


## Output Schema
class AccountSchema(BaseModel):
    id: int
    company_id: int
    name: str
    email: str
    company_role: int
    platform_role: int
    is_active: bool
    last_login_on: Optional[datetime]
    updated_on: Optional[datetime]
    created_on: datetime


class AccountListSchema(BaseModel):
    items: List[AccountSchema]
    pagination: dict


class RoleSchema(BaseModel):
    id: int
    name: str
    permissions: List[str]


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=2, max_length=100))
    email: EmailStr = Field(Form(max_length=254))
    password: str = Field(Form(min_length=8, max_length=64, pattern=REGEX_PASSWORD))
    company_role: CompanyRole = Field(
        Form(description=enumStr(CompanyRole), default=CompanyRole.USER)
    )


class UpdateForm(BaseModel):
    id: int | None = Field(Form(default=None))
    name: str | None = Field(Form(min_length=2, max_length=100, default=None))
    password: str | None = Field(
        Form(min_length=8, max_length=64, pattern=REGEX_PASSWORD, default=None)
    )
    company_role: CompanyRole | None = Field(
        Form(description=enumStr(CompanyRole), default=None)
    )
    is_active: bool | None = Field(Form(default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    email: str | None = Field(Query(default=None))
    company_role: CompanyRole | None = Field(
        Query(default=None, description=enumStr(CompanyRole))
    )
    is_active: bool | None = Field(Query(default=None))
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
def searchAccount(users: TenantRepository, qParam: QueryParams) -> dict:
    query = users.query()

    # Filters
    if qParam.name is not None:
        query = query.filter(User.name.ilike(f"%{qParam.name}%"))
    if qParam.email is not None:
        query = query.filter(User.email.ilike(f"%{qParam.email}%"))
    if qParam.company_role is not None:
        query = query.filter(User.company_role == qParam.company_role)
    if qParam.is_active is not None:
        query = query.filter(User.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(User.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(User.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(User.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(User.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(User, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = users.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.post(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.QuotaExceeded("user", 1),
            exceptions.CompanySuspended,
            exceptions.UniqueViolation("Email already exists in this company"),
        ]
    ),
    description="""
    Creates a user in the caller's company.
    Only users with the `manage_account` permission can create accounts.
    Owners cannot be created and driver accounts are created through the driver endpoint.
    Counts against the users quota of the company's plan.
    """,
)
async def create_account(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_account")
        if fParam.company_role not in ASSIGNABLE_ROLES:
            raise exceptions.NoPermission()

        scope = TenantScope(identity.company_id)
        company = enforceQuota(session, scope, QuotaResource.USER)
        users = TenantRepository(session, scope, User)
        email = fParam.email.lower()
        if users.exists(User.email == email):
            raise exceptions.UniqueViolation("Email already exists in this company")
        user = users.create(
            name=fParam.name,
            email=email,
            password=argon2.makePassword(fParam.password),
            company_role=fParam.company_role,
        )
        recordUsage(company, QuotaResource.USER)
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.USER_CREATION,
            EntityType.USER,
            user.id,
            newValue=snapshot(user),
        )
        session.commit()
        session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password", "refresh_token_id"})
        logEvent(identity, request_info, userData)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.ProtectedAccount,
        ]
    ),
    description="""
    Updates an account. Without an id the caller's own account is updated.
    Anyone can change their own name and password.
    Changing another account, a role or the active flag requires `manage_account`.
    The owner cannot be demoted or deactivated.
    """,
)
async def update_account(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        users = TenantRepository(session, TenantScope(identity.company_id), User)

        targetId = fParam.id if fParam.id is not None else identity.user_id
        if (
            targetId != identity.user_id
            or fParam.company_role is not None
            or fParam.is_active is not None
        ):
            validators.companyPermission(role, "manage_account")

        user = users.get(targetId)
        if user is None:
            raise exceptions.InvalidIdentifier()
        if user.company_role == CompanyRole.OWNER and (
            (fParam.company_role is not None and fParam.company_role != CompanyRole.OWNER)
            or fParam.is_active is False
        ):
            raise exceptions.ProtectedAccount()
        if fParam.company_role is not None and fParam.company_role != user.company_role:
            if fParam.company_role not in ASSIGNABLE_ROLES or user.company_role == CompanyRole.DRIVER:
                raise exceptions.NoPermission()

        oldValue = snapshot(user)
        updateIfChanged(
            user, fParam, [User.name.key, User.company_role.key, User.is_active.key]
        )
        if fParam.password is not None:
            user.password = argon2.makePassword(fParam.password)
            user.refresh_token_id = None
        haveUpdates = session.is_modified(user)
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.USER_UPDATE,
                EntityType.USER,
                user.id,
                oldValue=oldValue,
                newValue=snapshot(user),
            )
            session.commit()
            session.refresh(user)

        userData = jsonable_encoder(user, exclude={"password", "refresh_token_id"})
        if haveUpdates:
            logEvent(identity, request_info, userData)
        return userData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_ACCOUNT,
    tags=["Account"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.ProtectedAccount,
            exceptions.DataInUse(DriverProfile, "Driver is on a trip"),
        ]
    ),
    description="""
    Deletes an account of the caller's company together with its driver profile, if any.
    Requires `manage_account`. The owner cannot be deleted, nor a driver who is on a trip.
    Audit entries of the account are kept.
    """,
)
async def delete_account(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "manage_account")

        scope = TenantScope(identity.company_id)
        users = TenantRepository(session, scope, User)
        user = users.get(fParam.id)
        if user is not None:
            if user.company_role == CompanyRole.OWNER:
                raise exceptions.ProtectedAccount()
            drivers = TenantRepository(session, scope, DriverProfile)
            profile = drivers.findOne(DriverProfile.user_id == user.id)
            if profile is not None:
                if profile.status == DriverStatus.ON_TRIP:
                    raise exceptions.DataInUse(DriverProfile, "Driver is on a trip")
                drivers.delete(profile)
            oldValue = snapshot(user)
            users.delete(user)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.USER_DELETION,
                EntityType.USER,
                fParam.id,
                oldValue=oldValue,
            )
            session.commit()
            logEvent(identity, request_info, oldValue)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_ACCOUNT,
    tags=["Account"],
    response_model=AccountListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the accounts of the caller's company, with filters and pagination.
    """,
)
async def fetch_accounts(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        users = TenantRepository(session, TenantScope(identity.company_id), User)
        return searchAccount(users, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.get(
    URL_ROLE,
    tags=["Role"],
    response_model=List[RoleSchema],
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the company roles and the permissions each one grants.
    """,
)
async def fetch_roles(bearer=Depends(bearer_fleet)):
    try:
        session = sessionMaker()
        validators.accessToken(bearer.credentials, session)

        return [
            {
                "id": companyRole,
                "name": role.name,
                "permissions": [
                    field
                    for field, granted in role.model_dump(exclude={"name"}).items()
                    if granted
                ],
            }
            for companyRole, role in ROLES.items()
        ]
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
