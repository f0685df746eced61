from datetime import datetime
from enum import IntEnum
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status, Form
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, EmailStr, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import Client, Trip, sessionMaker
from fleetcore.src import audit, exceptions, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.enums import (
    AuditAction,
    ClientType,
    EntityType,
    OrderIn,
    QuotaResource,
    TripStatus,
)
from fleetcore.src.subscription import enforceQuota
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import REGEX_GST_NUMBER
from fleetcore.src.schemas import Phone
from fleetcore.src.functions import (
    enumStr,
    makeExceptionResponses,
    paginationMeta,
    snapshot,
    updateIfChanged,
)
from fleetcore.src.urls import URL_CLIENT

route_fleet = APIRouter()


## Output Schema
class ClientSchema(BaseModel):
    id: int
    company_id: int
    name: str
    type: int
    contact_person: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    address: Optional[str]
    gst_number: Optional[str]
    notes: Optional[str]
    is_active: bool
    updated_on: Optional[datetime]
    created_on: datetime


class ClientListSchema(BaseModel):
    items: List[ClientSchema]
    pagination: dict


## Input Forms
class CreateForm(BaseModel):
    name: str = Field(Form(min_length=2, max_length=128))
    type: ClientType = Field(
        Form(description=enumStr(ClientType), default=ClientType.CORPORATE)
    )
    contact_person: str | None = Field(Form(max_length=100, default=None))
    phone: Phone | None = Field(Form(default=None))
    email: EmailStr | None = Field(Form(max_length=254, default=None))
    address: str | None = Field(Form(max_length=512, default=None))
    gst_number: str | None = Field(Form(min_length=15, max_length=15, default=None))
    notes: str | None = Field(Form(max_length=2048, default=None))


class UpdateForm(BaseModel):
    id: int = Field(Form())
    name: str | None = Field(Form(min_length=2, max_length=128, default=None))
    type: ClientType | None = Field(Form(description=enumStr(ClientType), default=None))
    contact_person: str | None = Field(Form(max_length=100, default=None))
    phone: Phone | None = Field(Form(default=None))
    email: EmailStr | None = Field(Form(max_length=254, default=None))
    address: str | None = Field(Form(max_length=512, default=None))
    gst_number: str | None = Field(Form(min_length=15, max_length=15, default=None))
    notes: str | None = Field(Form(max_length=2048, default=None))
    is_active: bool | None = Field(Form(default=None))


class DeleteForm(BaseModel):
    id: int = Field(Form())


## Query Parameters
class OrderBy(IntEnum):
    id = 1
    updated_on = 2
    created_on = 3
    name = 4


class QueryParams(BaseModel):
    name: str | None = Field(Query(default=None))
    type: ClientType | None = Field(Query(default=None, description=enumStr(ClientType)))
    gst_number: str | None = Field(Query(default=None))
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
def gstNumber(value: str | None) -> str | None:
    if value is None:
        return None
    return validators.pattern(value.strip().upper(), REGEX_GST_NUMBER, "gst_number")


def checkUnique(clients: TenantRepository, name, gst, clientId=None) -> None:
    others = [] if clientId is None else [Client.id != clientId]
    if name is not None and clients.exists(Client.name == name, *others):
        raise exceptions.UniqueViolation("Client name already exists")
    if gst is not None and clients.exists(Client.gst_number == gst, *others):
        raise exceptions.UniqueViolation("GST number already exists")


def updateClient(client: Client, fParam: UpdateForm):
    updateIfChanged(
        client,
        fParam,
        [
            Client.name.key,
            Client.type.key,
            Client.contact_person.key,
            Client.phone.key,
            Client.email.key,
            Client.address.key,
            Client.gst_number.key,
            Client.notes.key,
            Client.is_active.key,
        ],
    )


def searchClient(clients: TenantRepository, qParam: QueryParams) -> dict:
    query = clients.query()

    # Filters
    if qParam.name is not None:
        query = query.filter(Client.name.ilike(f"%{qParam.name}%"))
    if qParam.type is not None:
        query = query.filter(Client.type == qParam.type)
    if qParam.gst_number is not None:
        query = query.filter(Client.gst_number == qParam.gst_number.upper())
    if qParam.is_active is not None:
        query = query.filter(Client.is_active == qParam.is_active)
    # id based
    if qParam.id is not None:
        query = query.filter(Client.id == qParam.id)
    if qParam.id_list is not None:
        query = query.filter(Client.id.in_(qParam.id_list))
    # created_on based
    if qParam.created_on_ge is not None:
        query = query.filter(Client.created_on >= qParam.created_on_ge)
    if qParam.created_on_le is not None:
        query = query.filter(Client.created_on <= qParam.created_on_le)

    # Ordering
    orderingAttribute = getattr(Client, OrderBy(qParam.order_by).name)
    if qParam.order_in == OrderIn.ASC:
        query = query.order_by(orderingAttribute.asc())
    else:
        query = query.order_by(orderingAttribute.desc())

    items, total = clients.paginate(query, qParam.page, qParam.limit)
    return {"items": items, "pagination": paginationMeta(total, qParam.page, qParam.limit)}


## API endpoints [Fleet]
@route_fleet.post(
    URL_CLIENT,
    tags=["Client"],
    response_model=ClientSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.QuotaExceeded("client", 10),
            exceptions.UniqueViolation("Client name already exists"),
            exceptions.InvalidValue("gst_number"),
        ]
    ),
    description="""
    Creates a client of the caller's company. Requires `create_client`.
    Counts against the monthly clients quota. Names and GST numbers are unique inside the company.
    """,
)
async def create_client(
    fParam: CreateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "create_client")

        scope = TenantScope(identity.company_id)
        enforceQuota(session, scope, QuotaResource.CLIENT)
        clients = TenantRepository(session, scope, Client)
        gst = gstNumber(fParam.gst_number)
        checkUnique(clients, fParam.name, gst)
        client = clients.create(
            name=fParam.name,
            type=fParam.type,
            contact_person=fParam.contact_person,
            phone=fParam.phone,
            email=fParam.email,
            address=fParam.address,
            gst_number=gst,
            notes=fParam.notes,
        )
        audit.recordAction(
            session,
            identity,
            request_info,
            AuditAction.CLIENT_CREATION,
            EntityType.CLIENT,
            client.id,
            newValue=snapshot(client),
        )
        session.commit()
        session.refresh(client)

        clientData = jsonable_encoder(client)
        logEvent(identity, request_info, clientData)
        return clientData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.patch(
    URL_CLIENT,
    tags=["Client"],
    response_model=ClientSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.InvalidIdentifier,
            exceptions.UniqueViolation("Client name already exists"),
        ]
    ),
    description="""
    Updates a client of the caller's company. Requires `update_client`.
    """,
)
async def update_client(
    fParam: UpdateForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "update_client")

        clients = TenantRepository(session, TenantScope(identity.company_id), Client)
        client = clients.get(fParam.id)
        if client is None:
            raise exceptions.InvalidIdentifier()
        fParam.gst_number = gstNumber(fParam.gst_number)
        checkUnique(clients, fParam.name, fParam.gst_number, client.id)

        oldValue = snapshot(client)
        updateClient(client, fParam)
        haveUpdates = session.is_modified(client)
        if haveUpdates:
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.CLIENT_UPDATE,
                EntityType.CLIENT,
                client.id,
                oldValue=oldValue,
                newValue=snapshot(client),
            )
            session.commit()
            session.refresh(client)

        clientData = jsonable_encoder(client)
        if haveUpdates:
            logEvent(identity, request_info, clientData)
        return clientData
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_CLIENT,
    tags=["Client"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidToken,
            exceptions.NoPermission,
            exceptions.DataInUse(Client, "Client has trips in progress"),
        ]
    ),
    description="""
    Deletes a client of the caller's company. Requires `delete_client`.
    Clients of scheduled or running trips cannot be deleted; finished trips keep no reference.
    """,
)
async def delete_client(
    fParam: DeleteForm = Depends(),
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        role = getters.companyRole(identity)
        validators.companyPermission(role, "delete_client")

        scope = TenantScope(identity.company_id)
        clients = TenantRepository(session, scope, Client)
        client = clients.get(fParam.id)
        if client is not None:
            trips = TenantRepository(session, scope, Trip)
            openTrip = trips.exists(
                Trip.client_id == client.id,
                Trip.status.notin_([TripStatus.COMPLETED, TripStatus.CANCELLED]),
            )
            if openTrip:
                raise exceptions.DataInUse(Client, "Client has trips in progress")
            trips.conditionalUpdate([Trip.client_id == client.id], {"client_id": None})
            oldValue = snapshot(client)
            clients.delete(client)
            audit.recordAction(
                session,
                identity,
                request_info,
                AuditAction.CLIENT_DELETION,
                EntityType.CLIENT,
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
    URL_CLIENT,
    tags=["Client"],
    response_model=ClientListSchema,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Lists the clients of the caller's company, with filters and pagination.
    """,
)
async def fetch_clients(
    qParam: QueryParams = Depends(),
    bearer=Depends(bearer_fleet),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)

        clients = TenantRepository(session, TenantScope(identity.company_id), Client)
        return searchClient(clients, qParam)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
