from fastapi import APIRouter, Depends, Response, status, Form
from pydantic import BaseModel, Field

from fleetcore.api.bearer import bearer_fleet
from fleetcore.src.db import User, sessionMaker
from fleetcore.src import accounts, exceptions, validators, getters
from fleetcore.src.loggers import logEvent
from fleetcore.src.schemas import Identity
from fleetcore.src.tenancy import TenantRepository, TenantScope
from fleetcore.src.constants import ACCESS_TOKEN_VALIDITY
from fleetcore.src.functions import makeExceptionResponses
from fleetcore.src.urls import URL_TOKEN, URL_TOKEN_REFRESH

route_fleet = APIRouter()


## Output Schema
class TokenSchema(BaseModel):
    user_id: int
    company_id: int
    company_role: int
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = ACCESS_TOKEN_VALIDITY


## Input Forms
class CreateForm(BaseModel):
    company: str = Field(Form(max_length=64, description="Company slug"))
    email: str = Field(Form(max_length=254))
    password: str = Field(Form(max_length=64))


class RefreshForm(BaseModel):
    refresh_token: str = Field(Form(max_length=2048))


def tokenData(user: User, credentials: dict) -> dict:
    return {
        "user_id": user.id,
        "company_id": user.company_id,
        "company_role": user.company_role,
        **credentials,
    }


## API endpoints [Fleet]
@route_fleet.post(
    URL_TOKEN,
    tags=["Token"],
    response_model=TokenSchema,
    status_code=status.HTTP_201_CREATED,
    responses=makeExceptionResponses(
        [exceptions.InvalidCredentials, exceptions.InactiveAccount]
    ),
    description="""
    Logs a user in. The company is resolved by its slug and the email is looked up inside it.
    Unknown companies, unknown emails and wrong passwords all fail with the same error.
    Issues an access token and a refresh token; any earlier refresh token stops working.
    """,
)
async def create_token(
    fParam: CreateForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        user, credentials = accounts.login(
            session, fParam.company, fParam.email, fParam.password
        )
        session.commit()

        identity = Identity(
            user_id=user.id,
            company_id=user.company_id,
            company_role=user.company_role,
            platform_role=user.platform_role,
        )
        logEvent(identity, request_info, {"event": "login"})
        return tokenData(user, credentials)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.post(
    URL_TOKEN_REFRESH,
    tags=["Token"],
    response_model=TokenSchema,
    responses=makeExceptionResponses(
        [
            exceptions.InvalidRefreshToken,
            exceptions.RefreshTokenExpired,
            exceptions.RefreshTokenRevoked,
            exceptions.SessionExpired,
        ]
    ),
    description="""
    Exchanges a refresh token for a new access and refresh token pair.
    Each refresh token works once: reusing a rotated token fails as revoked.
    """,
)
async def refresh_token(
    fParam: RefreshForm = Depends(),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        user, credentials = accounts.refresh(session, fParam.refresh_token)
        session.commit()
        return tokenData(user, credentials)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()


@route_fleet.delete(
    URL_TOKEN,
    tags=["Token"],
    status_code=status.HTTP_204_NO_CONTENT,
    responses=makeExceptionResponses([exceptions.InvalidToken]),
    description="""
    Logs the caller out by clearing their stored refresh token.
    The current access token stays valid until it expires.
    """,
)
async def delete_token(
    bearer=Depends(bearer_fleet),
    request_info=Depends(getters.requestInfo),
):
    try:
        session = sessionMaker()
        identity = validators.accessToken(bearer.credentials, session)
        user = TenantRepository(session, TenantScope(identity.company_id), User).get(
            identity.user_id
        )
        accounts.logout(session, user)
        session.commit()
        logEvent(identity, request_info, {"event": "logout"})
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except Exception as e:
        exceptions.handle(e)
    finally:
        session.close()
