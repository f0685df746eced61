"""
Validation and permission checks for the Fleetcore API.

This module centralizes guard logic such as:
- Access token validation
- Role-based and platform permission checks
- Company status and plan feature checks
- State transition enforcement
- Coordinate validation

All functions raise appropriate exceptions from `fleetcore.src.exceptions`
when validation fails, ensuring consistent error handling.
"""

from re import fullmatch
from typing import Any
from sqlalchemy.orm.session import Session

from fleetcore.src import exceptions, plans, tokens
from fleetcore.src.db import Company, User
from fleetcore.src.enums import CompanyStatus, Feature, PlatformRole
from fleetcore.src.functions import isValidTransition
from fleetcore.src.roles import Role
from fleetcore.src.schemas import Identity
from fleetcore.src.tenancy import TenantRepository, TenantScope


# ---------------------------------------------------------------------------
# Token validation
# ---------------------------------------------------------------------------
def accessToken(access_token: str, session: Session) -> Identity:
    """
    Validate a bearer access token and return the caller identity.

    The account must still exist in the token's company and be active.

    Raises:
        exceptions.InvalidToken: If the token is malformed, expired or orphaned.
        exceptions.InactiveAccount: If the account has been disabled.
    """
    claims = tokens.decodeAccessToken(access_token)
    try:
        userId = int(claims["sub"])
        scope = TenantScope(claims.get("company_id"))
    except (KeyError, ValueError, exceptions.TenantContextRequired):
        raise exceptions.InvalidToken()

    user = TenantRepository(session, scope, User).get(userId)
    if user is None:
        raise exceptions.InvalidToken()
    if not user.is_active:
        raise exceptions.InactiveAccount()

    return Identity(
        user_id=user.id,
        company_id=user.company_id,
        company_role=user.company_role,
        platform_role=user.platform_role,
    )


# ---------------------------------------------------------------------------
# Permission checks
# ---------------------------------------------------------------------------
def companyPermission(role: Role | None, permission: str) -> bool:
    """
    Validate that a company role grants a permission.

    Args:
        role (Role | None): Role of the caller, from `getters.companyRole`.
        permission (str): Name of the permission field, e.g. "create_vehicle".

    Raises:
        exceptions.NoPermission: If the role does not have the permission.
    """
    if role and getattr(role, permission, False):
        return True
    raise exceptions.NoPermission()


def platformAdmin(identity: Identity) -> bool:
    if identity.platform_role == PlatformRole.PLATFORM_ADMIN:
        return True
    raise exceptions.NoPermission()


# ---------------------------------------------------------------------------
# Company checks
# ---------------------------------------------------------------------------
def companyStatus(company: Company) -> bool:
    """
    Validate that the company may create resources.

    Raises:
        exceptions.CompanySuspended: If the subscription is suspended.
        exceptions.CompanyCancelled: If the subscription is cancelled.
    """
    if company.status == CompanyStatus.SUSPENDED:
        raise exceptions.CompanySuspended()
    if company.status == CompanyStatus.CANCELLED:
        raise exceptions.CompanyCancelled()
    return True


def planFeature(company: Company, feature: Feature) -> bool:
    if not plans.hasFeature(company.plan, feature):
        raise exceptions.FeatureNotAvailable(feature.name.lower())
    return True


# ---------------------------------------------------------------------------
# Other validations
# ---------------------------------------------------------------------------
def stateTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any, state: str
) -> bool:
    """
    Validate whether a state transition is allowed.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.
        state (str): Name of the state column, used in the error message.

    Raises:
        exceptions.InvalidStateTransition: If the transition is not permitted.
    """
    if not isValidTransition(transitions, old_state, new_state):
        raise exceptions.InvalidStateTransition(state)
    return True


def location(latitude: float, longitude: float) -> bool:
    if latitude is None or longitude is None:
        raise exceptions.InvalidLocation()
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise exceptions.InvalidLocation()
    return True


def pattern(value: str, regex: str, field: str) -> str:
    """Validate a normalized value against a regex and return it."""
    if fullmatch(regex, value) is None:
        raise exceptions.InvalidValue(field)
    return value
