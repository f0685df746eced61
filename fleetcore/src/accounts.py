"""
Company signup, login and refresh token rotation.

Each user holds a single refresh token slot (`refresh_token_id`). Login and
refresh overwrite it, logout clears it, and a refresh token whose `jti` is not
the one in the slot is rejected.
"""

from typing import Optional, Tuple
from sqlalchemy.orm.session import Session

from fleetcore.src import argon2, audit, exceptions, tokens
from fleetcore.src.db import Company, User
from fleetcore.src.enums import (
    AuditAction,
    CompanyRole,
    CompanyStatus,
    EntityType,
    PlanType,
    PlatformRole,
)
from fleetcore.src.functions import snapshot, utcNow
from fleetcore.src.schemas import RequestInfo
from fleetcore.src.tenancy import TenantRepository, TenantScope


def issueTokens(user: User) -> dict:
    """Issue an access/refresh pair and store the refresh `jti` in the user's slot."""
    refreshToken, tokenId = tokens.createRefreshToken(user)
    user.refresh_token_id = tokenId
    return {
        "access_token": tokens.createAccessToken(user),
        "refresh_token": refreshToken,
        "token_type": "bearer",
    }


def companyBySlug(session: Session, slug: str) -> Optional[Company]:
    return session.query(Company).filter(Company.slug == slug.strip().lower()).first()


def signup(
    session: Session,
    companyName: str,
    slug: str,
    ownerName: str,
    email: str,
    password: str,
    plan: PlanType = PlanType.FREE,
    billingEmail: Optional[str] = None,
    requestInfo: Optional[RequestInfo] = None,
    platformRole: PlatformRole = PlatformRole.USER,
) -> Tuple[Company, User, dict]:
    """
    Provision a company and its owner in the caller's transaction.

    The company is flushed first to get its id, the owner is created inside
    the new tenant, then the company is backfilled with the owner id. Nothing
    is visible to other sessions until the caller commits, and a failure at
    any step rolls back all of it.

    Raises:
        exceptions.UniqueViolation: If the slug is taken.
    """
    slug = slug.strip().lower()
    if companyBySlug(session, slug) is not None:
        raise exceptions.UniqueViolation("Company slug already exists")

    now = utcNow()
    company = Company(
        name=companyName,
        slug=slug,
        plan=plan,
        status=CompanyStatus.ACTIVE,
        billing_email=billingEmail or email,
        subscription_started_on=now,
        usage_reset_on=now,
        users_created_this_month=1,
    )
    session.add(company)
    session.flush()

    scope = TenantScope(company.id)
    user = TenantRepository(session, scope, User).create(
        name=ownerName,
        email=email.strip().lower(),
        password=argon2.makePassword(password),
        platform_role=platformRole,
        company_role=CompanyRole.OWNER,
        is_active=True,
    )
    company.owner_id = user.id
    credentials = issueTokens(user)
    user.last_login_on = now
    session.flush()

    audit.record(
        session,
        scope,
        AuditAction.USER_CREATION,
        EntityType.USER,
        user.id,
        userId=user.id,
        newValue=snapshot(user),
        details={"signup": True, "company": slug},
        requestInfo=requestInfo,
    )
    return company, user, credentials


def authenticate(session: Session, slug: str, email: str, password: str) -> User:
    """
    Resolve the tenant by slug and verify the user's password inside it.

    Unknown slug, unknown email and wrong password all raise the same
    InvalidCredentials.
    """
    company = companyBySlug(session, slug)
    if company is None:
        raise exceptions.InvalidCredentials()
    user = TenantRepository(session, TenantScope(company.id), User).findOne(
        User.email == email.strip().lower()
    )
    if not argon2.verifyAccount(user, password):
        raise exceptions.InvalidCredentials()
    if not user.is_active:
        raise exceptions.InactiveAccount()
    return user


def login(session: Session, slug: str, email: str, password: str) -> Tuple[User, dict]:
    user = authenticate(session, slug, email, password)
    credentials = issueTokens(user)
    user.last_login_on = utcNow()
    session.flush()
    return user, credentials


def _refreshOwner(session: Session, claims: dict) -> User:
    try:
        userId = int(claims["sub"])
        scope = TenantScope(claims.get("company_id"))
    except (KeyError, ValueError, exceptions.TenantContextRequired):
        raise exceptions.InvalidRefreshToken()
    user = TenantRepository(session, scope, User).get(userId)
    if user is None:
        raise exceptions.InvalidRefreshToken()
    return user


def refresh(session: Session, refreshToken: str) -> Tuple[User, dict]:
    """
    Rotate a refresh token.

    Raises:
        exceptions.RefreshTokenExpired: Token past its expiry.
        exceptions.InvalidRefreshToken: Malformed token or unknown user.
        exceptions.SessionExpired: The user is logged out (empty slot).
        exceptions.RefreshTokenRevoked: The token was already rotated away.
        exceptions.InactiveAccount: The account is disabled.
    """
    claims = tokens.decodeRefreshToken(refreshToken)
    user = _refreshOwner(session, claims)
    if user.refresh_token_id is None:
        raise exceptions.SessionExpired()
    if user.refresh_token_id != claims["jti"]:
        raise exceptions.RefreshTokenRevoked()
    if not user.is_active:
        raise exceptions.InactiveAccount()
    refreshToken, tokenId = tokens.createRefreshToken(user)
    # The slot moves only if it still holds the presented jti
    rotated = TenantRepository(session, TenantScope(user.company_id), User).conditionalUpdate(
        [User.id == user.id, User.refresh_token_id == claims["jti"]],
        {User.refresh_token_id.key: tokenId},
    )
    if rotated != 1:
        raise exceptions.RefreshTokenRevoked()
    credentials = {
        "access_token": tokens.createAccessToken(user),
        "refresh_token": refreshToken,
        "token_type": "bearer",
    }
    return user, credentials


def logout(session: Session, user: User) -> None:
    user.refresh_token_id = None
    session.flush()
