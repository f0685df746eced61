from fastapi import Request
from fastapi.requests import HTTPConnection
from sqlalchemy.orm.session import Session

from fleetcore.src import schemas
from fleetcore.src.db import Company
from fleetcore.src.roles import Role, roleOf


def clientIP(connection: HTTPConnection) -> str:
    """
    Client address of a request or websocket, honouring proxy headers.

    The first hop of `X-Forwarded-For` wins, then `X-Real-IP`, then the peer.
    """
    forwardedFor = connection.headers.get("X-Forwarded-For")
    if forwardedFor:
        return forwardedFor.split(",")[0].strip()
    realIP = connection.headers.get("X-Real-IP")
    if realIP:
        return realIP
    if connection.client is not None:
        return connection.client.host
    return "unknown"


def requestInfo(request: Request) -> schemas.RequestInfo:
    """
    Extract metadata about the incoming request.

    Args:
        request (Request): FastAPI request object.

    Returns:
        schemas.RequestInfo: Pydantic model containing:
            - method (str): HTTP method (GET, POST, etc.).
            - path (str): Path portion of the request URL.
            - app_id (int): Application ID from app state.
            - ip_address (str): Client address.
            - user_agent (str | None): Client user agent.
    """
    return schemas.RequestInfo(
        method=request.method,
        path=request.url.path,
        app_id=request.scope["app"].state.id,
        ip_address=clientIP(request),
        user_agent=request.headers.get("User-Agent"),
    )


def companyRole(identity: schemas.Identity) -> Role | None:
    """Fetch the role granted to the caller inside their company."""
    return roleOf(identity.company_role)


def company(identity: schemas.Identity, session: Session) -> Company | None:
    """Fetch the caller's company."""
    return session.query(Company).filter(Company.id == identity.company_id).first()
