"""
Multi-scope request rate limiting.

Each scope keeps its own fixed-window counter and is evaluated on its own,
so any one of them can reject a request. Counters live in the storage named
by RATE_LIMIT_STORAGE_URI (Redis in production, `memory://` for tests).

Scopes:
    global   - client IP, every request except the health check
    auth     - client IP, login and signup endpoints
    company  - company of the bearer token
    endpoint - company of the bearer token + method + path
    write    - company of the bearer token, mutating methods only
"""

from time import time
from typing import List, Optional, Tuple
from fastapi import Request
from fastapi.responses import JSONResponse
from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from fleetcore.src import exceptions, getters, tokens, urls
from fleetcore.src.constants import (
    RATE_LIMIT_AUTH,
    RATE_LIMIT_COMPANY,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_ENDPOINT,
    RATE_LIMIT_GLOBAL,
    RATE_LIMIT_STORAGE_URI,
    RATE_LIMIT_WRITE,
)

WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")
SKIPPED_PATHS = ("/health",)
AUTH_PATHS = (
    urls.MOUNT_FLEET + urls.URL_TOKEN,
    urls.MOUNT_FLEET + urls.URL_TOKEN_REFRESH,
    urls.MOUNT_PLATFORM + urls.URL_SIGNUP,
)


def bearerToken(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        return None
    return credentials.strip()


class RateLimiter:
    """
    Evaluates every applicable scope of a request.

    Args:
        storageUri (str): `limits` storage URI.
        enabled (bool): When False, `check` never rejects.
    """

    def __init__(
        self,
        storageUri: str = RATE_LIMIT_STORAGE_URI,
        enabled: bool = RATE_LIMIT_ENABLED,
        globalLimit: str = RATE_LIMIT_GLOBAL,
        authLimit: str = RATE_LIMIT_AUTH,
        companyLimit: str = RATE_LIMIT_COMPANY,
        endpointLimit: str = RATE_LIMIT_ENDPOINT,
        writeLimit: str = RATE_LIMIT_WRITE,
    ):
        self.enabled = enabled
        self.storage: Storage = storage_from_string(storageUri)
        self.limiter = FixedWindowRateLimiter(self.storage)
        self.limits = {
            "global": parse(globalLimit),
            "auth": parse(authLimit),
            "company": parse(companyLimit),
            "endpoint": parse(endpointLimit),
            "write": parse(writeLimit),
        }

    def scopes(
        self, method: str, path: str, clientIP: str, companyId: Optional[int]
    ) -> List[Tuple[str, RateLimitItem, Tuple[str, ...]]]:
        """The (scope, limit, key) triples that apply to one request."""
        if path in SKIPPED_PATHS:
            return []
        applicable = [("global", self.limits["global"], (clientIP,))]
        if method == "POST" and path in AUTH_PATHS:
            applicable.append(("auth", self.limits["auth"], (clientIP,)))
        if companyId is not None:
            company = str(companyId)
            applicable.append(("company", self.limits["company"], (company,)))
            applicable.append(
                ("endpoint", self.limits["endpoint"], (company, method, path))
            )
            if method in WRITE_METHODS:
                applicable.append(("write", self.limits["write"], (company,)))
        return applicable

    def check(
        self, method: str, path: str, clientIP: str, companyId: Optional[int] = None
    ) -> None:
        """
        Count one request against every applicable scope.

        Raises:
            exceptions.RateLimitExceeded: Naming the first exhausted scope. Every
                applicable scope is counted even when an earlier one rejects.
        """
        if not self.enabled:
            return
        rejected = None
        for scope, limit, key in self.scopes(method, path, clientIP, companyId):
            if not self.limiter.hit(limit, scope, *key) and rejected is None:
                rejected = (scope, limit, key)
        if rejected is not None:
            scope, limit, key = rejected
            raise exceptions.RateLimitExceeded(scope, self.retryAfter(limit, scope, key))

    def retryAfter(self, limit: RateLimitItem, scope: str, key: Tuple[str, ...]) -> int:
        resetTime, _ = self.limiter.get_window_stats(limit, scope, *key)
        return max(1, int(resetTime - time()))

    def reset(self) -> None:
        self.storage.reset()


rateLimiter = RateLimiter()


async def rateLimitMiddleware(request: Request, call_next):
    """HTTP middleware applying `rateLimiter` before the request is routed."""
    try:
        rateLimiter.check(
            request.method,
            request.url.path,
            getters.clientIP(request),
            tokens.peekCompanyId(bearerToken(request)),
        )
    except exceptions.RateLimitExceeded as e:
        return JSONResponse(
            status_code=e.status_code,
            content=exceptions.errorBody(e.detail, e.extra),
            headers=e.headers,
        )
    return await call_next(request)
