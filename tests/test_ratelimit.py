"""
Tests for multi-scope rate limiting
"""

import pytest

from fleetcore.src import exceptions, ratelimit
from fleetcore.src.ratelimit import RateLimiter


@pytest.fixture
def limiter():
    limiter = RateLimiter(
        "memory://",
        enabled=True,
        globalLimit="5/minute",
        authLimit="2/minute",
        companyLimit="100/hour",
        endpointLimit="3/minute",
        writeLimit="100/hour",
    )
    yield limiter
    limiter.reset()


class TestRateLimiter:
    """Scope selection and counting"""

    def test_auth_scope(self, limiter):
        """Test the third login attempt from one address is rejected"""
        limiter.check("POST", "/fleet/account/token", "10.0.0.1")
        limiter.check("POST", "/fleet/account/token", "10.0.0.1")
        with pytest.raises(exceptions.RateLimitExceeded) as error:
            limiter.check("POST", "/fleet/account/token", "10.0.0.1")
        assert error.value.status_code == 429
        assert error.value.extra == {"scope": "auth"}
        assert int(error.value.headers["Retry-After"]) >= 1

    def test_addresses_are_counted_apart(self, limiter):
        """Test one address exhausting its quota does not affect another"""
        for _ in range(2):
            limiter.check("POST", "/platform/signup", "10.0.0.1")
        limiter.check("POST", "/platform/signup", "10.0.0.2")

    def test_endpoint_scope_is_per_company(self, limiter):
        """Test the endpoint limit is kept per company"""
        for _ in range(3):
            limiter.check("GET", "/fleet/vehicle", "10.0.0.1", companyId=1)
        with pytest.raises(exceptions.RateLimitExceeded) as error:
            limiter.check("GET", "/fleet/vehicle", "10.0.0.2", companyId=1)
        assert error.value.extra["scope"] == "endpoint"
        limiter.check("GET", "/fleet/vehicle", "10.0.0.3", companyId=2)

    def test_scopes(self, limiter):
        """Test which scopes apply to a request"""
        assert limiter.scopes("GET", "/health", "10.0.0.1", 1) == []
        assert [scope for scope, _, _ in limiter.scopes("GET", "/fleet/trip", "10.0.0.1", None)] == [
            "global"
        ]
        assert [scope for scope, _, _ in limiter.scopes("PATCH", "/fleet/trip", "10.0.0.1", 4)] == [
            "global",
            "company",
            "endpoint",
            "write",
        ]

    def test_disabled(self):
        """Test a disabled limiter never rejects"""
        limiter = RateLimiter("memory://", enabled=False, authLimit="1/minute")
        for _ in range(5):
            limiter.check("POST", "/fleet/account/token", "10.0.0.1")


class TestRateLimitMiddleware:
    """Rejection through the HTTP stack"""

    def test_login_attempts_are_limited(self, client, owner, limiter, monkeypatch):
        """Test the middleware answers 429 with a retry hint"""
        monkeypatch.setattr(ratelimit, "rateLimiter", limiter)
        data = {"company": "acme", "email": "owner@acme.io", "password": "wrong-password"}
        assert client.post("/fleet/account/token", data=data).status_code == 401
        assert client.post("/fleet/account/token", data=data).status_code == 401

        response = client.post("/fleet/account/token", data=data)
        assert response.status_code == 429
        assert response.json()["scope"] == "auth"
        assert response.json()["success"] is False
        assert "Retry-After" in response.headers

    def test_health_is_not_limited(self, client, limiter, monkeypatch):
        """Test the health check bypasses every limit"""
        monkeypatch.setattr(ratelimit, "rateLimiter", limiter)
        for _ in range(10):
            assert client.get("/health").status_code == 200
