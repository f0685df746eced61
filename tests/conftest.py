"""
Test configuration and fixtures for the Fleetcore API server
"""

import os

import pytest

# Set test environment before importing the application
os.environ.update({
    "DATABASE_URL": "sqlite://",
    "OPENOBSERVE_ENABLED": "false",
    "RATE_LIMIT_ENABLED": "false",
    "RATE_LIMIT_STORAGE_URI": "memory://",
    "EMAIL_PROVIDER": "mock",
    "JWT_ACCESS_SECRET": "test_access_secret_for_testing_only",
    "JWT_REFRESH_SECRET": "test_refresh_secret_for_testing_only",
    "PASSWORD_TIME_COST": "1",
    "PASSWORD_MEMORY_COST": "1024",
    "PASSWORD_PARALLELISM": "1",
})

import fakeredis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fleetcore.main import app
from fleetcore.src import accounts
from fleetcore.src.db import ORMbase, sessionMaker
from fleetcore.src.enums import PlanType, PlatformRole
from fleetcore.src.realtime import broadcaster

PASSWORD = "password123"
PHONES = ("+919876543210", "+919876543211", "+919876543212")

testEngine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
sessionMaker.configure(bind=testEngine)


@pytest.fixture(scope="function", autouse=True)
def database():
    """Fresh schema for every test"""
    ORMbase.metadata.create_all(testEngine)
    yield
    ORMbase.metadata.drop_all(testEngine)
    broadcaster.rooms.clear()


@pytest.fixture(scope="function")
def session():
    """Session on the test database, for direct inspection"""
    session = sessionMaker()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def client():
    """Create test client"""
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def redis():
    """In-memory Redis with Lua support, for locks and job queues"""
    return fakeredis.FakeRedis(decode_responses=True)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def signup(client):
    """Sign a company up and return the response with ready-made auth headers"""

    def _signup(slug: str, email: str | None = None, password: str = PASSWORD) -> dict:
        response = client.post(
            "/platform/signup",
            data={
                "company_name": f"{slug.title()} Logistics",
                "slug": slug,
                "name": f"{slug.title()} Owner",
                "email": email or f"owner@{slug}.io",
                "password": password,
            },
        )
        assert response.status_code == 201, response.text
        data = response.json()
        data["headers"] = bearer(data["access_token"])
        return data

    return _signup


@pytest.fixture(scope="function")
def owner(signup):
    """Owner of the company "acme", on the free plan"""
    return signup("acme")


@pytest.fixture(scope="function")
def rival(signup):
    """Owner of a second, unrelated company"""
    return signup("globex")


@pytest.fixture(scope="function")
def platformAdmin(client):
    """Platform admin of the platform company, logged in"""
    session = sessionMaker()
    try:
        accounts.signup(
            session,
            companyName="Fleetcore platform",
            slug="platform",
            ownerName="Platform admin",
            email="admin@fleetcore.io",
            password=PASSWORD,
            plan=PlanType.ENTERPRISE,
            platformRole=PlatformRole.PLATFORM_ADMIN,
        )
        session.commit()
    finally:
        session.close()
    response = client.post(
        "/fleet/account/token",
        data={"company": "platform", "email": "admin@fleetcore.io", "password": PASSWORD},
    )
    assert response.status_code == 201, response.text
    return bearer(response.json()["access_token"])


@pytest.fixture(scope="function")
def login(client):
    """Log a user in and return the token response"""

    def _login(company: str, email: str, password: str = PASSWORD):
        return client.post(
            "/fleet/account/token",
            data={"company": company, "email": email, "password": password},
        )

    return _login


@pytest.fixture(scope="function")
def makeVehicle(client):
    def _makeVehicle(headers: dict, number: str = "KL-01-1001", **extra) -> dict:
        response = client.post(
            "/fleet/vehicle",
            headers=headers,
            data={"vehicle_number": number, "capacity_kg": 1000, **extra},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _makeVehicle


@pytest.fixture(scope="function")
def makeDriver(client):
    def _makeDriver(headers: dict, index: int = 0, **extra) -> dict:
        response = client.post(
            "/fleet/driver",
            headers=headers,
            data={
                "name": f"Driver {index}",
                "email": f"driver{index}@fleet.io",
                "password": PASSWORD,
                "license_number": f"DL-{index:04d}",
                "phone": PHONES[index % len(PHONES)],
                **extra,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _makeDriver


@pytest.fixture(scope="function")
def makeRoute(client):
    def _makeRoute(headers: dict, source: str = "Kochi", destination: str = "Chennai", **extra) -> dict:
        response = client.post(
            "/fleet/route",
            headers=headers,
            json={
                "source": {"name": source, "lat": 9.93, "lng": 76.26},
                "destination": {"name": destination, "lat": 13.08, "lng": 80.27},
                "distance_km": 690,
                "estimated_duration_hr": 12,
                **extra,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _makeRoute


@pytest.fixture(scope="function")
def createTrip(client):
    """Post a trip and return the raw response"""

    def _createTrip(headers: dict, code: str, routeId: int, vehicleIds: list, driverIds: list, **extra):
        return client.post(
            "/fleet/trip",
            headers=headers,
            json={
                "trip_code": code,
                "route_id": routeId,
                "vehicle_ids": vehicleIds,
                "driver_ids": driverIds,
                **extra,
            },
        )

    return _createTrip


@pytest.fixture(scope="function")
def fleet(owner, makeVehicle, makeDriver, makeRoute):
    """A company with two vehicles, two drivers and one route"""
    headers = owner["headers"]
    return {
        "headers": headers,
        "vehicles": [makeVehicle(headers, "KL-01-1001"), makeVehicle(headers, "KL-01-1002")],
        "drivers": [makeDriver(headers, 0), makeDriver(headers, 1)],
        "route": makeRoute(headers),
    }
