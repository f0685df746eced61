"""
Application configuration and constants for the Fleetcore API Server.

This module centralizes environment-based configuration, token lifetimes,
rate limits, job queue policy, regular expressions and other constants.

Configuration values can be overridden via environment variables.
"""

from os import environ


def _flag(name: str, default: str) -> bool:
    return environ.get(name, default).lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "Fleetcore API Server"
API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")
DATABASE_URL = environ.get(
    "DATABASE_URL",
    f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}"
    f"@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}",
)


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_ENABLED = _flag("OPENOBSERVE_ENABLED", "true")
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@fleetcore.io")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "fleetcore")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "fleetcore-api-server")
OPENOBSERVE_TIMEOUT = 5  # seconds


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = 10  # Lock timeout (in seconds)
MUTEX_LOCK_MAX_WAIT_TIME = 60  # Max blocking wait time (in seconds)


# ---------------------------------------------------------------------------
# JWT configuration
# ---------------------------------------------------------------------------
JWT_ACCESS_SECRET = environ.get("JWT_ACCESS_SECRET", "change-me-access-secret")
JWT_REFRESH_SECRET = environ.get("JWT_REFRESH_SECRET", "change-me-refresh-secret")
JWT_ALGORITHM = environ.get("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_VALIDITY = int(environ.get("ACCESS_TOKEN_VALIDITY", 15 * 60))  # seconds
REFRESH_TOKEN_VALIDITY = int(
    environ.get("REFRESH_TOKEN_VALIDITY", 7 * 24 * 60 * 60)
)  # seconds


# ---------------------------------------------------------------------------
# Password hashing (Argon2id cost)
# ---------------------------------------------------------------------------
PASSWORD_TIME_COST = int(environ.get("PASSWORD_TIME_COST", 3))
PASSWORD_MEMORY_COST = int(environ.get("PASSWORD_MEMORY_COST", 65536))  # KiB
PASSWORD_PARALLELISM = int(environ.get("PASSWORD_PARALLELISM", 4))


# ---------------------------------------------------------------------------
# Rate limits (limits library notation)
# ---------------------------------------------------------------------------
RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_STORAGE_URI = environ.get(
    "RATE_LIMIT_STORAGE_URI",
    f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}",
)
RATE_LIMIT_GLOBAL = environ.get("RATE_LIMIT_GLOBAL", "1000/minute")
RATE_LIMIT_AUTH = environ.get("RATE_LIMIT_AUTH", "10/15minutes")
RATE_LIMIT_COMPANY = environ.get("RATE_LIMIT_COMPANY", "10000/hour")
RATE_LIMIT_ENDPOINT = environ.get("RATE_LIMIT_ENDPOINT", "100/5minutes")
RATE_LIMIT_WRITE = environ.get("RATE_LIMIT_WRITE", "500/hour")


# ---------------------------------------------------------------------------
# Job queue policy
# ---------------------------------------------------------------------------
JOB_ATTEMPTS = int(environ.get("JOB_ATTEMPTS", 3))
JOB_BACKOFF_DELAY = int(environ.get("JOB_BACKOFF_DELAY", 2000))  # milliseconds
JOB_REMOVE_ON_COMPLETE = _flag("JOB_REMOVE_ON_COMPLETE", "true")
JOB_REMOVE_ON_FAIL = _flag("JOB_REMOVE_ON_FAIL", "false")
WORKER_POLL_INTERVAL = 1  # seconds
MAINTENANCE_REMINDER_DAYS = int(environ.get("MAINTENANCE_REMINDER_DAYS", 7))
REMINDER_TRIGGER_TIME = "09:00"
AGGREGATION_TRIGGER_TIME = "00:00"


# ---------------------------------------------------------------------------
# Email configuration
# ---------------------------------------------------------------------------
EMAIL_PROVIDER = environ.get("EMAIL_PROVIDER", "mock")
EMAIL_SENDER = environ.get("EMAIL_SENDER", "no-reply@fleetcore.io")
SMTP_HOST = environ.get("SMTP_HOST", "localhost")
SMTP_PORT = int(environ.get("SMTP_PORT", 587))
SMTP_USERNAME = environ.get("SMTP_USERNAME", "")
SMTP_PASSWORD = environ.get("SMTP_PASSWORD", "")


# ---------------------------------------------------------------------------
# Platform bootstrap (setup.py)
# ---------------------------------------------------------------------------
PLATFORM_COMPANY_SLUG = environ.get("PLATFORM_COMPANY_SLUG", "platform")
PLATFORM_ADMIN_EMAIL = environ.get("PLATFORM_ADMIN_EMAIL", "admin@fleetcore.io")
PLATFORM_ADMIN_PASSWORD = environ.get("PLATFORM_ADMIN_PASSWORD", "password")


# ---------------------------------------------------------------------------
# Resource limits
# ---------------------------------------------------------------------------
MAX_PAGE_SIZE = 100
MAX_BULK_DELETE = 100
USAGE_ESTIMATE_FACTOR = 1.2


# ---------------------------------------------------------------------------
# Regex constants (input validation)
# ---------------------------------------------------------------------------
REGEX_SLUG = r"^[a-z0-9-]+$"
REGEX_VEHICLE_NUMBER = r"^[A-Z0-9-]+$"
REGEX_TRIP_CODE = r"^[A-Z0-9-]+$"
REGEX_GST_NUMBER = r"^[0-9A-Z]{15}$"
REGEX_PASSWORD = r"^[a-zA-Z0-9-+,.@_$%&*#!^=/?]*$"
