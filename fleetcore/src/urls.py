"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application.
Paths are relative to the mounted application (`/platform` or `/fleet`).
"""

# -------------------------------
# Mount points
# -------------------------------
MOUNT_PLATFORM = "/platform"
MOUNT_FLEET = "/fleet"

# -------------------------------
# Platform
# -------------------------------
URL_SIGNUP = "/signup"
URL_PLAN = "/plan"
URL_COMPANY = "/company"
URL_COMPANY_SUSPENSION = "/company/suspension"
URL_COMPANY_PLAN = "/company/plan"

# -------------------------------
# Authentication & Accounts
# -------------------------------
URL_TOKEN = "/account/token"
URL_TOKEN_REFRESH = "/account/token/refresh"
URL_ACCOUNT = "/account"
URL_ROLE = "/role"

# -------------------------------
# Fleet resources
# -------------------------------
URL_VEHICLE = "/vehicle"
URL_DRIVER = "/driver"
URL_DRIVER_LOCATION = "/driver/location"
URL_ROUTE = "/route"
URL_CLIENT = "/client"
URL_MAINTENANCE = "/maintenance"

# -------------------------------
# Trips
# -------------------------------
URL_TRIP = "/trip"
URL_TRIP_DETAILS = "/trip/details"
URL_TRIP_PROGRESS = "/trip/progress"
URL_TRIP_COMPLETE = "/trip/complete"
URL_TRIP_CANCEL = "/trip/cancel"
URL_TRIP_DEPENDENCY = "/trip/dependency"
URL_TRIP_BULK_DELETE = "/trip/bulk"

# -------------------------------
# Reporting
# -------------------------------
URL_AUDIT = "/audit"
URL_AUDIT_ENTITY = "/audit/entity"
URL_ANALYTICS = "/analytics"

# -------------------------------
# Subscription
# -------------------------------
URL_SUBSCRIPTION = "/subscription"
URL_SUBSCRIPTION_USAGE = "/subscription/usage"
URL_SUBSCRIPTION_ESTIMATE = "/subscription/estimate"
URL_SUBSCRIPTION_FEATURE = "/subscription/feature"
URL_SUBSCRIPTION_BILLING = "/subscription/billing"

# -------------------------------
# Real-time
# -------------------------------
URL_TRACKING = "/tracking"
