from fastapi import FastAPI
from fleetcore.api import (
    token,
    platform,
    account,
    vehicle,
    driver,
    route,
    client,
    maintenance,
    trip,
    audit,
    subscription,
    analytics,
    tracking,
)
from fleetcore.src import exceptions
from fleetcore.src.enums import AppID


# ------------------------------------------------------
# Create separate FastAPI apps for each user domain
# ------------------------------------------------------
app_platform = FastAPI(title="Platform APP")
app_fleet = FastAPI(title="Fleet APP")

# Tag each app with its AppID
app_platform.state.id = AppID.PLATFORM
app_fleet.state.id = AppID.FLEET

# Uniform error bodies on every mounted app
exceptions.registerHandlers(app_platform)
exceptions.registerHandlers(app_fleet)


# ------------------------------------------------------
# Platform routers
# ------------------------------------------------------
app_platform.include_router(platform.route_platform)


# ------------------------------------------------------
# Fleet routers
# ------------------------------------------------------
app_fleet.include_router(token.route_fleet)
app_fleet.include_router(account.route_fleet)

# Fleet resources
app_fleet.include_router(vehicle.route_fleet)
app_fleet.include_router(driver.route_fleet)
app_fleet.include_router(route.route_fleet)
app_fleet.include_router(client.route_fleet)
app_fleet.include_router(maintenance.route_fleet)
app_fleet.include_router(trip.route_fleet)

# Reporting and subscription
app_fleet.include_router(audit.route_fleet)
app_fleet.include_router(subscription.route_fleet)
app_fleet.include_router(analytics.route_fleet)

# Real-time
app_fleet.include_router(tracking.route_fleet)
