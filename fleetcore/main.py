from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleetcore.src import exceptions, schemas
from fleetcore.src.constants import API_TITLE, API_VERSION
from fleetcore.src.ratelimit import rateLimitMiddleware
from fleetcore.src.urls import MOUNT_FLEET, MOUNT_PLATFORM
from fleetcore.api.controller import app_fleet, app_platform


app = FastAPI(title=API_TITLE, version=API_VERSION)

origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(rateLimitMiddleware)
exceptions.registerHandlers(app)

app.mount(MOUNT_PLATFORM, app_platform, "Platform API")
app.mount(MOUNT_FLEET, app_fleet, "Fleet API")


# Health check endpoint
@app.get("/health", tags=["Health Check"], response_model=schemas.HealthStatus)
async def health_check():
    return {"status": "OK", "version": API_VERSION}
