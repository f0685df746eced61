from fastapi.security import HTTPBearer

# Define HTTP Bearer authentication schemes for the mounted applications
bearer_platform = HTTPBearer(scheme_name="Platform HTTPBearer")
bearer_fleet = HTTPBearer(scheme_name="Fleet HTTPBearer")
