from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic_extra_types.phone_numbers import PhoneNumber


class RequestInfo(BaseModel):
    method: str
    path: str
    app_id: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Identity(BaseModel):
    """Caller identity carried by a validated access token."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    company_id: int
    company_role: int
    platform_role: int


class HealthStatus(BaseModel):
    status: str
    version: str


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class Phone(PhoneNumber):
    """International phone number, stored in E.164 form."""

    phone_format = "E164"
