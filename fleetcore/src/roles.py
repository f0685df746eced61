"""
Company role -> permission table.

Loaded once at import and never mutated. Every permission is a boolean field
of `Role`; `validators.companyPermission` looks fields up by name.
"""

from types import MappingProxyType
from typing import Mapping
from pydantic import BaseModel, ConfigDict

from fleetcore.src.enums import CompanyRole


class Role(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    manage_account: bool = False
    manage_subscription: bool = False
    create_vehicle: bool = False
    update_vehicle: bool = False
    delete_vehicle: bool = False
    create_driver: bool = False
    update_driver: bool = False
    delete_driver: bool = False
    create_route: bool = False
    update_route: bool = False
    delete_route: bool = False
    create_client: bool = False
    update_client: bool = False
    delete_client: bool = False
    create_trip: bool = False
    update_trip: bool = False
    delete_trip: bool = False
    add_trip_progress: bool = False
    create_maintenance: bool = False
    update_maintenance: bool = False
    delete_maintenance: bool = False
    view_audit: bool = False
    view_analytics: bool = False


_ALL = {field: True for field in Role.model_fields if field != "name"}

ROLES: Mapping[CompanyRole, Role] = MappingProxyType(
    {
        CompanyRole.OWNER: Role(name="Owner", **_ALL),
        CompanyRole.ADMIN: Role(name="Admin", **{**_ALL, "manage_subscription": False}),
        CompanyRole.MANAGER: Role(
            name="Manager",
            create_vehicle=True,
            update_vehicle=True,
            create_driver=True,
            update_driver=True,
            create_route=True,
            update_route=True,
            create_client=True,
            update_client=True,
            create_trip=True,
            update_trip=True,
            add_trip_progress=True,
            create_maintenance=True,
            update_maintenance=True,
            view_analytics=True,
        ),
        CompanyRole.DRIVER: Role(name="Driver", add_trip_progress=True),
        CompanyRole.USER: Role(name="User"),
    }
)


def roleOf(companyRole: int) -> Role | None:
    try:
        return ROLES[CompanyRole(companyRole)]
    except ValueError:
        return None
