from math import ceil
from typing import List, Dict, Any, Type
from datetime import datetime, timezone

from fleetcore.src import schemas
from fleetcore.src.exceptions import APIException


def makeExceptionResponses(exceptions: List[APIException | Type[APIException]]) -> Dict[int, dict]:
    """
    Generate OpenAPI response documentation from a list of APIException
    classes or instances, grouped by status code.

    Classes are instantiated without arguments, so exceptions needing
    constructor arguments must be passed as instances.

    Args:
        exceptions (List[APIException | Type[APIException]]): Exceptions raised by the endpoint.

    Returns:
        Dict[int, dict]: A dictionary of OpenAPI response specs grouped by status code.
    """
    responses = {}

    for exception in exceptions:
        if isinstance(exception, type):
            exception = exception()
        status_code = exception.status_code
        example_key = type(exception).__name__
        example_value = {
            "summary": str(exception.headers),
            "value": {"success": False, "message": exception.detail},
        }

        if status_code not in responses:
            responses[status_code] = {
                "model": schemas.ErrorResponse,
                "content": {
                    "application/json": {"examples": {example_key: example_value}}
                },
            }
        else:
            responses[status_code]["content"]["application/json"]["examples"][
                example_key
            ] = example_value

    return responses


def enumStr(enumClass) -> str:
    """
    Convert an Enum class into a comma-separated string of its members.

    Each enum member is formatted as "<NAME>: <VALUE>".

    Example:
        >>> enumStr(VehicleStatus)
        'AVAILABLE: 1, IN_TRIP: 2, MAINTENANCE: 3'
    """
    return ", ".join(f"{x.name}: {x.value}" for x in enumClass)


def isValidTransition(
    transitions: dict[Any, list[Any]], old_state: Any, new_state: Any
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        transitions (dict[Any, list[Any]]): Mapping of valid transitions.
            Example:
                {
                    TripStatus.SCHEDULED: [TripStatus.STARTED, TripStatus.CANCELLED],
                    TripStatus.COMPLETED: [],
                }
        old_state (Any): Current state value.
        new_state (Any): Desired new state value.

    Returns:
        bool: True if transition is valid, False otherwise.
    """
    if not transitions:
        return False
    if old_state not in transitions:
        return False
    return new_state in transitions[old_state]


def updateIfChanged(targetObj, sourceObj, fields: List[str]) -> None:
    """
    Update attributes on a target object from a source object
    only if the values differ and the new value is not None.

    Designed for use with SQLAlchemy models, where `fields` are typically
    provided as `Model.field.key`.

    Example:
        >>> updateIfChanged(
        ...     vehicle,
        ...     fParam,
        ...     [Vehicle.model.key, Vehicle.capacity_kg.key],
        ... )
    """
    for field in fields:
        new_value = getattr(sourceObj, field, None)
        if new_value is not None:
            old_value = getattr(targetObj, field)
            if old_value != new_value:
                setattr(targetObj, field, new_value)


def paginationMeta(total: int, page: int, limit: int) -> dict:
    """Build the pagination block returned with every list response."""
    totalPages = ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": totalPages,
        "has_next": page < totalPages,
        "has_prev": page > 1,
    }


def utcNow() -> datetime:
    return datetime.now(timezone.utc)


def toUTC(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes read back from databases that drop the offset.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def monthStart(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def snapshot(obj, exclude: tuple = ("password", "refresh_token_id")) -> dict:
    """
    Column values of an ORM object as a JSON-safe dict, for audit records.
    """
    data = {}
    for column in obj.__table__.columns:
        if column.key in exclude:
            continue
        value = getattr(obj, column.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        data[column.key] = value
    return data
