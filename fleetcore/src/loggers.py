from typing import Optional

from fleetcore.src import openobserve
from fleetcore.src.schemas import Identity, RequestInfo


def logEvent(
    identity: Optional[Identity],
    requestInfo: RequestInfo,
    data: dict,
) -> None:
    """
    Log an event to OpenObserve with request and caller context.

    Args:
        identity (Identity | None): Authenticated caller, None for anonymous actions
            such as signup.
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Additional event-specific details to include in the log.

    Notes:
        - Automatically attaches `_app_id`, `_method`, `_path` and `_ip_address`.
        - Authenticated events also carry `_user_id` and `_company_id`.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_app_id": requestInfo.app_id,
        "_ip_address": requestInfo.ip_address,
    }
    if identity is not None:
        logDetails["_user_id"] = identity.user_id
        logDetails["_company_id"] = identity.company_id

    logDetails.update(data)
    openobserve.logEvent(logDetails)
