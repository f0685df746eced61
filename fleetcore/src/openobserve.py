import base64, json, requests
from logging import getLogger
from typing import Optional
from requests import Response

from fleetcore.src.constants import (
    OPENOBSERVE_ENABLED,
    OPENOBSERVE_HOST,
    OPENOBSERVE_ORG,
    OPENOBSERVE_PASSWORD,
    OPENOBSERVE_PORT,
    OPENOBSERVE_PROTOCOL,
    OPENOBSERVE_STREAM,
    OPENOBSERVE_TIMEOUT,
    OPENOBSERVE_USERNAME,
)

logger = getLogger("fleetcore.events")

# Prepare Basic Auth credentials
credentials = base64.b64encode(
    bytes(OPENOBSERVE_USERNAME + ":" + OPENOBSERVE_PASSWORD, "utf-8")
).decode("utf-8")

# Default headers for all requests
headers = {"Content-type": "application/json", "Authorization": "Basic " + credentials}

# Construct OpenObserve endpoint URL
openobserve_host = f"{OPENOBSERVE_PROTOCOL}://{OPENOBSERVE_HOST}:{OPENOBSERVE_PORT}"
openobserve_url = f"{openobserve_host}/api/{OPENOBSERVE_ORG}/{OPENOBSERVE_STREAM}/_json"


def logEvent(eventData: dict) -> Optional[Response]:
    """
    Send an event log to the configured OpenObserve instance.

    Event shipping never fails the request that produced the event: when
    OpenObserve is disabled the event goes to the "fleetcore.events" logger
    only, and transport errors are logged as warnings.

    Args:
        eventData (dict): A dictionary representing the event log to be sent.
            Example:
                {
                    "_method": "POST",
                    "_path": "/fleet/vehicle",
                    "_app_id": 2,
                    "_user_id": 7,
                    "_company_id": 3
                }

    Returns:
        requests.Response | None: The OpenObserve response, if one was sent.
    """
    payload = json.dumps(eventData, default=str)
    if not OPENOBSERVE_ENABLED:
        logger.debug(payload)
        return None
    try:
        return requests.post(
            openobserve_url, headers=headers, data=payload, timeout=OPENOBSERVE_TIMEOUT
        )
    except requests.RequestException as e:
        logger.warning("Event shipping failed: %s", e)
        return None
