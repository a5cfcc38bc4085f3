"""Device inventory exports (Intune, Autopilot, Entra ID) to CSV."""

import logging
from typing import Dict, List, Optional

from .cache import RunCache
from .graph_client import GraphClient
from .paging import PagedFetcher
from .report import write_csv

logger = logging.getLogger(__name__)

# kind -> (endpoint, $select or None, output columns)
INVENTORY_SOURCES: Dict[str, tuple] = {
    "intune": (
        "deviceManagement/managedDevices",
        None,
        [
            "id", "deviceName", "serialNumber", "operatingSystem", "osVersion", "complianceState",
            "userPrincipalName", "manufacturer", "model", "enrolledDateTime", "lastSyncDateTime",
            "azureADDeviceId",
        ],
    ),
    "autopilot": (
        "deviceManagement/windowsAutopilotDeviceIdentities",
        None,
        [
            "id", "serialNumber", "groupTag", "manufacturer", "model", "enrollmentState",
            "lastContactedDateTime", "azureActiveDirectoryDeviceId", "managedDeviceId",
        ],
    ),
    "entra": (
        "devices",
        "id,deviceId,displayName,operatingSystem,operatingSystemVersion,trustType,accountEnabled,"
        "approximateLastSignInDateTime,registrationDateTime",
        [
            "id", "deviceId", "displayName", "operatingSystem", "operatingSystemVersion", "trustType",
            "accountEnabled", "approximateLastSignInDateTime", "registrationDateTime",
        ],
    ),
}


def inventory_columns(kind: str) -> List[str]:
    return list(INVENTORY_SOURCES[kind][2])


def export_inventory(client: GraphClient, kind: str, path: str, cache: Optional[RunCache] = None) -> int:
    """Fetch a full device collection and write it to `path`. Returns the row count.

    The whole collection is fetched before anything is written, so a failed fetch never
    leaves a truncated export behind.
    """
    if kind not in INVENTORY_SOURCES:
        raise ValueError(f"Unknown inventory kind '{kind}'. Choose from: {', '.join(INVENTORY_SOURCES)}")
    endpoint, select, columns = INVENTORY_SOURCES[kind]
    params = {"$select": select} if select else None
    items = PagedFetcher(client.caller, client.get_page, endpoint, params=params, cache=cache).fetch_all()
    count = write_csv(path, columns, items)
    logger.info("Exported %d %s device(s) to %s", count, kind, path)
    return count
