"""Concrete reconcile targets: Entra ID group membership and Autopilot group tags.

A target knows how to list the live records for one kind of remote state and how to apply a
single Add/Update/Remove for it. Planning and result bookkeeping live in the reconciler.
"""

import logging
from typing import Any, Dict, List, Optional

from .cache import RunCache
from .csv_loader import is_base64, is_guid, is_serial
from .errors import FatalError
from .graph_client import GraphClient
from .models import Operation, RemoteRecord
from .paging import PagedFetcher

logger = logging.getLogger(__name__)

AUTOPILOT_ENDPOINT = "deviceManagement/windowsAutopilotDeviceIdentities"
AUTOPILOT_IMPORT_ENDPOINT = "deviceManagement/importedWindowsAutopilotDeviceIdentities"

GROUP_MEMBER_ALIASES = {"id": ["ObjectId", "Id", "DirectoryObjectId", "MemberId"]}
GROUP_MEMBER_VALIDATORS = {"id": is_guid}

AUTOPILOT_TAG_ALIASES = {
    "serial": ["SerialNumber", "Serial Number", "Serial", "Device Serial Number"],
    "groupTag": ["GroupTag", "Group Tag", "OrderID", "Tag"],
    "hardwareHash": ["HardwareHash", "Hardware Hash"],
}
AUTOPILOT_TAG_VALIDATORS = {"serial": is_serial, "hardwareHash": is_base64}


def _odata_escape(value: str) -> str:
    # OData single quotes are escaped by doubling them
    return value.replace("'", "''")


def resolve_group_id(client: GraphClient, name_or_id: str) -> str:
    """Return the object id of a group given its id or exact display name."""
    if is_guid(name_or_id):
        return name_or_id.strip("{}")
    data = client.get_json(
        "groups",
        params={"$filter": f"displayName eq '{_odata_escape(name_or_id)}'", "$select": "id,displayName"},
    )
    groups = data.get("value", [])
    if not groups:
        raise FatalError(f"No group named '{name_or_id}'")
    if len(groups) > 1:
        raise FatalError(f"{len(groups)} groups are named '{name_or_id}'; pass the object id instead")
    return groups[0]["id"]


class ReconcileTarget:
    """Base target. Subclasses implement fetch_current and the operations they support."""

    compare_fields: tuple = ()

    def __init__(self, client: GraphClient, cache: Optional[RunCache] = None):
        self.client = client
        self.cache = cache if cache is not None else RunCache()

    def fetcher(self, endpoint: str, params: Optional[dict] = None) -> PagedFetcher:
        return PagedFetcher(
            self.client.caller,
            self.client.get_page,
            endpoint,
            params=params,
            to_record=self.to_record,
            cache=self.cache,
        )

    def to_record(self, item: Dict[str, Any]) -> RemoteRecord:
        raise NotImplementedError

    def fetch_current(self) -> List[RemoteRecord]:
        raise NotImplementedError

    def normalize_key(self, key: str) -> str:
        return key.strip().casefold()

    def is_managed(self, record: RemoteRecord) -> bool:
        return True

    def describe(self, op: Operation) -> Dict[str, str]:
        return {}

    def add(self, op: Operation) -> None:
        raise FatalError(f"{type(self).__name__} does not support Add")

    def update(self, op: Operation) -> None:
        raise FatalError(f"{type(self).__name__} does not support Update")

    def remove(self, op: Operation) -> None:
        raise FatalError(f"{type(self).__name__} does not support Remove")

    def invalidate(self) -> None:
        self.cache.invalidate()


class GroupMembershipTarget(ReconcileTarget):
    """Direct members of one Entra ID group, keyed by directory object id."""

    def __init__(self, client: GraphClient, group_id: str, cache: Optional[RunCache] = None):
        super().__init__(client, cache)
        self.group_id = group_id

    def to_record(self, item: Dict[str, Any]) -> RemoteRecord:
        return RemoteRecord(
            key=item["id"],
            remote_id=item["id"],
            attributes={"displayName": item.get("displayName") or ""},
            created=item.get("createdDateTime"),
        )

    def fetch_current(self) -> List[RemoteRecord]:
        return self.fetcher(f"groups/{self.group_id}/members", params={"$select": "id,displayName"}).fetch_all()

    def normalize_key(self, key: str) -> str:
        # Object ids are often exported wrapped in braces
        return key.strip().strip("{}").casefold()

    def describe(self, op: Operation) -> Dict[str, str]:
        return {"GroupId": self.group_id, "DisplayName": op.before.get("displayName", "")}

    def add(self, op: Operation) -> None:
        member_id = op.key.strip("{}")
        body = {"@odata.id": f"{self.client.base}/directoryObjects/{member_id}"}
        try:
            self.client.post(f"groups/{self.group_id}/members/$ref", body)
        except FatalError as exc:
            # Someone added it between fetch and apply; the desired state holds
            if exc.status_code == 400 and "already exist" in str(exc):
                logger.info("%s is already a member of %s", member_id, self.group_id)
                return
            raise

    def remove(self, op: Operation) -> None:
        member_id = (op.remote_id or op.key).strip("{}")
        try:
            self.client.delete(f"groups/{self.group_id}/members/{member_id}/$ref")
        except FatalError as exc:
            if exc.status_code == 404:
                logger.info("%s was already removed from %s", member_id, self.group_id)
                return
            raise


class AutopilotTagTarget(ReconcileTarget):
    """Windows Autopilot device identities keyed by serial number, reconciling `groupTag`.

    Remove clears the tag rather than deleting the device registration. Add imports the
    device, which only works when the CSV row carries a hardware hash.
    """

    compare_fields = ("groupTag",)

    def to_record(self, item: Dict[str, Any]) -> RemoteRecord:
        return RemoteRecord(
            key=(item.get("serialNumber") or "").strip(),
            remote_id=item["id"],
            attributes={"groupTag": item.get("groupTag") or ""},
            created=item.get("createdDateTime"),
        )

    def fetch_current(self) -> List[RemoteRecord]:
        records = self.fetcher(AUTOPILOT_ENDPOINT).fetch_all()
        # Identities with no serial cannot be matched against a CSV
        return [r for r in records if r.key]

    def is_managed(self, record: RemoteRecord) -> bool:
        return bool(record.attributes.get("groupTag"))

    def describe(self, op: Operation) -> Dict[str, str]:
        return {
            "AutopilotId": op.remote_id or "",
            "GroupTagBefore": op.before.get("groupTag", ""),
            "GroupTagAfter": op.after.get("groupTag", ""),
        }

    def _set_tag(self, remote_id: str, tag: str) -> None:
        self.client.post(f"{AUTOPILOT_ENDPOINT}/{remote_id}/updateDeviceProperties", {"groupTag": tag})

    def update(self, op: Operation) -> None:
        self._set_tag(op.remote_id, op.after.get("groupTag", ""))

    def remove(self, op: Operation) -> None:
        self._set_tag(op.remote_id, "")

    def add(self, op: Operation) -> None:
        hardware_hash = op.after.get("hardwareHash")
        if not hardware_hash:
            raise FatalError(f"Serial {op.key} is not registered in Autopilot and the row has no hardware hash")
        body = {
            "@odata.type": "#microsoft.graph.importedWindowsAutopilotDeviceIdentity",
            "serialNumber": op.key,
            "hardwareIdentifier": hardware_hash,
            "groupTag": op.after.get("groupTag", ""),
        }
        self.client.post(AUTOPILOT_IMPORT_ENDPOINT, body)
