"""Configuration loading and strongly-typed settings models.

Centralizes parsing of `config.json` (or an override via the GRATBOX_CONFIG env var) into
dataclasses. Optional sections (auth, retry, sync) fall back to defaults; missing required
top-level keys result in errors early.

Only public-client (delegated) authentication is supported, so there is no client secret here.
Tenant and client ids can be overridden through GRATBOX_TENANT_ID / GRATBOX_CLIENT_ID.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

CONFIG_FILENAME = os.environ.get("GRATBOX_CONFIG", "config.json")

AUTH_MODES = ("device_code", "interactive")
SYNC_MODES = ("AddOnly", "SyncExact")

DEFAULT_SCOPES = [
    "DeviceManagementManagedDevices.Read.All",
    "DeviceManagementServiceConfig.ReadWrite.All",
    "Device.Read.All",
    "GroupMember.ReadWrite.All",
]

logger = logging.getLogger(__name__)


@dataclass
class GraphSettings:
    authority_host: str = "https://login.microsoftonline.com"
    scope: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    base_url: str = "https://graph.microsoft.com/v1.0"


@dataclass
class AuthSettings:
    mode: str = "device_code"
    # Path for a persisted MSAL token cache; None keeps the cache in memory for one run.
    token_cache_path: Optional[str] = None


@dataclass
class RetrySettings:
    max_retries: int = 5
    base_delay_sec: float = 2
    max_delay_sec: float = 60


@dataclass
class SyncSettings:
    mode: str = "AddOnly"
    dry_run: bool = False
    delimiter: str = ","
    report_dir: str = "reports"


@dataclass
class AppConfig:
    tenant_id: str
    client_id: str
    graph: GraphSettings = field(default_factory=GraphSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @staticmethod
    def load(path: Optional[str] = None) -> "AppConfig":
        config_path = path or CONFIG_FILENAME
        if not os.path.exists(config_path):
            raise FileNotFoundError(
                f"Config file '{config_path}' not found. Copy 'config.example.json' to 'config.json' and fill values."
            )
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return AppConfig.from_dict(raw)

    @staticmethod
    def from_dict(raw: dict) -> "AppConfig":
        graph = GraphSettings(**(raw.get("graph") or {}))
        auth = AuthSettings(**(raw.get("auth") or {}))
        retry = RetrySettings(**(raw.get("retry") or {}))
        sync = SyncSettings(**(raw.get("sync") or {}))

        if auth.mode not in AUTH_MODES:
            logger.warning("Unknown auth mode %r, using 'device_code'", auth.mode)
            auth.mode = "device_code"
        # Sync mode is matched case-insensitively; anything unknown drops to the non-destructive mode
        by_lower = {m.lower(): m for m in SYNC_MODES}
        resolved = by_lower.get(str(sync.mode).lower())
        if resolved is None:
            logger.warning("Unknown sync mode %r, using 'AddOnly'", sync.mode)
            resolved = "AddOnly"
        sync.mode = resolved
        if retry.max_retries < 0:
            raise ValueError("retry.max_retries must be >= 0")

        # Environment variable overrides take precedence over the file
        tenant_id = os.environ.get("GRATBOX_TENANT_ID") or raw.get("tenant_id")
        client_id = os.environ.get("GRATBOX_CLIENT_ID") or raw.get("client_id")
        if not tenant_id or not client_id:
            raise KeyError("tenant_id and client_id are required (config file or GRATBOX_* env vars)")

        return AppConfig(
            tenant_id=tenant_id,
            client_id=client_id,
            graph=graph,
            auth=auth,
            retry=retry,
            sync=sync,
            log_level=str(raw.get("log_level") or "INFO").upper(),
            log_file=raw.get("log_file"),
        )
