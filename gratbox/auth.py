"""Authentication helper for Microsoft Graph.

This module wraps MSAL's PublicClientApplication to obtain a delegated access token for the
signed-in admin, using either the device-code flow (default, works over SSH and in terminals
without a browser) or the interactive browser flow.

Design notes:
 - The rest of the code only ever calls `GraphAuth.get_token()`; nothing else touches MSAL.
 - Silent acquisition from the token cache is tried first. The cache is in-memory for one run
   unless `auth.token_cache_path` is configured, in which case it is persisted with
   `msal.SerializableTokenCache`.
 - Every newly issued token is checked against the configured scopes so a missing admin consent fails at
   sign-in instead of halfway through a bulk run.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional, Set

import msal

from .config import AppConfig
from .errors import AuthError

logger = logging.getLogger(__name__)

# Scopes MSAL adds on its own; they never appear in a Graph permission list
RESERVED_SCOPES = {"openid", "profile", "offline_access", "email"}


def _normalize_scope(scope: str) -> str:
    # "https://graph.microsoft.com/Device.Read.All" and "Device.Read.All" are the same grant
    return scope.strip().rsplit("/", 1)[-1].lower()


def missing_scopes(required: Iterable[str], granted: Iterable[str]) -> List[str]:
    """Return the required scopes not covered by the granted ones (case-insensitive)."""
    granted_set: Set[str] = {_normalize_scope(s) for s in granted if s.strip()}
    missing = []
    for scope in required:
        norm = _normalize_scope(scope)
        if norm in RESERVED_SCOPES or norm == ".default":
            continue
        if norm not in granted_set:
            missing.append(scope)
    return missing


class GraphAuth:
    """Acquire delegated Entra ID access tokens for Microsoft Graph."""

    def __init__(self, cfg: AppConfig, app: Optional[msal.PublicClientApplication] = None):
        self.cfg = cfg
        self.scopes = list(cfg.graph.scope)
        # Authority = login host + tenant id (could be a tenant GUID or domain)
        self.authority = f"{cfg.graph.authority_host.rstrip('/')}/{cfg.tenant_id}"
        self.cache_path = cfg.auth.token_cache_path
        self.cache = msal.SerializableTokenCache()
        if self.cache_path and os.path.exists(self.cache_path):
            with open(self.cache_path, "r", encoding="utf-8") as f:
                self.cache.deserialize(f.read())
        self.app = app or msal.PublicClientApplication(
            client_id=cfg.client_id,
            authority=self.authority,
            token_cache=self.cache,
        )

    def get_token(self) -> str:
        """Return a bearer token string for Microsoft Graph.

        Raises:
            AuthError: if token acquisition fails or the token lacks a configured scope.
        """
        result = self._acquire_silent() or self._acquire_new()
        if not result or "access_token" not in result:
            result = result or {}
            raise AuthError(
                f"Failed to acquire token: {result.get('error')}: {result.get('error_description')}"
            )
        # Cache hits carry no "scope"; cached tokens were issued for exactly the requested scopes
        if "scope" in result:
            self.validate_scopes(result)
        self._persist_cache()
        return result["access_token"]

    def granted_scopes(self, result: Dict) -> List[str]:
        return str(result.get("scope") or "").split()

    def validate_scopes(self, result: Dict) -> None:
        missing = missing_scopes(self.scopes, self.granted_scopes(result))
        if missing:
            raise AuthError(
                "Signed-in token is missing required scopes: "
                + ", ".join(missing)
                + ". Ask an admin to grant consent or sign in with a different account."
            )

    def _acquire_silent(self) -> Optional[Dict]:
        accounts = self.app.get_accounts()
        if not accounts:
            return None
        logger.debug("Trying silent token acquisition for %s", accounts[0].get("username"))
        return self.app.acquire_token_silent(self.scopes, account=accounts[0])

    def _acquire_new(self) -> Dict:
        if self.cfg.auth.mode == "interactive":
            logger.info("Opening browser for interactive sign-in")
            return self.app.acquire_token_interactive(scopes=self.scopes)

        flow = self.app.initiate_device_flow(scopes=self.scopes)
        if "user_code" not in flow:
            raise AuthError(
                f"Device code start failed: {flow.get('error')} - {flow.get('error_description')}"
            )
        print(flow["message"])
        return self.app.acquire_token_by_device_flow(flow)

    def _persist_cache(self) -> None:
        if not self.cache_path or not self.cache.has_state_changed:
            return
        directory = os.path.dirname(self.cache_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.cache_path, "w", encoding="utf-8") as f:
            f.write(self.cache.serialize())
