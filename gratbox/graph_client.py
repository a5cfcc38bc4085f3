"""Minimal Microsoft Graph client focused on Intune, Entra ID and Autopilot bulk operations.

Responsibilities:
 - Attach a bearer token from the injected token provider (normally `GraphAuth.get_token`).
 - Turn HTTP failures into typed errors (`TransientError` / `FatalError`) carrying the status
   code, so the backoff caller never has to parse error text.
 - Route every request through a `BackoffCaller`.
 - Expose single-page reads as `(items, next_link)` for the paged fetcher.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .backoff import BackoffCaller, is_transient_status
from .config import AppConfig
from .errors import FatalError, TransientError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECS = 60


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form; Graph always sends seconds so just ignore it
        return None


def _error_message(resp: requests.Response) -> str:
    try:
        err = resp.json().get("error", {})
        code = err.get("code")
        message = err.get("message")
        if code or message:
            return f"{code}: {message}"
    except ValueError:
        pass
    return (resp.text or "").strip()[:500]


def raise_for_graph_status(resp: requests.Response, method: str, url: str) -> None:
    """Raise TransientError/FatalError for a non-2xx response."""
    if resp.ok:
        return
    detail = f"Graph {method} {url} failed {resp.status_code}: {_error_message(resp)}"
    if is_transient_status(resp.status_code):
        raise TransientError(
            detail,
            status_code=resp.status_code,
            category="throttled" if resp.status_code == 429 else "server",
            retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
        )
    category = "auth" if resp.status_code in (401, 403) else "client"
    raise FatalError(detail, status_code=resp.status_code, category=category)


class GraphClient:
    """Thin Graph REST helper; every call goes through the backoff caller."""

    def __init__(
        self,
        cfg: AppConfig,
        token_provider: Callable[[], str],
        caller: Optional[BackoffCaller] = None,
        session: Optional[requests.Session] = None,
    ):
        self.cfg = cfg
        self.base = cfg.graph.base_url.rstrip("/")
        self.token_provider = token_provider
        self.caller = caller or BackoffCaller.from_settings(cfg.retry)
        # Reuse an HTTP session across requests for connection pooling.
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self._token: Optional[str] = None

    def url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base}/{endpoint.lstrip('/')}"

    def _auth_headers(self) -> Dict[str, str]:
        if self._token is None:
            self._token = self.token_provider()
        return {"Authorization": f"Bearer {self._token}"}

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """One HTTP attempt. A 401 refreshes the token once before giving up."""
        for refreshed in (False, True):
            resp = self.session.request(
                method, url, headers=self._auth_headers(), timeout=REQUEST_TIMEOUT_SECS, **kwargs
            )
            if resp.status_code == 401 and not refreshed:
                logger.debug("401 from Graph, refreshing token")
                self._token = None
                continue
            break
        raise_for_graph_status(resp, method, url)
        return resp

    def request(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        return self.caller.call(self._send, method, self.url(endpoint), **kwargs)

    def get_json(self, endpoint: str, params: Optional[dict] = None) -> Dict[str, Any]:
        return self.request("GET", endpoint, params=params).json()

    def get_page(self, url: str, params: Optional[dict] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch one page of a collection in a single attempt. Returns (items, next_link or None).

        No retry here: the paged fetcher wraps each page in the backoff caller.
        """
        resp = self._send("GET", self.url(url), params=params)
        data = resp.json()
        return data.get("value", []), data.get("@odata.nextLink")

    def post(self, endpoint: str, body: Optional[dict] = None) -> requests.Response:
        return self.request("POST", endpoint, json=body)

    def patch(self, endpoint: str, body: Optional[dict] = None) -> requests.Response:
        return self.request("PATCH", endpoint, json=body)

    def delete(self, endpoint: str) -> requests.Response:
        return self.request("DELETE", endpoint)
