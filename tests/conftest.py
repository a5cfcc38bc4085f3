import json

import pytest
import requests

from gratbox.backoff import BackoffCaller
from gratbox.config import AppConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer GRATBOX_* variables from leaking into config tests."""
    for name in ("GRATBOX_TENANT_ID", "GRATBOX_CLIENT_ID", "GRATBOX_CONFIG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cfg():
    return AppConfig.from_dict(
        {"tenant_id": "contoso.onmicrosoft.com", "client_id": "11111111-2222-3333-4444-555555555555"}
    )


@pytest.fixture
def sleeps():
    """Delays requested by the backoff caller, in order."""
    return []


@pytest.fixture
def caller(sleeps):
    return BackoffCaller(max_retries=5, base_delay=2, max_delay=60, sleep=sleeps.append)


@pytest.fixture
def make_response():
    """Build a real requests.Response without touching the network."""

    def _make(status, body=None, headers=None, text=None):
        resp = requests.Response()
        resp.status_code = status
        if body is not None:
            resp._content = json.dumps(body).encode("utf-8")
        else:
            resp._content = (text or "").encode("utf-8")
        resp.encoding = "utf-8"
        resp.headers.update(headers or {})
        return resp

    return _make
