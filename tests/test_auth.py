import pytest

from gratbox.auth import GraphAuth, missing_scopes
from gratbox.config import AppConfig
from gratbox.errors import AuthError

SCOPES = "DeviceManagementManagedDevices.Read.All DeviceManagementServiceConfig.ReadWrite.All Device.Read.All GroupMember.ReadWrite.All"


@pytest.fixture
def app(mocker):
    app = mocker.MagicMock()
    app.get_accounts.return_value = []
    app.initiate_device_flow.return_value = {"user_code": "ABCD", "message": "Go to https://microsoft.com/devicelogin"}
    app.acquire_token_by_device_flow.return_value = {"access_token": "tok", "scope": SCOPES}
    return app


def test_device_code_flow(cfg, app, capsys):
    token = GraphAuth(cfg, app=app).get_token()

    assert token == "tok"
    assert "devicelogin" in capsys.readouterr().out
    app.acquire_token_by_device_flow.assert_called_once()


def test_silent_acquisition_is_tried_first(cfg, app):
    app.get_accounts.return_value = [{"username": "admin@contoso.com"}]
    # A cache hit has no "scope" key
    app.acquire_token_silent.return_value = {
        "access_token": "cached",
        "token_type": "Bearer",
        "expires_in": 3599,
        "token_source": "cache",
    }

    assert GraphAuth(cfg, app=app).get_token() == "cached"
    app.initiate_device_flow.assert_not_called()


def test_missing_scope_fails_at_sign_in(cfg, app):
    app.acquire_token_by_device_flow.return_value = {"access_token": "tok", "scope": "Device.Read.All"}

    with pytest.raises(AuthError, match="GroupMember.ReadWrite.All"):
        GraphAuth(cfg, app=app).get_token()


def test_device_flow_start_failure(cfg, app):
    app.initiate_device_flow.return_value = {"error": "invalid_client", "error_description": "bad app"}

    with pytest.raises(AuthError, match="invalid_client"):
        GraphAuth(cfg, app=app).get_token()


def test_token_error_is_reported(cfg, app):
    app.acquire_token_by_device_flow.return_value = {"error": "authorization_declined", "error_description": "no"}

    with pytest.raises(AuthError, match="authorization_declined"):
        GraphAuth(cfg, app=app).get_token()


def test_interactive_mode(app):
    cfg = AppConfig.from_dict({"tenant_id": "t", "client_id": "c", "auth": {"mode": "interactive"}})
    app.acquire_token_interactive.return_value = {"access_token": "browser", "scope": SCOPES}

    assert GraphAuth(cfg, app=app).get_token() == "browser"
    app.initiate_device_flow.assert_not_called()


def test_missing_scopes_normalization():
    granted = ["https://graph.microsoft.com/device.read.all", "openid", "profile"]

    assert missing_scopes(["Device.Read.All", "offline_access"], granted) == []
    assert missing_scopes(["Device.Read.All", "Group.Read.All"], granted) == ["Group.Read.All"]


def test_token_cache_is_persisted(tmp_path, app):
    cache_path = tmp_path / "cache" / "msal.json"
    cfg = AppConfig.from_dict({"tenant_id": "t", "client_id": "c", "auth": {"token_cache_path": str(cache_path)}})
    auth = GraphAuth(cfg, app=app)
    auth.cache.has_state_changed = True

    auth.get_token()

    assert cache_path.exists()
