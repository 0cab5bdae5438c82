import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from helpdesk.config.settings import AuthMode, Settings
from helpdesk.infra.container import ServiceContainer
from helpdesk.main import create_app
from helpdesk.v1.core.registries import JobRegistry
from helpdesk.v1.core.security import Principal, get_principal, require_admin


def _settings(auth_mode: AuthMode) -> Settings:
    return Settings(_env_file=None, auth_mode=auth_mode)


async def test_get_principal_auth_mode_none():
    """Test get_principal with AUTH_MODE=none returns dev defaults."""
    principal = await get_principal(settings=_settings(AuthMode.NONE))

    assert isinstance(principal, Principal)
    assert principal.user_id == "DEV_USER"
    assert principal.org_id == "DEV_ORG"
    assert principal.roles == ["admin"]
    assert principal.email is None


async def test_get_principal_auth_mode_dev_requires_headers():
    """Test get_principal with AUTH_MODE=dev requires headers."""
    settings = _settings(AuthMode.DEV)

    # Pass None explicitly since we're bypassing FastAPI DI
    with pytest.raises(HTTPException) as exc_info:
        await get_principal(x_user_id=None, x_org_id=None, x_roles=None, settings=settings)
    assert exc_info.value.status_code == 400
    assert "X-User-ID and X-Org-ID headers are required" in str(exc_info.value.detail)

    principal = await get_principal(
        x_user_id="test-user", x_org_id="test-org", x_roles=None, settings=settings
    )
    assert principal.user_id == "test-user"
    assert principal.org_id == "test-org"
    assert principal.roles == ["admin"]


async def test_get_principal_dev_roles_header():
    principal = await get_principal(
        x_user_id="u", x_org_id="o", x_roles="agent, viewer", settings=_settings(AuthMode.DEV)
    )
    assert principal.roles == ["agent", "viewer"]
    assert not principal.is_admin


async def test_get_principal_auth_mode_oidc_not_served_here():
    with pytest.raises(HTTPException) as exc_info:
        await get_principal(settings=_settings(AuthMode.OIDC))
    assert exc_info.value.status_code == 501


async def test_require_admin_rejects_agents():
    with pytest.raises(HTTPException) as exc_info:
        await require_admin(Principal(user_id="u", org_id="o", roles=["agent"]))
    assert exc_info.value.status_code == 403


def test_admin_endpoints_enforce_role(tmp_path):
    settings = Settings(
        _env_file=None,
        environment="test",
        auth_mode=AuthMode.DEV,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
        export_storage_dir=str(tmp_path / "blobs"),
    )
    app = create_app(settings, container=ServiceContainer(settings, registry=JobRegistry()))

    with TestClient(app) as client:
        assert client.get("/v1/jobs/stats/overview").status_code == 400

        agent = {"X-User-ID": "u1", "X-Org-ID": "org-1", "X-Roles": "agent"}
        forbidden = client.get("/v1/jobs/stats/overview", headers=agent)
        assert forbidden.status_code == 403
        assert forbidden.json()["error"]["message"] == "Internal admin role required"

        admin = {"X-User-ID": "u1", "X-Org-ID": "org-1"}
        assert client.get("/v1/jobs/stats/overview", headers=admin).status_code == 200


def test_principal_dataclass_optional_email():
    """Test Principal dataclass with optional email field."""
    principal = Principal(user_id="user123", org_id="org456", roles=["user"])

    assert principal.user_id == "user123"
    assert principal.org_id == "org456"
    assert principal.roles == ["user"]
    assert principal.email is None
