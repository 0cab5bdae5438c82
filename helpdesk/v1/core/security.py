from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from helpdesk.config.settings import AuthMode, Settings, get_settings


@dataclass
class Principal:
    """Represents the current authenticated user/context."""

    user_id: str
    org_id: str
    roles: list[str]
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_org_id: str | None = Header(None, alias="X-Org-ID"),
    x_roles: str | None = Header(None, alias="X-Roles"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns dev defaults with admin role
    - dev: Extract from headers; roles default to admin unless X-Roles is sent
    - oidc: handled by the identity provider integration, not this service
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(
            user_id=settings.dev_user_id, org_id=settings.dev_org_id, roles=["admin"]
        )
    elif settings.auth_mode == AuthMode.DEV:
        # Require headers in dev mode
        if not x_user_id or not x_org_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID and X-Org-ID headers are required in dev auth mode",
            )

        roles = [r.strip() for r in x_roles.split(",") if r.strip()] if x_roles else ["admin"]
        return Principal(user_id=x_user_id, org_id=x_org_id, roles=roles)
    elif settings.auth_mode == AuthMode.OIDC:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="OIDC authentication is provided by the upstream gateway",
        )
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Restrict an endpoint to internal administrators."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Internal admin role required",
        )
    return principal


# Convenience type alias for dependency injection
AdminDep = Depends(require_admin)
