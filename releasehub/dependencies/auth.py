"""
Authentication dependencies for FastAPI.

The bearer token is the only source of tenant identity for a request.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from releasehub.services.jwt_service import JWTService
from releasehub.tenancy import PLATFORM_ADMIN_ROLE, TenantContext


# Security scheme
security = HTTPBearer()

ADMIN_ROLES = {"admin", PLATFORM_ADMIN_ROLE}


class TokenPayload(BaseModel):
    """JWT token payload model."""
    sub: str      # user_id
    tenant_id: str = ""
    role: str = "member"


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """
    Dependency that requires valid JWT token.

    Returns token payload if valid, raises 401 if invalid.

    Usage:
        @app.get("/protected")
        async def protected_route(user: TokenPayload = Depends(get_current_user)):
            ...
    """
    jwt_service = JWTService()

    payload = jwt_service.verify_token(credentials.credentials)

    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = TokenPayload(**payload)
    if not user.tenant_id and user.role != PLATFORM_ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries no tenant",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Picked up by LoggingMiddleware
    request.state.tenant_id = user.tenant_id
    request.state.user_id = user.sub
    return user


async def get_tenant_context(current_user: TokenPayload = Depends(get_current_user)) -> TenantContext:
    """TenantContext for the request, cross-tenant for platform admins."""
    context = TenantContext.from_claims(current_user.tenant_id, current_user.sub, current_user.role)
    context.bind_logging()
    return context


def require_admin(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """
    Dependency that requires admin role.

    Returns user if admin, raises 403 if member.

    Usage:
        @app.get("/admin")
        async def admin_route(user: TokenPayload = Depends(require_admin)):
            ...
    """
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user


def require_platform_admin(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """Dependency for cross-tenant operations."""
    if current_user.role != PLATFORM_ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform admin access required"
        )

    return current_user
