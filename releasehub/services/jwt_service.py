"""
JWT token service for authentication.

Tokens carry the tenant the caller acts for; the HTTP boundary turns the
verified claims into a TenantContext.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from releasehub.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, user_id: str, tenant_id: str, role: str = "member", expires_minutes: int | None = None) -> str:
        """
        Create a JWT token with tenant context.

        Args:
            user_id: User's unique ID
            tenant_id: Tenant the user acts for
            role: User role (member, admin or platform_admin)
            expires_minutes: Lifetime override, defaults to JWT_EXPIRATION_MINUTES

        Returns:
            Encoded JWT token string
        """
        lifetime = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRATION_MINUTES
        expires = datetime.now(timezone.utc) + timedelta(minutes=lifetime)

        payload = {
            "sub": user_id,
            "tenant_id": tenant_id,
            "role": role,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
            return payload
        except JWTError:
            return None
