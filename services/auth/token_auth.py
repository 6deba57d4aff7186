"""
Secure Pipeline - Token Authentication
Bearer JWT issuing and verification.

TokenVerifier is a FastAPI dependency: it reads the Authorization header,
verifies signature and expiry against the shared secret and hands the decoded
Claims to the next stage. Optionally it enforces a required role.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Header

from config.security_settings import SecuritySettings
from services.security.errors import AuthInvalid, AuthMissing, AuthzForbidden
from services.security.models import Claims

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def issue_token(
    settings: SecuritySettings,
    user_id: Any,
    role: str,
    is_approved: bool = False,
    is_phone_verified: bool = False,
    expires_in: Optional[timedelta] = None,
    **extra: Any
) -> str:
    """
    Sign a credential for a user.

    Args:
        settings: Pipeline settings (secret, algorithm, default lifetime)
        user_id: User ID, stored in the "id" claim
        role: User role
        is_approved: Doctor approval flag
        is_phone_verified: Phone verification flag
        expires_in: Override the configured lifetime
        **extra: Additional claims

    Returns:
        Encoded JWT string
    """
    if expires_in is None:
        expires_in = timedelta(hours=settings.jwt_expiration_hours)

    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "role": role,
        "is_phone_verified": is_phone_verified,
        "is_approved": is_approved,
        **extra,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: SecuritySettings) -> Dict[str, Any]:
    """
    Verify a JWT and return its raw payload.

    Raises:
        jwt.InvalidTokenError: Bad signature, malformed or expired token
    """
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


class TokenVerifier:
    """
    Dependency that authenticates a request.

    Usage:
        verify = TokenVerifier(settings)
        admin_only = TokenVerifier(settings, required_role="admin")

        @router.get("/me")
        async def me(claims: Claims = Depends(verify)): ...
    """

    def __init__(self, settings: SecuritySettings, required_role: Optional[str] = None):
        self.settings = settings
        self.required_role = required_role

    def __call__(self, authorization: Optional[str] = Header(None)) -> Claims:
        return self.verify(authorization)

    def verify(self, authorization: Optional[str]) -> Claims:
        """
        Authenticate an Authorization header value.

        Raises:
            AuthMissing: Header absent or not a Bearer credential
            AuthInvalid: Token failed verification
            AuthzForbidden: Token valid but role does not match required_role
        """
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise AuthMissing()

        token = authorization.split(" ")[1]
        try:
            payload = decode_token(token, self.settings)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Token rejected: {e}")
            raise AuthInvalid() from e

        claims = Claims(**payload)

        if self.required_role and claims.role != self.required_role:
            logger.warning(f"User {claims.id} with role {claims.role} denied, requires {self.required_role}")
            raise AuthzForbidden()

        return claims
