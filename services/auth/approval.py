"""
Secure Pipeline - Doctor Approval Gate
Authorization step that runs after token verification on doctor-only routes.
"""

import logging
from typing import Callable, Optional

from fastapi import Depends

from services.security.errors import MSG_DOCTOR_NOT_APPROVED, MSG_NOT_A_DOCTOR, AuthzForbidden
from services.security.models import Claims

from .token_auth import TokenVerifier

logger = logging.getLogger(__name__)

DOCTOR_ROLE = "doctor"


def check_approved_doctor(claims: Optional[Claims]) -> Claims:
    """
    Require an approved doctor.

    Missing claims are treated as "not a doctor" rather than an error.

    Raises:
        AuthzForbidden: Not a doctor, or a doctor not yet approved
    """
    if claims is None or claims.role != DOCTOR_ROLE:
        raise AuthzForbidden(MSG_NOT_A_DOCTOR)
    if not claims.is_approved:
        logger.info(f"Doctor {claims.id} blocked: not approved yet")
        raise AuthzForbidden(MSG_DOCTOR_NOT_APPROVED)
    return claims


def approved_doctor_dependency(verifier: TokenVerifier) -> Callable[..., Claims]:
    """Build a dependency chaining verifier -> approval check."""

    def require_approved_doctor(claims: Claims = Depends(verifier)) -> Claims:
        return check_approved_doctor(claims)

    return require_approved_doctor
