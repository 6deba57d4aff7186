"""
Secure Pipeline Authentication
Bearer JWT verification and doctor approval gate.
"""

from .token_auth import TokenVerifier, issue_token, decode_token
from .approval import check_approved_doctor, approved_doctor_dependency

__all__ = [
    'TokenVerifier',
    'issue_token',
    'decode_token',
    'check_approved_doctor',
    'approved_doctor_dependency',
]
