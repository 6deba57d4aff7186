"""
Secure Pipeline - Security Module
Symmetric payload envelopes for request/response bodies.

Wire format: "<ivHex>:<cipherHex>" (AES-256-CBC, random IV per message)
Library: pycryptodome

Route integration (SecureRoute, SecurityPipeline) lives in
services.security.pipeline, which also depends on services.auth.
"""

from .crypto_engine import EnvelopeCipher
from .errors import (
    PipelineError,
    AuthMissing,
    AuthInvalid,
    AuthzForbidden,
    CryptoError,
    CryptoFormatError,
    CryptoFailure,
)
from .models import Claims, EncryptedPayload, SecureRequestContext

__all__ = [
    'EnvelopeCipher',
    'PipelineError',
    'AuthMissing',
    'AuthInvalid',
    'AuthzForbidden',
    'CryptoError',
    'CryptoFormatError',
    'CryptoFailure',
    'Claims',
    'EncryptedPayload',
    'SecureRequestContext',
]
