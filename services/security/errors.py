"""
Secure Pipeline - Error Taxonomy
Terminal failures raised by pipeline stages and their client-facing JSON shapes.

Auth / authorization failures answer {"success": false, "message": ...};
crypto failures answer {"success": false, "error": ...}. The asymmetry is an
existing client contract and is kept as is.
"""

from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse


MSG_NO_TOKEN = "No token provided"
MSG_INVALID_TOKEN = "Invalid token"
MSG_FORBIDDEN = "Forbidden"
MSG_NOT_A_DOCTOR = "Access denied: Not a doctor"
MSG_DOCTOR_NOT_APPROVED = "Access denied: Doctor not approved yet"
MSG_INVALID_PAYLOAD = "Invalid encrypted payload"
MSG_ENCRYPT_FAILED = "Failed to encrypt response"


class PipelineError(Exception):
    """Base exception for a stage that terminates the request."""
    status_code: int = 400
    field: str = "message"
    default_message: str = ""

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, self.field: self.message}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class AuthMissing(PipelineError):
    """No Authorization header, or not a Bearer credential."""
    status_code = 401
    default_message = MSG_NO_TOKEN


class AuthInvalid(PipelineError):
    """Bad signature, malformed or expired credential."""
    status_code = 401
    default_message = MSG_INVALID_TOKEN


class AuthzForbidden(PipelineError):
    """Authenticated, but not allowed on this route."""
    status_code = 403
    default_message = MSG_FORBIDDEN


class CryptoError(PipelineError):
    """Base class for envelope failures. Detail stays server-side."""
    status_code = 400
    field = "error"
    default_message = MSG_INVALID_PAYLOAD

    def __init__(self, detail: str = ""):
        # The client always sees the uniform message; detail is for logs only.
        super().__init__(self.default_message)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail or self.message


class CryptoFormatError(CryptoError):
    """Envelope is not "<ivHex>:<cipherHex>"."""
    pass


class CryptoFailure(CryptoError):
    """Encrypt / decrypt / JSON step failed."""
    pass


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """App-level handler for pipeline errors raised on plain (unencrypted) routes."""
    return exc.to_response()
