"""
Secure Pipeline - Pydantic Models
Defines the wire shapes and per-request values that flow through the pipeline.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Claims(BaseModel):
    """
    Decoded credential payload.

    Authoritative identity for the rest of the request. Frozen so no later
    stage can alter it; unknown claims are kept so the decoded object matches
    what was signed.

    Claim values are stored exactly as signed, without coercion; later
    stages apply the same truthiness and equality checks to them.
    """
    model_config = ConfigDict(frozen=True, extra="allow")

    id: Any = Field(None, description="User ID")
    role: Any = Field(None, description="User role (user, doctor, admin, ...)")
    is_approved: Any = Field(None, description="Doctor approval flag")
    is_phone_verified: Any = Field(None, description="Phone verification flag")
    exp: Any = Field(None, description="Expiry, unix epoch seconds")
    iat: Any = Field(None, description="Issued at, unix epoch seconds")

    def as_payload(self) -> Dict[str, Any]:
        """Return exactly the claims that were present in the credential."""
        return self.model_dump(exclude_unset=True)


class EncryptedPayload(BaseModel):
    """Body of every request or response carried inside an envelope."""
    payload: str = Field(..., description="Envelope: <ivHex>:<cipherHex>")

    @field_validator('payload')
    @classmethod
    def validate_separator(cls, v: str) -> str:
        if v.count(':') != 1:
            raise ValueError("Envelope must contain exactly one ':' separator")
        return v


@dataclass(frozen=True)
class SecureRequestContext:
    """
    Plaintext recovered by the decryption gate for one request.

    body/query hold the decrypted objects; the flags tell whether each one
    actually arrived encrypted.
    """
    body: Any = None
    query: Optional[Dict[str, Any]] = None
    body_encrypted: bool = False
    query_encrypted: bool = False

    @property
    def encrypted(self) -> bool:
        return self.body_encrypted or self.query_encrypted
