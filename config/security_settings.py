"""
Secure Pipeline Settings
Immutable configuration shared by every request pipeline stage.

Loaded once at process startup. A violated invariant (key length, IV bounds,
missing secret) raises ConfigInvalid and aborts startup; nothing here is
re-checked per request.

Environment:
- ENCRYPTION_KEY: shared AES-256 key, exactly 32 bytes (UTF-8)
- IV_LENGTH: IV length in bytes, 12-32 (default 16)
- JWT_SECRET: token signing secret
- JWT_ALGORITHM: token signing algorithm (default HS256)
- JWT_EXPIRATION_HOURS: lifetime of issued tokens (default 168 = 7 days)
- CORS_ALLOW_ORIGINS: comma separated list (default "*")
"""

import os
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

AES_KEY_BYTES = 32
IV_LENGTH_MIN = 12
IV_LENGTH_MAX = 32
DEFAULT_IV_LENGTH = 16

DEFAULT_JWT_SECRET = "supersecret"
DEFAULT_JWT_ALGORITHM = "HS256"
DEFAULT_JWT_EXPIRATION_HOURS = 24 * 7


class ConfigInvalid(Exception):
    """Raised when pipeline configuration violates a startup invariant."""
    pass


class SecuritySettings(BaseModel):
    """Shared secrets and bounds for the secure request pipeline."""
    model_config = ConfigDict(frozen=True)

    encryption_key: str = Field(..., repr=False, description="AES-256 key, 32 bytes once UTF-8 encoded")
    iv_length: int = Field(default=DEFAULT_IV_LENGTH, description="Random IV length per message")
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET, repr=False, description="Token signing secret")
    jwt_algorithm: str = Field(default=DEFAULT_JWT_ALGORITHM, description="Token signing algorithm")
    jwt_expiration_hours: int = Field(default=DEFAULT_JWT_EXPIRATION_HOURS, description="Issued token lifetime")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator('encryption_key')
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        if len(v.encode('utf-8')) != AES_KEY_BYTES:
            raise ValueError(f"ENCRYPTION_KEY must be {AES_KEY_BYTES} bytes long (AES-256 key)")
        return v

    @field_validator('iv_length')
    @classmethod
    def validate_iv_length(cls, v: int) -> int:
        if v < IV_LENGTH_MIN or v > IV_LENGTH_MAX:
            raise ValueError(f"IV_LENGTH must be a number between {IV_LENGTH_MIN}-{IV_LENGTH_MAX}")
        return v

    @field_validator('jwt_secret')
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        if not v:
            raise ValueError("JWT_SECRET must not be empty")
        return v

    @field_validator('jwt_expiration_hours')
    @classmethod
    def validate_expiration(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("JWT_EXPIRATION_HOURS must be positive")
        return v

    @property
    def key_bytes(self) -> bytes:
        return self.encryption_key.encode('utf-8')

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SecuritySettings":
        """
        Build settings, converting validation failures into ConfigInvalid.

        Args:
            values: Field values (missing keys fall back to defaults)

        Raises:
            ConfigInvalid: Any invariant is violated
        """
        try:
            return cls(**dict(values))
        except ValidationError as e:
            problems = "; ".join(err['msg'] for err in e.errors())
            raise ConfigInvalid(f"Invalid security configuration: {problems}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SecuritySettings":
        """Load settings from environment variables (see module docstring)."""
        env = os.environ if environ is None else environ

        encryption_key = env.get("ENCRYPTION_KEY")
        if not encryption_key:
            raise ConfigInvalid("ENCRYPTION_KEY is not set")

        values: Dict[str, Any] = {
            "encryption_key": encryption_key,
            "jwt_secret": env.get("JWT_SECRET", DEFAULT_JWT_SECRET),
            "jwt_algorithm": env.get("JWT_ALGORITHM", DEFAULT_JWT_ALGORITHM),
        }

        for field_name, var in (("iv_length", "IV_LENGTH"), ("jwt_expiration_hours", "JWT_EXPIRATION_HOURS")):
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = int(raw)
            except ValueError as e:
                raise ConfigInvalid(f"{var} must be an integer, got {raw!r}") from e

        origins = env.get("CORS_ALLOW_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        return cls.from_mapping(values)
