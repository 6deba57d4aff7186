"""
Secure Pipeline - Crypto Engine
Symmetric envelope codec shared by the decryption and encryption gates.

Security Architecture:
- Cipher: AES-256-CBC with PKCS#7 padding (via pycryptodome)
- IV: fresh CSPRNG bytes per message, configured length
- Wire format: "<ivHex>:<cipherHex>"

Every call is a single synchronous step: a message is either fully
encrypted/decrypted or the call raises; no partial state is returned.
"""

import binascii
import json
from typing import Any, Tuple, Union

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from config.security_settings import AES_KEY_BYTES, DEFAULT_IV_LENGTH, SecuritySettings

from .errors import CryptoFailure, CryptoFormatError

ENVELOPE_SEPARATOR = ":"


class EnvelopeCipher:
    """
    Encrypts and decrypts "<ivHex>:<cipherHex>" envelopes with one shared key.

    Instances are immutable after construction and safe to share between
    concurrent requests.
    """

    def __init__(self, key: bytes, iv_length: int = DEFAULT_IV_LENGTH):
        if len(key) != AES_KEY_BYTES:
            raise ValueError(f"AES-256 key must be {AES_KEY_BYTES} bytes, got {len(key)}")
        self._key = key
        self.iv_length = iv_length

    @classmethod
    def from_settings(cls, settings: SecuritySettings) -> "EnvelopeCipher":
        return cls(settings.key_bytes, settings.iv_length)

    # =========================================================================
    # Raw envelopes
    # =========================================================================

    def encrypt(self, plaintext: Union[str, bytes]) -> str:
        """
        Encrypt plaintext into an envelope under a fresh IV.

        Raises:
            CryptoFailure: The cipher rejected the key/IV or the input
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode('utf-8')

        iv = get_random_bytes(self.iv_length)
        try:
            cipher = AES.new(self._key, AES.MODE_CBC, iv=iv)
            ciphertext = cipher.encrypt(pad(plaintext, AES.block_size))
        except (TypeError, ValueError) as e:
            raise CryptoFailure(f"AES-CBC encryption failed: {e}") from e

        return f"{iv.hex()}{ENVELOPE_SEPARATOR}{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an envelope back to UTF-8 text.

        Raises:
            CryptoFormatError: Not exactly two ':'-separated segments
            CryptoFailure: Bad hex, wrong key, corrupted ciphertext, bad UTF-8
        """
        iv, ciphertext = self.split_envelope(envelope)
        try:
            cipher = AES.new(self._key, AES.MODE_CBC, iv=iv)
            plaintext = unpad(cipher.decrypt(ciphertext), AES.block_size)
            return plaintext.decode('utf-8')
        except (TypeError, ValueError) as e:
            # UnicodeDecodeError is a ValueError too
            raise CryptoFailure(f"AES-CBC decryption failed: {e}") from e

    @staticmethod
    def split_envelope(envelope: str) -> Tuple[bytes, bytes]:
        """Split and hex-decode an envelope into (iv, ciphertext)."""
        if not isinstance(envelope, str):
            raise CryptoFormatError(f"Envelope must be a string, got {type(envelope).__name__}")

        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 2:
            raise CryptoFormatError(f"Invalid encrypted format: expected 2 segments, got {len(parts)}")

        try:
            return binascii.unhexlify(parts[0]), binascii.unhexlify(parts[1])
        except (binascii.Error, ValueError) as e:
            raise CryptoFailure(f"Envelope is not valid hex: {e}") from e

    # =========================================================================
    # JSON payloads
    # =========================================================================

    def encrypt_json(self, obj: Any) -> str:
        """Serialize obj to compact JSON and encrypt it."""
        try:
            text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CryptoFailure(f"Payload is not JSON serializable: {e}") from e
        return self.encrypt(text)

    def decrypt_json(self, envelope: str) -> Any:
        """Decrypt an envelope and parse its JSON content."""
        text = self.decrypt(envelope)
        try:
            return json.loads(text)
        except ValueError as e:
            raise CryptoFailure(f"Decrypted payload is not valid JSON: {e}") from e
