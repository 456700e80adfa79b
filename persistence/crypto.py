import os
import base64
from typing import Collection, Optional

from dotenv import load_dotenv
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

load_dotenv()

FORMAT_HEADER = b"v1"
NONCE_SIZE = 12


class ChannelCipher:
    """AES-256-GCM for checkpointed channel values, with the channel bound as associated data."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError(
                f"Encryption key must be 32 bytes for AES-256. Got {len(key)} bytes."
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_b64(cls, key_b64: str) -> "ChannelCipher":
        return cls(base64.b64decode(key_b64))

    @classmethod
    def from_env(cls, var: str = "ENCRYPTION_KEY") -> "ChannelCipher":
        key_b64: Optional[str] = os.getenv(var)
        if not key_b64:
            raise RuntimeError(f"{var} missing in .env")
        return cls.from_b64(key_b64)

    @staticmethod
    def should_encrypt(key: str, encrypt_keys: Collection[str]) -> bool:
        return key in encrypt_keys

    def encrypt_bytes(self, plaintext: bytes, aad: bytes) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext, aad)
        return base64.b64encode(FORMAT_HEADER + nonce + ct).decode("utf-8")

    def decrypt_bytes(self, payload_b64: str, aad: bytes) -> bytes:
        raw = base64.b64decode(payload_b64.encode("utf-8"))
        if raw[: len(FORMAT_HEADER)] != FORMAT_HEADER:
            raise ValueError("Not encrypted with expected format/version header")
        nonce = raw[len(FORMAT_HEADER) : len(FORMAT_HEADER) + NONCE_SIZE]
        ct = raw[len(FORMAT_HEADER) + NONCE_SIZE :]
        return self._aesgcm.decrypt(nonce, ct, aad)
