"""Hashing and authenticated encryption for payer data and audit blobs.

Payer PII (email, payer id) is stored only as a SHA-256 digest. Full gateway
responses are kept for dispute resolution as AES-256-GCM tokens of the form
``base64(nonce || ciphertext || tag)`` with a fresh 96-bit nonce per call.
"""
import base64
import binascii
import hashlib
import json
import os
from decimal import Decimal
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from settlement.exceptions import DecryptionError, EncryptionError

NONCE_SIZE = 12
KEY_SIZE = 32


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _canonical_bytes(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default).encode("utf-8")


class CryptoVault:
    """One-way hashing of PII and AES-GCM encryption of audit payloads."""

    def __init__(self, key_b64: Optional[str] = None):
        """
        Initialize the vault.

        Args:
            key_b64: Default base64-encoded 256-bit key used when callers do
                not pass key material explicitly.
        """
        self._key_b64 = key_b64

    @staticmethod
    def hash(plaintext: Optional[str]) -> Optional[str]:
        """
        Hash a PII value with SHA-256.

        Args:
            plaintext: Value to hash

        Returns:
            Lowercase hex digest, or None for missing/empty input
        """
        if not plaintext:
            return None
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    def _load_key(self, key_b64: Optional[str], error_cls: type) -> AESGCM:
        material = key_b64 if key_b64 is not None else self._key_b64
        if not material:
            raise error_cls("Encryption key is not configured")
        try:
            key = base64.b64decode(material, validate=True)
        except (binascii.Error, ValueError) as e:
            raise error_cls("Encryption key is not valid base64") from e
        if len(key) != KEY_SIZE:
            raise error_cls("Encryption key must be 256 bits")
        return AESGCM(key)

    def encrypt(self, value: Any, key_b64: Optional[str] = None) -> str:
        """
        Encrypt a JSON-serializable value.

        Args:
            value: Value to encrypt
            key_b64: Base64 key material (defaults to the vault key)

        Returns:
            Base64 token containing nonce and ciphertext

        Raises:
            EncryptionError: If the key is unusable or encryption fails
        """
        aead = self._load_key(key_b64, EncryptionError)
        try:
            data = _canonical_bytes(value)
            nonce = os.urandom(NONCE_SIZE)
            ciphertext = aead.encrypt(nonce, data, None)
        except (TypeError, ValueError, OverflowError) as e:
            raise EncryptionError("Failed to encrypt data") from e
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str, key_b64: Optional[str] = None) -> Any:
        """
        Decrypt a token produced by encrypt.

        Wrong keys, tampering and truncation all raise the same error.

        Args:
            token: Base64 token
            key_b64: Base64 key material (defaults to the vault key)

        Returns:
            The original value

        Raises:
            DecryptionError: If the token cannot be authenticated or decoded
        """
        aead = self._load_key(key_b64, DecryptionError)
        try:
            combined = base64.b64decode(token, validate=True)
            if len(combined) <= NONCE_SIZE:
                raise ValueError("token too short")
            plaintext = aead.decrypt(combined[:NONCE_SIZE], combined[NONCE_SIZE:], None)
            return json.loads(plaintext.decode("utf-8"))
        except (InvalidTag, binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError("Failed to decrypt data") from e
