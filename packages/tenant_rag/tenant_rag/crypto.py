"""AES-256-GCM envelope encryption for tenant secrets.

Envelope format: ``base64(nonce):base64(tag):base64(ciphertext)``. Every
decryption failure (malformed envelope, wrong key, tampered bytes) surfaces as
:class:`~tenant_rag.errors.SecretsDecryptionError` with the same message.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import SecretsDecryptionError

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def generate_key() -> str:
    """Return a new base64 encoded master key."""

    return base64.b64encode(os.urandom(KEY_BYTES)).decode("ascii")


def secure_compare(left: Union[str, bytes, None], right: Union[str, bytes, None]) -> bool:
    """Constant-time comparison for secrets."""

    if left is None or right is None:
        return False
    if isinstance(left, str):
        left = left.encode("utf-8")
    if isinstance(right, str):
        right = right.encode("utf-8")
    return hmac.compare_digest(left, right)


def is_encrypted(value: Optional[str]) -> bool:
    """Cheap structural check for the envelope format."""

    if not value:
        return False
    parts = value.split(":")
    if len(parts) != 3:
        return False
    try:
        nonce = base64.b64decode(parts[0], validate=True)
        tag = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(nonce) == NONCE_BYTES and len(tag) == TAG_BYTES


class SecretCipher:
    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise ValueError(f"master key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_base64(cls, encoded: Optional[str]) -> "SecretCipher":
        if not encoded:
            raise ValueError("MASTER_KEY is not configured")
        try:
            key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("MASTER_KEY must be base64 encoded") from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ":".join(base64.b64encode(part).decode("ascii") for part in (nonce, tag, ciphertext))

    def decrypt(self, envelope: str) -> str:
        try:
            nonce_b64, tag_b64, ciphertext_b64 = envelope.split(":")
            nonce = base64.b64decode(nonce_b64, validate=True)
            tag = base64.b64decode(tag_b64, validate=True)
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        except (AttributeError, ValueError, binascii.Error) as exc:
            raise SecretsDecryptionError() from exc
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise SecretsDecryptionError()
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise SecretsDecryptionError() from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SecretsDecryptionError() from exc
