"""
AES-256-GCM envelope for capture bytes at rest.

Envelope layout (one contiguous blob):

    iv (12 bytes) | auth tag (16 bytes) | ciphertext

`cryptography`'s AESGCM returns ciphertext||tag; the tag is moved in front
of the ciphertext so the envelope is readable by any AES-GCM implementation
that expects the iv|tag|body layout.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

IV_LENGTH  = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class EnvelopeError(ValueError):
    """Envelope is truncated, tampered with, or sealed under another key."""


class EnvelopeCipher:
    """Seals and opens storage envelopes with a single 256-bit key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> "EnvelopeCipher":
        return cls(bytes.fromhex(hex_key))

    def encrypt(self, plaintext: bytes) -> bytes:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return iv + tag + ciphertext

    def decrypt(self, envelope: bytes) -> bytes:
        if len(envelope) < IV_LENGTH + TAG_LENGTH:
            raise EnvelopeError("Envelope too short")

        iv         = envelope[:IV_LENGTH]
        tag        = envelope[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
        ciphertext = envelope[IV_LENGTH + TAG_LENGTH:]

        try:
            return self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise EnvelopeError("Envelope authentication failed") from exc
