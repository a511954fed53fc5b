"""Cipher collaborators for blob payloads.

Key derivation is out of scope: ``SecretBoxCipher`` takes a ready
32-byte key.  The indexing core never inspects ciphertext.
"""

from __future__ import annotations

from typing import Protocol

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from nacl.utils import random as nacl_random

from memledger.errors import IntegrityFailure


class Cipher(Protocol):
    """Opaque encrypt/decrypt pair applied before blob upload."""

    @property
    def encrypts(self) -> bool:
        """Whether ciphertext differs from the plaintext bytes."""

    def encrypt(self, plaintext: str) -> bytes: ...

    def decrypt(self, ciphertext: bytes) -> str: ...


class PlaintextCipher:
    """UTF-8 passthrough for deployments that do not encrypt blobs."""

    @property
    def encrypts(self) -> bool:
        return False

    def encrypt(self, plaintext: str) -> bytes:
        return plaintext.encode("utf-8")

    def decrypt(self, ciphertext: bytes) -> str:
        return ciphertext.decode("utf-8")


class SecretBoxCipher:
    """XSalsa20-Poly1305 authenticated encryption (PyNaCl ``SecretBox``)."""

    def __init__(self, key: bytes) -> None:
        if len(key) != SecretBox.KEY_SIZE:
            raise ValueError(f"key must be {SecretBox.KEY_SIZE} bytes")
        self._box = SecretBox(key)

    @classmethod
    def generate(cls) -> SecretBoxCipher:
        return cls(nacl_random(SecretBox.KEY_SIZE))

    @property
    def encrypts(self) -> bool:
        return True

    def encrypt(self, plaintext: str) -> bytes:
        # The nonce is prepended to the ciphertext by SecretBox
        return bytes(self._box.encrypt(plaintext.encode("utf-8")))

    def decrypt(self, ciphertext: bytes) -> str:
        try:
            return self._box.decrypt(ciphertext).decode("utf-8")
        except CryptoError as exc:
            raise IntegrityFailure(expected="authenticated ciphertext", actual="forged or corrupt") from exc
