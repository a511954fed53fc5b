"""Unit tests for blob payload ciphers."""

from __future__ import annotations

import pytest

from memledger.crypto import PlaintextCipher
from memledger.crypto import SecretBoxCipher
from memledger.errors import IntegrityFailure


class TestPlaintextCipher:
    def test_is_utf8_passthrough(self):
        cipher = PlaintextCipher()
        assert cipher.encrypts is False
        assert cipher.encrypt("héllo") == "héllo".encode("utf-8")
        assert cipher.decrypt("héllo".encode("utf-8")) == "héllo"


class TestSecretBoxCipher:
    def test_ciphertext_hides_plaintext(self):
        cipher = SecretBoxCipher.generate()
        ciphertext = cipher.encrypt("meeting notes")
        assert cipher.encrypts is True
        assert b"meeting notes" not in ciphertext
        assert cipher.decrypt(ciphertext) == "meeting notes"

    def test_fresh_nonce_per_encryption(self):
        cipher = SecretBoxCipher.generate()
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_wrong_key_is_an_integrity_failure(self):
        ciphertext = SecretBoxCipher.generate().encrypt("secret")
        with pytest.raises(IntegrityFailure):
            SecretBoxCipher.generate().decrypt(ciphertext)

    def test_tampered_ciphertext_is_an_integrity_failure(self):
        cipher = SecretBoxCipher.generate()
        ciphertext = bytearray(cipher.encrypt("secret"))
        ciphertext[-1] ^= 0x01
        with pytest.raises(IntegrityFailure):
            cipher.decrypt(bytes(ciphertext))

    def test_key_length_is_checked(self):
        with pytest.raises(ValueError, match="32 bytes"):
            SecretBoxCipher(b"short")
