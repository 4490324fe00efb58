"""Credential vault — AES-256-GCM sealed provider keys.

Stored form: ``base64(nonce || ciphertext)`` with a 12-byte nonce.
The key is SHA-256 of the configured secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from agora.exceptions import DecryptError
from agora.ports import CredentialVault

NONCE_SIZE = 12


class AesGcmVault(CredentialVault):
    def __init__(self, secret: str) -> None:
        self._secret = secret
        self._aead = AESGCM(hashlib.sha256(secret.encode()).digest())

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    async def decrypt_credential(self, encrypted: str) -> str:
        if not self._secret:
            raise DecryptError("No credential secret configured")
        try:
            raw = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptError(f"Credential is not valid base64: {e}") from e
        if len(raw) <= NONCE_SIZE:
            raise DecryptError("Credential blob is too short")

        try:
            plaintext = self._aead.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise DecryptError("Credential failed authentication") from e
        return plaintext.decode("utf-8")
