"""
Symmetric encryption for credentials at rest.

Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from the configured
secret via PBKDF2. Derivation is deterministic, so only the secret has to
be kept; no key material is stored.

Usage:
    box = SecretBox(config.store.secret)
    token = box.encrypt('{"kind": "api_key", "key": "sk-..."}')
    box.decrypt(token)
"""

from __future__ import annotations

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt so the same secret derives the same key on every start
_SALT = b"tandem-credential-encryption-v1"
_ITERATIONS = 480_000


def derive_fernet_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class SecretBox:
    """Encrypts values when a secret is configured, passes them through otherwise."""

    def __init__(self, secret: str = "") -> None:
        self._fernet = Fernet(derive_fernet_key(secret)) if secret else None
        if self._fernet is None:
            logger.warning("TANDEM_SECRET not set, credentials are stored in PLAINTEXT")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if not self._fernet:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt, treating undecryptable values as legacy plaintext."""
        if not self._fernet:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.debug("Decryption failed, treating value as legacy plaintext")
            return ciphertext
