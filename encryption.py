"""
At-rest encryption for journal entries.

Dream text leaves this service Fernet-encrypted, so rows in the hosted store
are unreadable without the server-side key. Set ENCRYPTION_KEY in production;
without it a key is derived from a fixed development passphrase.
"""

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

import config

log = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENC::"

_DEV_PASSPHRASE = b"DreamAnalyzer-Dev-Key"
_DEV_SALT = b"dream_analyzer_salt_v1"

_fernet = None


def _derive_dev_key() -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_DEV_SALT,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(_DEV_PASSPHRASE))


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        if config.ENCRYPTION_KEY:
            key = config.ENCRYPTION_KEY.encode()
        else:
            log.warning("ENCRYPTION_KEY not set; using development key")
            key = _derive_dev_key()
        _fernet = Fernet(key)
    return _fernet


def is_encrypted(text: str) -> bool:
    return text is not None and text.startswith(ENCRYPTED_PREFIX)


def encrypt_field(plaintext: str) -> str:
    """Encrypt a column value. Empty values are stored as-is."""
    if not plaintext:
        return plaintext
    token = _get_fernet().encrypt(plaintext.encode("utf-8"))
    return ENCRYPTED_PREFIX + token.decode("utf-8")


def decrypt_field(stored: str) -> str:
    """
    Decrypt a column value written by encrypt_field.

    Values without the prefix were written by another client and are returned
    unchanged. A value that fails to decrypt (rotated key) is returned as
    stored and logged.
    """
    if not is_encrypted(stored):
        return stored

    try:
        plain = _get_fernet().decrypt(stored[len(ENCRYPTED_PREFIX):].encode("utf-8"))
    except InvalidToken:
        log.warning("Could not decrypt stored field; returning ciphertext")
        return stored
    return plain.decode("utf-8")
