"""AES-256-GCM encryption of GitHub tokens at rest

Stored format: ``base64(salt):base64(nonce):base64(ciphertext||tag)``.
A fresh salt and nonce are drawn for every message, so encrypting the same
token twice yields different ciphertext.
"""
import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from afauth.config import settings
from afauth.errors import DecryptionError, EncryptionError
from afauth.utils.logger import logger

SALT_LENGTH = 32
NONCE_LENGTH = 12
KEY_LENGTH = 32
TAG_LENGTH = 16
PBKDF2_ITERATIONS = 100_000
MIN_MASTER_KEY_LENGTH = 32


def _master_key() -> bytes:
    key = settings.GITHUB_TOKEN_ENCRYPTION_KEY
    if len(key) < MIN_MASTER_KEY_LENGTH:
        raise EncryptionError(
            f"GITHUB_TOKEN_ENCRYPTION_KEY must be at least {MIN_MASTER_KEY_LENGTH} characters"
        )
    return key.encode()


def _derive_key(master_key: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_key)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a token; ``None`` passes through unchanged."""
    if plaintext is None:
        return None

    master_key = _master_key()
    salt = os.urandom(SALT_LENGTH)
    nonce = os.urandom(NONCE_LENGTH)
    try:
        sealed = AESGCM(_derive_key(master_key, salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
    except Exception as exc:
        logger.error("Failed to encrypt data", extra={"error": type(exc).__name__})
        raise EncryptionError("Encryption failed") from exc

    return ":".join((_b64(salt), _b64(nonce), _b64(sealed)))


def decrypt(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a stored token; ``None`` passes through unchanged.

    Raises:
        DecryptionError: malformed, truncated or tampered input, or a value
            sealed under a different key.
    """
    if ciphertext is None:
        return None

    master_key = _master_key()
    parts = ciphertext.split(":")
    if len(parts) != 3:
        raise DecryptionError("Invalid encrypted data format")

    try:
        salt, nonce, sealed = (base64.b64decode(part, validate=True) for part in parts)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Invalid encrypted data encoding") from exc

    if len(salt) != SALT_LENGTH or len(nonce) != NONCE_LENGTH or len(sealed) < TAG_LENGTH:
        raise DecryptionError("Invalid encrypted data format")

    try:
        plaintext = AESGCM(_derive_key(master_key, salt)).decrypt(nonce, sealed, None)
    except InvalidTag as exc:
        logger.error("Failed to decrypt data: authentication tag mismatch")
        raise DecryptionError("Decryption failed - data may be corrupted or key may be incorrect") from exc

    return plaintext.decode("utf-8")


def is_encrypted(value: Optional[str]) -> bool:
    """Whether ``value`` looks like output of :func:`encrypt`.

    Used to tell legacy plaintext tokens apart from encrypted ones.
    """
    if not value:
        return False
    parts = value.split(":")
    if len(parts) != 3:
        return False
    try:
        salt, nonce, sealed = (base64.b64decode(part, validate=True) for part in parts)
    except (binascii.Error, ValueError):
        return False
    return len(salt) == SALT_LENGTH and len(nonce) == NONCE_LENGTH and len(sealed) >= TAG_LENGTH


def is_encryption_configured() -> bool:
    return len(settings.GITHUB_TOKEN_ENCRYPTION_KEY) >= MIN_MASTER_KEY_LENGTH
