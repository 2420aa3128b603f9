"""
PII Field-Level Encryption
AES-256-GCM with a per-value key derived from the master key via PBKDF2-SHA256.

Each encrypted value is stored as a JSON envelope of hex strings:
    {"encryptedValue", "iv", "salt", "authTag", "algorithm", "keyDerivation"}
"""

import hmac
import logging
import os
import secrets
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
KEY_DERIVATION = "pbkdf2"
KEY_LENGTH = 32
IV_LENGTH = 16
SALT_LENGTH = 32
TAG_LENGTH = 16
PBKDF2_ITERATIONS = 100_000
INDEX_HASH_ITERATIONS = 10_000
MIN_MASTER_KEY_LENGTH = 32

DEV_PLACEHOLDER_KEY = "development-key-change-in-production"  # noqa: S105

# Application data fields that must never be stored in plaintext
SENSITIVE_APPLICATION_FIELDS = ["ssn", "date_of_birth", "driver_license"]

ENVELOPE_KEYS = {"encryptedValue", "iv", "salt", "authTag", "algorithm", "keyDerivation"}


class PIIEncryptionError(Exception):
    """Raised for configuration, encryption and decryption failures"""


def _master_key(master_key: Optional[str] = None) -> str:
    key = master_key if master_key is not None else os.getenv("PII_ENCRYPTION_KEY")
    if not key:
        raise PIIEncryptionError("PII_ENCRYPTION_KEY environment variable is required")
    if len(key) < MIN_MASTER_KEY_LENGTH:
        raise PIIEncryptionError(
            f"PII_ENCRYPTION_KEY must be at least {MIN_MASTER_KEY_LENGTH} characters long"
        )
    return key


def _derive_key(master_key: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, iterations=iterations)
    return kdf.derive(master_key.encode("utf-8"))


def encrypt_pii(plaintext: str, master_key: Optional[str] = None) -> dict:
    """Encrypt a single value and return its envelope"""
    if plaintext is None or not str(plaintext).strip():
        raise PIIEncryptionError("Cannot encrypt empty or null data")

    key = _master_key(master_key)
    salt = secrets.token_bytes(SALT_LENGTH)
    iv = secrets.token_bytes(IV_LENGTH)

    sealed = AESGCM(_derive_key(key, salt)).encrypt(iv, str(plaintext).encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return {
        "encryptedValue": ciphertext.hex(),
        "iv": iv.hex(),
        "salt": salt.hex(),
        "authTag": tag.hex(),
        "algorithm": ALGORITHM,
        "keyDerivation": KEY_DERIVATION,
    }


def decrypt_pii(envelope: dict, master_key: Optional[str] = None) -> str:
    """Decrypt an envelope produced by encrypt_pii; tampering raises PIIEncryptionError"""
    if not is_encrypted(envelope):
        raise PIIEncryptionError("Invalid encrypted data structure")
    if envelope["algorithm"] != ALGORITHM or envelope["keyDerivation"] != KEY_DERIVATION:
        raise PIIEncryptionError(f"Unsupported algorithm: {envelope['algorithm']}")

    key = _master_key(master_key)
    try:
        salt = bytes.fromhex(envelope["salt"])
        iv = bytes.fromhex(envelope["iv"])
        sealed = bytes.fromhex(envelope["encryptedValue"]) + bytes.fromhex(envelope["authTag"])
    except ValueError as e:
        raise PIIEncryptionError("Invalid encrypted data structure") from e

    try:
        plaintext = AESGCM(_derive_key(key, salt)).decrypt(iv, sealed, None)
    except InvalidTag as e:
        raise PIIEncryptionError("Decryption failed: data is corrupted or the key is wrong") from e
    return plaintext.decode("utf-8")


def is_encrypted(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and ENVELOPE_KEYS.issubset(value.keys())
        and all(isinstance(value[k], str) for k in ENVELOPE_KEYS)
    )


def encrypt_fields(data: dict, fields: list[str], master_key: Optional[str] = None) -> dict:
    """Return a copy with the named string fields encrypted; blanks and non-strings are left as-is"""
    result = dict(data)
    for field in fields:
        value = result.get(field)
        if isinstance(value, str) and value.strip():
            result[field] = encrypt_pii(value, master_key)
    return result


def decrypt_fields(data: dict, fields: list[str], master_key: Optional[str] = None) -> dict:
    result = dict(data)
    for field in fields:
        if is_encrypted(result.get(field)):
            result[field] = decrypt_pii(result[field], master_key)
    return result


def mask_fields(data: dict, fields: list[str]) -> dict:
    """Replace encrypted envelopes with a redaction marker for API responses"""
    result = dict(data)
    for field in fields:
        if is_encrypted(result.get(field)):
            result[field] = "[encrypted]"
    return result


def secure_compare(envelope: dict, plaintext: str, master_key: Optional[str] = None) -> bool:
    """Constant-time comparison of an encrypted value with a candidate plaintext"""
    try:
        decrypted = decrypt_pii(envelope, master_key)
    except PIIEncryptionError:
        return False
    return hmac.compare_digest(decrypted.encode("utf-8"), plaintext.encode("utf-8"))


def generate_secure_token(length: int = 32) -> str:
    return secrets.token_hex(length)


def hash_for_index(value: str, salt: Optional[str] = None, master_key: Optional[str] = None) -> str:
    """
    Deterministic hash for equality lookups on encrypted columns.
    Without an explicit salt the master key is used as salt.
    """
    key = _master_key(master_key)
    salt_bytes = (salt or key).encode("utf-8")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt_bytes, iterations=INDEX_HASH_ITERATIONS
    )
    return kdf.derive(value.encode("utf-8")).hex()


def validate_configuration(master_key: Optional[str] = None, environment: Optional[str] = None) -> dict:
    """Check the key and run an encrypt/decrypt round trip; returns {"valid", "errors"}"""
    errors = []
    environment = (environment or os.getenv("ENVIRONMENT", "development")).lower()

    try:
        key = _master_key(master_key)
        if environment == "production" and key == DEV_PLACEHOLDER_KEY:
            errors.append("Production environment is using the development encryption key")
        sample = "configuration-check"
        if decrypt_pii(encrypt_pii(sample, key), key) != sample:
            errors.append("Encryption round trip returned a different value")
    except PIIEncryptionError as e:
        errors.append(str(e))

    if errors:
        logger.error(f"❌ PII encryption configuration invalid: {errors}")
    return {"valid": not errors, "errors": errors}
