"""
Vault Crypto Core — Authenticated encryption and payload serialization.

Wire format produced by ``encrypt``:
    base64(iv 12B) "." base64(encrypted_payload + GCM_tag 16B)

The store keeps the two halves apart (entry nonce / payload); ``split_wire``
and ``join_wire`` convert between both representations.

Security Note:
    Never log plaintext or ciphertext values.
    A fresh random 96-bit IV is drawn for every call; an IV reused under the
    same key breaks both confidentiality and authenticity of AES-GCM.
"""
import os
import base64
import binascii
import logging
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import DecryptionFailed, KeyMaterialError, MalformedCiphertext

logger = logging.getLogger("safekey.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
WIRE_SEPARATOR = "."

_PAYLOAD_FIELDS = ("domain", "username", "password")


def _check_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray, memoryview)) or len(key) != KEY_LENGTH:
        size = len(key) if hasattr(key, "__len__") else "?"
        raise KeyMaterialError(
            f"Encryption key must be {KEY_LENGTH} bytes, got {size}"
        )
    return bytes(key)


def _b64decode(field: str, name: str) -> bytes:
    try:
        return base64.b64decode(field, validate=True)
    except (binascii.Error, ValueError) as err:
        raise MalformedCiphertext(f"{name} is not valid base64") from err


# ---------------------------------------------------------------------------
# Wire format helpers
# ---------------------------------------------------------------------------

def join_wire(iv: bytes, ciphertext: bytes) -> str:
    """Build the ``iv.ciphertext`` wire string from raw parts."""
    return (
        base64.b64encode(iv).decode("ascii")
        + WIRE_SEPARATOR
        + base64.b64encode(ciphertext).decode("ascii")
    )


def split_wire(wire: str) -> tuple[bytes, bytes]:
    """Validate a wire string and return ``(iv, ciphertext_with_tag)``.

    Raises:
        MalformedCiphertext: If the string does not hold exactly two
            non-empty base64 fields, the IV is not 12 bytes, or the
            ciphertext is shorter than the GCM tag.
    """
    if not isinstance(wire, str):
        raise MalformedCiphertext(
            f"Encrypted data must be str, got {type(wire).__name__}"
        )
    parts = wire.split(WIRE_SEPARATOR)
    if len(parts) != 2:
        raise MalformedCiphertext(
            f'Invalid encrypted data format. Expected "iv.ciphertext", '
            f"got {len(parts)} part(s)"
        )
    iv_b64, ct_b64 = parts
    if not iv_b64 or not ct_b64:
        raise MalformedCiphertext("Encrypted data has an empty field")
    iv = _b64decode(iv_b64, "IV")
    ciphertext = _b64decode(ct_b64, "Ciphertext")
    if len(iv) != NONCE_SIZE:
        raise MalformedCiphertext(
            f"Invalid IV length: expected {NONCE_SIZE} bytes, got {len(iv)}"
        )
    if len(ciphertext) < TAG_SIZE:
        raise MalformedCiphertext(
            f"Ciphertext too short: expected at least {TAG_SIZE} bytes "
            f"(for auth tag), got {len(ciphertext)}"
        )
    return iv, ciphertext


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key: bytes) -> str:
    """Encrypt plaintext with AES-256-GCM under a fresh IV.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte key.

    Returns:
        ``base64(iv).base64(ciphertext+tag)`` wire string.
    """
    cipher = AESGCM(_check_key(key))
    iv = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(iv, bytes(plaintext), None)
    return join_wire(iv, ct)


def decrypt(wire: str, key: bytes) -> bytes:
    """Decrypt a wire string produced by ``encrypt``.

    Args:
        wire: ``iv.ciphertext`` string.
        key: 32-byte key.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        MalformedCiphertext: If the wire string fails the format pre-checks.
        DecryptionFailed: If GCM tag verification fails.
    """
    iv, ct = split_wire(wire)
    cipher = AESGCM(_check_key(key))
    try:
        return cipher.decrypt(iv, ct, None)
    except InvalidTag as err:
        raise DecryptionFailed(
            "Failed to decrypt data: authentication tag mismatch"
        ) from err


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------

def serialize_payload(domain: str, username: str, password: str) -> bytes:
    """Serialize a credential record to bytes for encryption.

    Returns:
        orjson-encoded ``{"domain", "username", "password"}`` object.
    """
    return orjson.dumps(
        {"domain": domain, "username": username, "password": password}
    )


def deserialize_payload(data: bytes) -> dict[str, Any]:
    """Parse decrypted bytes back into a credential record.

    Raises:
        DecryptionFailed: If the bytes are not a JSON object holding
            non-empty string ``domain``, ``username`` and ``password``.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise DecryptionFailed(
            "Failed to parse decrypted credential data"
        ) from err
    if not isinstance(parsed, dict):
        raise DecryptionFailed("Invalid credential data: not an object")
    for name in _PAYLOAD_FIELDS:
        value = parsed.get(name)
        if not value or not isinstance(value, str):
            raise DecryptionFailed(
                f"Invalid credential data: {name} is required"
            )
    return parsed
