"""
Legacy Nonce Compatibility — Read support for entries written by older clients.

An earlier client stored nonces as the *base64 text* of the nonce, re-encoded
as bytes, instead of the raw nonce:

    entry nonce    12 raw bytes  →  16 bytes of base64 text
    session nonce  16 raw bytes  →  24 bytes of base64 text

``normalize_nonce`` is the only place this is handled. Drop this module once
no entry written by those clients remains.
"""
import re
import base64
import binascii
import logging

from .exceptions import MalformedCiphertext

logger = logging.getLogger("safekey.vault")

_B64_ALPHABET = re.compile(rb"[A-Za-z0-9+/]+={0,2}")


def encoded_length(raw_length: int) -> int:
    """Length of the padded base64 text for ``raw_length`` bytes."""
    return 4 * ((raw_length + 2) // 3)


def normalize_nonce(raw: bytes, expected_length: int) -> bytes:
    """Return the raw nonce, decoding one legacy base64 layer if present.

    Args:
        raw: Nonce field as read from the store.
        expected_length: Raw nonce size (12 for entry, 16 for session).

    Returns:
        Nonce of exactly ``expected_length`` bytes.

    Raises:
        MalformedCiphertext: If the field matches neither encoding.
    """
    raw = bytes(raw)
    if len(raw) == expected_length:
        return raw
    if len(raw) == encoded_length(expected_length) and _B64_ALPHABET.fullmatch(raw):
        try:
            decoded = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            decoded = b""
        if len(decoded) == expected_length:
            logger.warning(
                "Legacy base64-encoded nonce found (%d bytes), decoded to %d",
                len(raw), expected_length,
            )
            return decoded
    raise MalformedCiphertext(
        f"Invalid nonce length: expected {expected_length} bytes "
        f"(or {encoded_length(expected_length)} base64), got {len(raw)}"
    )
