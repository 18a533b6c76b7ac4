"""
Vault Key Derivation — Domain fingerprints and per-encryption session keys.

Key hierarchy:
- Fingerprint: HMAC-SHA256(KM, normalize_domain(domain)) → store lookup key
- Session key: HKDF-SHA256(KM, salt=empty, info=session_nonce) → AES-256 key
- Master secret: SHA256(identity || canonical_share) → KM (key-recovery side)

Every function here is pure: no randomness besides the explicit nonce
generators, no I/O.

Security Note:
    KM must be exactly 32 bytes. Never pad or truncate it, a reshaped key
    yields fingerprints the vault can never match again.
"""
import os
import re
import base64
import binascii
from typing import Union

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .exceptions import KeyMaterialError

KEY_LENGTH = 32  # AES-256 / HMAC-SHA256
SESSION_NONCE_SIZE = 16
ENTRY_NONCE_SIZE = 12  # 96-bit GCM IV
FINGERPRINT_SIZE = 32

KeyMaterial = Union[bytes, bytearray, memoryview, str]

_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*://")
_PORT = re.compile(r":\d*$")
_BRACKET_PORT = re.compile(r"(?<=\]):\d*$")


# ---------------------------------------------------------------------------
# Key material validation
# ---------------------------------------------------------------------------

def validate_master_secret(km: KeyMaterial) -> bytes:
    """Return KM as raw bytes, rejecting anything that is not 32 usable bytes.

    Args:
        km: Raw key bytes, or the base64 text KM is kept in at rest.

    Returns:
        32-byte master secret.

    Raises:
        KeyMaterialError: If KM is not base64 (when text), not exactly
            32 bytes, or all zero.
    """
    if isinstance(km, str):
        try:
            km = base64.b64decode(km, validate=True)
        except (binascii.Error, ValueError) as err:
            raise KeyMaterialError("Master secret is not valid base64") from err
    if not isinstance(km, (bytes, bytearray, memoryview)):
        raise KeyMaterialError(
            f"Master secret must be bytes, got {type(km).__name__}"
        )
    raw = bytes(km)
    if len(raw) != KEY_LENGTH:
        raise KeyMaterialError(
            f"Master secret must be exactly {KEY_LENGTH} bytes, got {len(raw)}"
        )
    if not any(raw):
        raise KeyMaterialError("Master secret must not be all zero bytes")
    return raw


# ---------------------------------------------------------------------------
# Domain fingerprint
# ---------------------------------------------------------------------------

def normalize_domain(domain: str) -> str:
    """Reduce a domain or URL to the canonical host used for fingerprints.

    Lowercases and trims, then drops scheme, userinfo, path, query,
    fragment and port, one leading ``www.`` label and trailing dots.

    >>> normalize_domain("  HTTPS://www.Example.com:443/login?next=/ ")
    'example.com'
    """
    if not isinstance(domain, str):
        raise TypeError(f"domain must be str, got {type(domain).__name__}")
    value = domain.strip().lower()
    value = _SCHEME.sub("", value)
    value = re.split(r"[/?#]", value, maxsplit=1)[0]
    value = value.rsplit("@", 1)[-1]
    if value.startswith("["):
        value = _BRACKET_PORT.sub("", value)
    else:
        value = _PORT.sub("", value)
    if value.startswith("www."):
        value = value[4:]
    value = value.rstrip(".")
    if not value:
        raise ValueError(f"Cannot normalize empty domain: {domain!r}")
    return value


def domain_fingerprint(domain: str, km: KeyMaterial) -> bytes:
    """Compute the 32-byte store lookup key for a domain.

    Args:
        domain: Domain or URL; normalized before hashing.
        km: Master secret.

    Returns:
        HMAC-SHA256(KM, utf8(normalized domain)).
    """
    key = validate_master_secret(km)
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(normalize_domain(domain).encode("utf-8"))
    return mac.finalize()


# ---------------------------------------------------------------------------
# Session key
# ---------------------------------------------------------------------------

def derive_session_key(km: KeyMaterial, session_nonce: bytes) -> bytes:
    """Derive the per-encryption session key KS.

    Args:
        km: Master secret.
        session_nonce: 16-byte nonce stored beside the ciphertext.

    Returns:
        32-byte derived key.
    """
    key = validate_master_secret(km)
    if len(session_nonce) != SESSION_NONCE_SIZE:
        raise KeyMaterialError(
            f"Session nonce must be {SESSION_NONCE_SIZE} bytes, "
            f"got {len(session_nonce)}"
        )
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=b"",
        info=bytes(session_nonce),
    )
    return hkdf.derive(key)


def generate_session_nonce() -> bytes:
    return os.urandom(SESSION_NONCE_SIZE)


# ---------------------------------------------------------------------------
# Master secret reconstruction
# ---------------------------------------------------------------------------

def derive_master_secret(identity: str, share: bytes) -> bytes:
    """Reconstruct KM from an identity and its canonical key share.

    Args:
        identity: Account identity the share was issued for.
        share: Canonical share bytes (see ``keyshare.pick_canonical``).

    Returns:
        32-byte master secret, SHA256(utf8(identity) || share).
    """
    if not share:
        raise KeyMaterialError("Key share is empty")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(identity.encode("utf-8"))
    digest.update(bytes(share))
    return digest.finalize()
