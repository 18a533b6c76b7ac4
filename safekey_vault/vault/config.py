"""
Vault Configuration — Master secret loading and validated settings.

Reads settings from environment variables:
    SAFEKEY_STORE_TIMEOUT       = <seconds, float>
    SAFEKEY_RECOVERY_TIMEOUT    = <seconds, float>
    SAFEKEY_MAX_RETRIES         = <integer>
    SAFEKEY_RETRY_BACKOFF       = <seconds, float>
    SAFEKEY_SESSION_MAX_AGE     = <seconds, integer>
    SAFEKEY_SAVE_QUEUE_MAX_AGE  = <seconds, integer>
    SAFEKEY_MASTER_SECRET       = <base64-encoded 32-byte key> (tooling only)

Security Note:
    Never log key material. The master secret is normally produced by the
    key-recovery boundary; the env loader exists for operators and tests.
"""
import os
import base64
import secrets
import logging

from pydantic import BaseModel, Field, field_validator

from .exceptions import KeyMaterialError

logger = logging.getLogger("safekey.vault")

MASTER_SECRET_ENV = "SAFEKEY_MASTER_SECRET"


def load_master_secret() -> bytes:
    """Load the master secret from the SAFEKEY_MASTER_SECRET env var.

    Returns:
        Raw 32-byte master secret.

    Raises:
        RuntimeError: If the variable is not set.
        KeyMaterialError: If it does not decode to exactly 32 bytes.
    """
    value = os.environ.get(MASTER_SECRET_ENV)
    if not value:
        raise RuntimeError(
            f"No master secret found in environment. "
            f"Set {MASTER_SECRET_ENV}=<base64-encoded-32-byte-key>"
        )
    try:
        key_bytes = base64.b64decode(value, validate=True)
    except ValueError as err:
        raise KeyMaterialError(
            f"{MASTER_SECRET_ENV} is not valid base64"
        ) from err
    if len(key_bytes) != 32:
        raise KeyMaterialError(
            f"{MASTER_SECRET_ENV} must decode to exactly 32 bytes, "
            f"got {len(key_bytes)}"
        )
    logger.debug("Loaded master secret from %s", MASTER_SECRET_ENV)
    return key_bytes


def generate_master_secret() -> str:
    """Generate a random 32-byte master secret and return it as base64.

    Returns:
        Base64-encoded 32-byte key string.
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    store_timeout: float = Field(default=5.0, gt=0)
    recovery_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_backoff: float = Field(default=0.2, ge=0)
    session_max_age: int = Field(default=86400, ge=60)
    save_queue_max_age: int = Field(default=3600, ge=60)

    @field_validator("retry_backoff")
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        """Keep the backoff below the store timeout scale."""
        if v > 60:
            raise ValueError(f"retry_backoff too large: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated VaultConfig instance.
        """
        mapping = {
            "store_timeout": "SAFEKEY_STORE_TIMEOUT",
            "recovery_timeout": "SAFEKEY_RECOVERY_TIMEOUT",
            "max_retries": "SAFEKEY_MAX_RETRIES",
            "retry_backoff": "SAFEKEY_RETRY_BACKOFF",
            "session_max_age": "SAFEKEY_SESSION_MAX_AGE",
            "save_queue_max_age": "SAFEKEY_SAVE_QUEUE_MAX_AGE",
        }
        values = {
            field: os.environ[env]
            for field, env in mapping.items()
            if env in os.environ
        }
        return cls(**values)
