"""SafeKey Vault.

Client-side credential vault: per-domain credentials encrypted under keys
derived from one master secret, addressed by domain fingerprint.
"""
from .version import __version__
from .vault import (
    CredentialVault,
    Credential,
    VaultSession,
    VaultConfig,
    MasterSecretProvider,
    IdentityProof,
)

__all__ = (
    "__version__",
    "CredentialVault",
    "Credential",
    "VaultSession",
    "VaultConfig",
    "MasterSecretProvider",
    "IdentityProof",
)
