# Credential Vault - Main Package
#
# Store a username + secret encrypted at rest, portable across Windows
# and POSIX systems.

__version__ = "0.1.0"
__description__ = "Cross-platform encrypted credential storage"

from .vault import (
    BackendKind,
    Credential,
    CredentialVault,
    CredentialVaultError,
    DecryptionFailed,
    SecretBuffer,
    load_credential,
    store_credential,
)

__all__ = [
    "__version__",
    "BackendKind",
    "Credential",
    "CredentialVault",
    "CredentialVaultError",
    "DecryptionFailed",
    "SecretBuffer",
    "load_credential",
    "store_credential",
]
