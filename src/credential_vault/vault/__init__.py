# Vault Module - Credential storage encrypted at rest
#
# Native protection (Windows DPAPI) where available, otherwise
# AES-256-GCM with an identity-derived or key-file key.

from .backends import CredentialBackend, NativeProtectionBackend, PortableSymmetricBackend
from .codec import CredentialCodec
from .dispatcher import native_protection_available, select_backend
from .exceptions import (
    BackendMismatch,
    CredentialVaultError,
    DecryptionFailed,
    EncryptionFailed,
    IdentityUnavailable,
    KeyFileUnreadable,
    KeyFileWrongLength,
    PathUnwritable,
    RecordUnreadable,
    UnsupportedBackend,
    UnsupportedFormatVersion,
)
from .key_deriver import DerivedKey, derive_key, load_key_from_file, write_key_file
from .models import FORMAT_VERSION, BackendKind, Credential, EncryptedRecord, RecordInfo
from .secure_buffer import SecretBuffer, SecretWiped
from .vault_manager import CredentialVault, get_vault, load_credential, store_credential

__all__ = [
    # Vault
    "CredentialVault",
    "get_vault",
    "store_credential",
    "load_credential",
    # Components
    "CredentialCodec",
    "CredentialBackend",
    "NativeProtectionBackend",
    "PortableSymmetricBackend",
    "select_backend",
    "native_protection_available",
    "DerivedKey",
    "derive_key",
    "load_key_from_file",
    "write_key_file",
    # Models
    "FORMAT_VERSION",
    "BackendKind",
    "Credential",
    "EncryptedRecord",
    "RecordInfo",
    "SecretBuffer",
    "SecretWiped",
    # Errors
    "CredentialVaultError",
    "IdentityUnavailable",
    "KeyFileUnreadable",
    "KeyFileWrongLength",
    "PathUnwritable",
    "EncryptionFailed",
    "DecryptionFailed",
    "UnsupportedFormatVersion",
    "UnsupportedBackend",
    "RecordUnreadable",
    "BackendMismatch",
]
