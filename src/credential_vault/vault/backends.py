"""Credential backends: how a secret becomes ciphertext and back.

Two variants behind one interface:

- NativeProtectionBackend: Windows DPAPI.  The OS holds the key; records
  only open for the same user on the same machine.
- PortableSymmetricBackend: AES-256-GCM with a key derived from identity
  facts or read from a key file.  Records open on any platform that can
  reproduce the same key.

Backends only do cryptography.  Choosing one is the dispatcher's job and
persisting records is the codec's.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from . import dpapi
from .exceptions import DecryptionFailed, EncryptionFailed
from .key_deriver import (
    DEFAULT_IDENTITY_SOURCES,
    DerivedKey,
    SourceSpec,
    derive_key,
    load_key_from_file,
)
from .models import BackendKind, EncryptedRecord
from .secure_buffer import SecretBuffer

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

NONCE_LENGTH = 12  # 96-bit nonce for GCM
TAG_LENGTH = 16    # 128-bit GCM authentication tag


class CredentialBackend(ABC):
    """Seal a secret into an EncryptedRecord and open it again."""

    kind: BackendKind

    @classmethod
    @abstractmethod
    def is_supported(cls) -> bool:
        """Whether this backend can run on the current platform."""

    @abstractmethod
    def seal(self, identifier: str, secret: SecretBuffer) -> EncryptedRecord:
        """Encrypt ``secret``. Raises EncryptionFailed."""

    @abstractmethod
    def open(self, record: EncryptedRecord) -> SecretBuffer:
        """Decrypt ``record``. Raises DecryptionFailed."""

    def describe(self) -> Dict[str, Any]:
        """Non-secret details for audit logs."""
        return {"backend": self.kind.value}


class NativeProtectionBackend(CredentialBackend):
    """DPAPI-backed protection bound to the current Windows user."""

    kind = BackendKind.NATIVE_PROTECTION

    def __init__(self, description: str = "credential-vault"):
        self.description = description

    @classmethod
    def is_supported(cls) -> bool:
        return dpapi.is_available()

    def seal(self, identifier: str, secret: SecretBuffer) -> EncryptedRecord:
        record = EncryptedRecord(identifier=identifier, backend=self.kind, ciphertext=b"")
        try:
            record.ciphertext = dpapi.protect(
                secret.view(),
                description=self.description,
                entropy=record.associated_data(),
            )
        except OSError as e:
            raise EncryptionFailed(f"Native protection failed: {e}") from e
        return record

    def open(self, record: EncryptedRecord) -> SecretBuffer:
        try:
            plaintext = dpapi.unprotect(record.ciphertext, entropy=record.associated_data())
        except OSError:
            # Usually a record from another user or machine
            raise DecryptionFailed() from None
        secret = SecretBuffer(plaintext)
        del plaintext
        return secret


class PortableSymmetricBackend(CredentialBackend):
    """AES-256-GCM with a DerivedKey.

    Args:
        key_file: Read the key from this file instead of deriving it.
        identity_sources: Identity slots for derivation (ignored with key_file).
        environ: Environment mapping for identity resolution (default os.environ).
    """

    kind = BackendKind.PORTABLE_SYMMETRIC

    def __init__(
        self,
        key_file: Optional[Union[str, Path]] = None,
        identity_sources: Optional[Sequence[SourceSpec]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.key_file = Path(key_file) if key_file is not None else None
        self.identity_sources = tuple(identity_sources or DEFAULT_IDENTITY_SOURCES)
        self.environ = environ
        self.last_key_fingerprint: Optional[str] = None

    @classmethod
    def is_supported(cls) -> bool:
        return True

    def acquire_key(self) -> DerivedKey:
        """Load or re-derive the key. Callers wipe it when done."""
        if self.key_file is not None:
            key = load_key_from_file(self.key_file)
        else:
            key = derive_key(self.identity_sources, self.environ)
        self.last_key_fingerprint = key.fingerprint()
        return key

    def seal(self, identifier: str, secret: SecretBuffer) -> EncryptedRecord:
        record = EncryptedRecord(
            identifier=identifier,
            backend=self.kind,
            ciphertext=b"",
            nonce=os.urandom(NONCE_LENGTH),
        )
        with self.acquire_key() as key:
            try:
                sealed = AESGCM(key.material.view()).encrypt(
                    record.nonce, secret.view(), record.associated_data()
                )
            except (ValueError, TypeError, OverflowError) as e:
                raise EncryptionFailed(f"AES-GCM encryption failed: {e}") from e
        record.ciphertext = sealed[:-TAG_LENGTH]
        record.tag = sealed[-TAG_LENGTH:]
        return record

    def open(self, record: EncryptedRecord) -> SecretBuffer:
        if (
            record.nonce is None
            or len(record.nonce) != NONCE_LENGTH
            or record.tag is None
            or len(record.tag) != TAG_LENGTH
        ):
            raise DecryptionFailed()

        with self.acquire_key() as key:
            try:
                plaintext = AESGCM(key.material.view()).decrypt(
                    record.nonce, record.ciphertext + record.tag, record.associated_data()
                )
            except InvalidTag:
                # Wrong key and tampering are reported identically
                raise DecryptionFailed() from None
        secret = SecretBuffer(plaintext)
        del plaintext
        return secret

    def describe(self) -> Dict[str, Any]:
        details = super().describe()
        if self.key_file is not None:
            details["key_source"] = "key_file"
            details["key_file"] = str(self.key_file)
        else:
            details["key_source"] = "identity"
            details["identity_sources"] = [
                s if isinstance(s, str) else s.name for s in self.identity_sources
            ]
        if self.last_key_fingerprint:
            details["key_fingerprint"] = self.last_key_fingerprint
        return details

