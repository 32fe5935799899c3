# Credential Vault Manager
#
# Caller-facing API: store / load / inspect / delete credentials at a path.
# Resolves the backend (argument > settings > auto-detect), delegates to the
# codec, and records every outcome in the audit trail.
#
# Security:
# - Secrets are copied into SecretBuffers and wiped after sealing
# - Audit entries carry identifier, path, backend and key fingerprint only
# - Failures are logged and re-raised as the same typed error

import logging
from pathlib import Path
from typing import Optional, Union

from ..core import EventSeverity, EventType, get_audit_logger
from .backends import CredentialBackend
from .codec import CredentialCodec
from .dispatcher import BackendHint, select_backend
from .exceptions import CredentialVaultError, DecryptionFailed
from .key_deriver import write_key_file
from .models import Credential, RecordInfo
from .secure_buffer import SecretBuffer

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
SecretLike = Union[str, bytes, bytearray, SecretBuffer]


class CredentialVault:
    """
    Store and load credentials encrypted at rest.

    Usage::

        vault = CredentialVault()
        vault.store("svc-user", "p@ss1", "~/.creds/svc.json")
        with vault.load("~/.creds/svc.json") as cred:
            login(cred.identifier, cred.secret.reveal_text())

    Args:
        settings: VaultSettings; defaults to the process-wide settings.
        audit_logger: AuditLogger; defaults to the global audit logger.
        environ: Environment mapping for identity resolution (tests, services).
    """

    def __init__(self, settings=None, audit_logger=None, environ=None):
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        self.settings = settings
        self.audit = audit_logger or get_audit_logger()
        self.environ = environ
        self.codec = CredentialCodec()

    # ── Backend resolution ───────────────────────────────────────────

    def resolve_backend(self, backend: BackendHint = None) -> CredentialBackend:
        """Pick the backend for one call (argument > settings > auto)."""
        hint = backend if backend is not None else self.settings.backend
        return select_backend(
            hint,
            key_file=self.settings.key_file,
            identity_sources=self.settings.identity_sources,
            environ=self.environ,
        )

    # ── Operations ───────────────────────────────────────────────────

    def store(
        self,
        identifier: str,
        secret: SecretLike,
        path: PathLike,
        backend: BackendHint = None,
    ) -> Path:
        """
        Encrypt and persist a credential.

        Args:
            identifier: Non-secret identifier (e.g. username)
            secret: Secret value; str is UTF-8 encoded
            path: Destination record file
            backend: Backend override ("native_protection" / "portable_symmetric")

        Returns:
            Path the record was written to

        Raises:
            CredentialVaultError subclasses (see exceptions.py)
        """
        record_path = Path(path).expanduser()
        backend_name = None
        owned = not isinstance(secret, SecretBuffer)
        buffer = SecretBuffer(secret) if owned else secret
        try:
            selected = self.resolve_backend(backend)
            backend_name = selected.kind.value
            self.codec.store(Credential(identifier, buffer), record_path, selected)
        except CredentialVaultError as e:
            self.audit.log_credential_event(
                EventType.CREDENTIAL_STORE_FAILED,
                identifier,
                record_path,
                backend=backend_name,
                severity=EventSeverity.INVESTIGATE,
                details={"error": type(e).__name__},
            )
            raise
        finally:
            if owned:
                buffer.wipe()

        self.audit.log_credential_event(
            EventType.CREDENTIAL_STORED,
            identifier,
            record_path,
            backend=backend_name,
            details=selected.describe(),
        )
        return record_path

    def load(self, path: PathLike, backend: BackendHint = None) -> Credential:
        """
        Read and decrypt a credential.

        The returned Credential's secret is a SecretBuffer; use the
        credential as a context manager (or call wipe()) when done.

        Raises:
            DecryptionFailed: Wrong key, other user/machine, or tampered record
            CredentialVaultError subclasses (see exceptions.py)
        """
        record_path = Path(path).expanduser()
        backend_name = None
        try:
            selected = self.resolve_backend(backend)
            backend_name = selected.kind.value
            credential = self.codec.load(record_path, selected)
        except CredentialVaultError as e:
            severity = (
                EventSeverity.ALERT
                if isinstance(e, DecryptionFailed)
                else EventSeverity.INVESTIGATE
            )
            self.audit.log_credential_event(
                EventType.CREDENTIAL_LOAD_FAILED,
                None,
                record_path,
                backend=backend_name,
                severity=severity,
                details={"error": type(e).__name__},
            )
            raise

        self.audit.log_credential_event(
            EventType.CREDENTIAL_LOADED,
            credential.identifier,
            record_path,
            backend=backend_name,
        )
        return credential

    def inspect(self, path: PathLike) -> RecordInfo:
        """Identifier, backend and format version of a record (no decryption)."""
        return self.codec.inspect(Path(path).expanduser())

    def exists(self, path: PathLike) -> bool:
        return Path(path).expanduser().is_file()

    def delete(self, path: PathLike) -> bool:
        """Remove a stored credential. Returns False if nothing was there."""
        record_path = Path(path).expanduser()
        try:
            record_path.unlink()
        except FileNotFoundError:
            return False

        self.audit.log_credential_event(
            EventType.CREDENTIAL_DELETED, None, record_path
        )
        return True

    def create_key_file(self, path: Optional[PathLike] = None) -> Path:
        """Create a random portable key file (defaults to the configured one)."""
        target = path if path is not None else self.settings.key_file
        if target is None:
            raise ValueError("No key file path given and none configured")
        key_path = write_key_file(Path(target).expanduser())
        self.audit.log_event(
            EventType.KEY_FILE_CREATED,
            EventSeverity.INFO,
            "Created portable key file",
            details={"path": str(key_path)},
        )
        return key_path


# ── Module helpers ───────────────────────────────────────────────────

_default_vault: Optional[CredentialVault] = None


def get_vault() -> CredentialVault:
    """Get the default vault (singleton pattern)."""
    global _default_vault
    if _default_vault is None:
        _default_vault = CredentialVault()
    return _default_vault


def reset_vault() -> None:
    global _default_vault
    _default_vault = None


def store_credential(
    identifier: str, secret: SecretLike, path: PathLike, backend: BackendHint = None
) -> Path:
    return get_vault().store(identifier, secret, path, backend)


def load_credential(path: PathLike, backend: BackendHint = None) -> Credential:
    return get_vault().load(path, backend)
