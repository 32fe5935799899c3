"""
Credential Vault Exception Classes
"""


class CredentialVaultError(Exception):
    """Base exception for credential vault operations"""
    pass


class IdentityUnavailable(CredentialVaultError):
    """Raised when no source for an identity slot yields a value"""

    def __init__(self, slot: str):
        self.slot = slot
        super().__init__(f"Identity slot '{slot}' could not be resolved from any source")


class KeyFileUnreadable(CredentialVaultError):
    """Raised when the key file is missing or cannot be read"""
    pass


class KeyFileWrongLength(CredentialVaultError):
    """Raised when the key file does not hold exactly one key"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Key file must hold {expected} bytes; got {actual}")


class PathUnwritable(CredentialVaultError):
    """Raised when the destination directory is missing or not writable"""
    pass


class EncryptionFailed(CredentialVaultError):
    """Raised when the cipher or protection facility rejects the secret"""
    pass


class DecryptionFailed(CredentialVaultError):
    """Raised for a wrong key or tampered/corrupted data (deliberately indistinguishable)"""

    def __init__(self, message: str = "Credential could not be decrypted"):
        super().__init__(message)


class UnsupportedFormatVersion(CredentialVaultError):
    """Raised when a record was written by a newer format version"""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Record format version {found} is newer than supported version {supported}"
        )


class UnsupportedBackend(CredentialVaultError):
    """Raised when a backend is unknown or unavailable on this platform"""
    pass


class RecordUnreadable(CredentialVaultError):
    """Raised when a record file is missing or not a well-formed record"""
    pass


class BackendMismatch(CredentialVaultError):
    """Raised when a record was produced by a different backend"""

    def __init__(self, record_backend: str, requested_backend: str):
        self.record_backend = record_backend
        self.requested_backend = requested_backend
        super().__init__(
            f"Record was written by backend '{record_backend}', "
            f"not '{requested_backend}'"
        )
