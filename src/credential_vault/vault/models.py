"""
Credential Vault Data Models

Credential is what callers hand in and get back.  EncryptedRecord is the
on-disk shape: explicit, versioned JSON that any platform can parse.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .exceptions import DecryptionFailed, RecordUnreadable
from .secure_buffer import SecretBuffer

# ── Constants ────────────────────────────────────────────────────────

FORMAT_VERSION = 1  # Highest record version this library reads and writes


class BackendKind(str, Enum):
    """Which backend produced (or should consume) a record."""
    NATIVE_PROTECTION = "native_protection"
    PORTABLE_SYMMETRIC = "portable_symmetric"


# ── Credential ───────────────────────────────────────────────────────


@dataclass(eq=False)
class Credential:
    """Identifier (plaintext) + secret (wipeable buffer).

    Usable as a context manager; exiting wipes the secret.
    """
    identifier: str
    secret: SecretBuffer

    @classmethod
    def from_plaintext(
        cls, identifier: str, secret: Union[str, bytes, bytearray]
    ) -> "Credential":
        return cls(identifier=identifier, secret=SecretBuffer(secret))

    def wipe(self) -> None:
        self.secret.wipe()

    def __enter__(self) -> "Credential":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Credential):
            return NotImplemented
        return self.identifier == other.identifier and self.secret == other.secret

    __hash__ = None

    def __repr__(self) -> str:
        return f"Credential(identifier={self.identifier!r}, secret=<redacted>)"


# ── Encrypted Record ─────────────────────────────────────────────────


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: Any) -> bytes:
    # Corrupted payload is reported the same way as any other tampering
    if not isinstance(value, str):
        raise DecryptionFailed()
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise DecryptionFailed() from None


@dataclass
class EncryptedRecord:
    """Persisted form of one credential.

    Portable records carry ``nonce``/``ciphertext``/``tag``; native records
    carry the provider blob in ``ciphertext`` and serialize it as
    ``protected_blob``.
    """
    identifier: str
    backend: BackendKind
    ciphertext: bytes
    nonce: Optional[bytes] = None
    tag: Optional[bytes] = None
    format_version: int = FORMAT_VERSION

    def associated_data(self) -> bytes:
        """Header bytes bound into the AEAD tag (version, backend, identifier)."""
        header = {
            "backend": self.backend.value,
            "format_version": self.format_version,
            "identifier": self.identifier,
        }
        return json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "format_version": self.format_version,
            "backend": self.backend.value,
            "identifier": self.identifier,
        }
        if self.backend is BackendKind.PORTABLE_SYMMETRIC:
            data["nonce"] = _b64encode(self.nonce or b"")
            data["ciphertext"] = _b64encode(self.ciphertext)
            data["tag"] = _b64encode(self.tag or b"")
        else:
            data["protected_blob"] = _b64encode(self.ciphertext)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"

    @staticmethod
    def read_version(data: Dict[str, Any]) -> int:
        """Return the format_version of a parsed record of any layout."""
        version = data.get("format_version")
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise RecordUnreadable("Record has no valid format_version")
        return version

    @staticmethod
    def read_header(data: Dict[str, Any]) -> "RecordInfo":
        """Validate only the non-secret header fields of a version 1 record."""
        version = EncryptedRecord.read_version(data)

        identifier = data.get("identifier")
        if not isinstance(identifier, str):
            raise RecordUnreadable("Record has no identifier")

        backend = data.get("backend")
        if not isinstance(backend, str) or not backend:
            raise RecordUnreadable("Record has no backend tag")

        return RecordInfo(identifier=identifier, backend=backend, format_version=version)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedRecord":
        """Build a record from parsed JSON.

        Callers check the version and backend tag (see :meth:`read_header`)
        before calling this.
        """
        info = cls.read_header(data)
        try:
            backend = BackendKind(info.backend)
        except ValueError as e:
            raise RecordUnreadable(f"Unknown backend tag '{info.backend}'") from e

        if backend is BackendKind.PORTABLE_SYMMETRIC:
            for field in ("nonce", "ciphertext", "tag"):
                if field not in data:
                    raise RecordUnreadable(f"Record is missing '{field}'")
            return cls(
                identifier=info.identifier,
                backend=backend,
                nonce=_b64decode(data["nonce"]),
                ciphertext=_b64decode(data["ciphertext"]),
                tag=_b64decode(data["tag"]),
                format_version=info.format_version,
            )

        if "protected_blob" not in data:
            raise RecordUnreadable("Record is missing 'protected_blob'")
        return cls(
            identifier=info.identifier,
            backend=backend,
            ciphertext=_b64decode(data["protected_blob"]),
            format_version=info.format_version,
        )

    @staticmethod
    def parse_json(text: str) -> Dict[str, Any]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RecordUnreadable("Record is not valid JSON") from e
        if not isinstance(data, dict):
            raise RecordUnreadable("Record must be a JSON object")
        return data


@dataclass(frozen=True)
class RecordInfo:
    """Non-secret summary of a stored record."""
    identifier: str
    backend: str
    format_version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "backend": self.backend,
            "format_version": self.format_version,
        }
