# Credential Codec
# Turns a Credential into a persisted EncryptedRecord and back.
#
# Write path: backend.seal() -> JSON -> temp file in the target directory
#   (mode 600, fsync) -> os.replace().  A reader never sees a partial file;
#   concurrent writers to one path resolve as last-writer-wins at the rename.
# Read path: parse -> check format_version -> check backend tag ->
#   backend.open().  A newer format is rejected before any decryption.

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union

from .backends import CredentialBackend
from .exceptions import (
    BackendMismatch,
    PathUnwritable,
    RecordUnreadable,
    UnsupportedBackend,
    UnsupportedFormatVersion,
)
from .models import FORMAT_VERSION, Credential, EncryptedRecord, RecordInfo

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via temp file + rename (mode 600).

    Raises:
        PathUnwritable: Directory missing or not writable, or the write,
            fsync or rename failed (disk full, I/O error).
    """
    directory = path.parent
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(directory)
        )
    except FileNotFoundError as e:
        raise PathUnwritable(f"Directory does not exist: {directory}") from e
    except NotADirectoryError as e:
        raise PathUnwritable(f"Not a directory: {directory}") from e
    except PermissionError as e:
        raise PathUnwritable(f"No permission to write in {directory}") from e
    except OSError as e:
        raise PathUnwritable(f"Cannot write in {directory}: {e.strerror}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except OSError as e:
        # Clean up temp file on failure
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise PathUnwritable(f"Cannot write {path}: {e.strerror or e}") from e
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def read_record_data(path: PathLike) -> Dict[str, Any]:
    """Read and parse a record file into a dict.

    Raises:
        RecordUnreadable: Missing file, unreadable file, or invalid JSON.
    """
    record_path = Path(path)
    try:
        text = record_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise RecordUnreadable(f"No credential record at {record_path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise RecordUnreadable(f"Cannot read credential record {record_path}") from e
    return EncryptedRecord.parse_json(text)


def check_format_version(version: int) -> None:
    if version > FORMAT_VERSION:
        raise UnsupportedFormatVersion(version, FORMAT_VERSION)


class CredentialCodec:
    """Persist credentials through a CredentialBackend.

    Usage::

        codec = CredentialCodec()
        codec.store(Credential.from_plaintext("svc-user", "p@ss1"), path, backend)
        with codec.load(path, backend) as cred:
            use(cred.identifier, cred.secret.reveal())
    """

    def store(self, credential: Credential, path: PathLike, backend: CredentialBackend) -> Path:
        """Encrypt ``credential`` and write it atomically to ``path``.

        Raises:
            UnsupportedBackend: Backend not available on this platform.
            EncryptionFailed: Cipher or protection facility failed.
            PathUnwritable: Destination directory missing or not writable.
            IdentityUnavailable / KeyFileUnreadable / KeyFileWrongLength:
                The portable key could not be obtained.
        """
        if not backend.is_supported():
            raise UnsupportedBackend(
                f"Backend '{backend.kind.value}' is not available on this platform"
            )

        record_path = Path(path)
        record = backend.seal(credential.identifier, credential.secret)
        atomic_write_text(record_path, record.to_json())
        logger.debug(
            "Stored credential %r at %s (%s)",
            credential.identifier, record_path, backend.kind.value,
        )
        return record_path

    def load(self, path: PathLike, backend: CredentialBackend) -> Credential:
        """Read and decrypt the record at ``path``.

        Raises:
            RecordUnreadable: Missing or malformed record.
            UnsupportedFormatVersion: Record newer than this library.
            BackendMismatch: Record written by a different backend.
            UnsupportedBackend: Backend not available on this platform.
            DecryptionFailed: Wrong key, or tampered/corrupted record.
        """
        data = read_record_data(path)
        check_format_version(EncryptedRecord.read_version(data))
        info = EncryptedRecord.read_header(data)

        if info.backend != backend.kind.value:
            raise BackendMismatch(info.backend, backend.kind.value)
        if not backend.is_supported():
            raise UnsupportedBackend(
                f"Backend '{backend.kind.value}' is not available on this platform"
            )

        record = EncryptedRecord.from_dict(data)
        secret = backend.open(record)
        logger.debug("Loaded credential %r from %s", record.identifier, path)
        return Credential(identifier=record.identifier, secret=secret)

    def inspect(self, path: PathLike) -> RecordInfo:
        """Return the non-secret header of a record without decrypting it."""
        data = read_record_data(path)
        check_format_version(EncryptedRecord.read_version(data))
        return EncryptedRecord.read_header(data)
