"""Key derivation for the portable symmetric backend.

Two ways to get a 256-bit key without any prior secret exchange:

1. ``derive_key()`` hashes locally observable identity facts (user name,
   machine name) with SHA-256.  Same user on the same machine always gets
   the same key.
2. ``load_key_from_file()`` reads 32 raw bytes from a key file whose
   creation and permissions are managed outside this module
   (``write_key_file()`` is offered as a one-time helper).

Limitation: an identity-derived key is a convenience substitute for OS
native protection, not a strong secret.  Anyone who can read the same
environment (same user, same machine) can recompute it.  Use a key file
or the native backend when that matters.

Identity slots resolve with a fixed fallback order:

    user:    $USERNAME -> $USER     -> getpass.getuser()
    machine: $COMPUTERNAME -> $HOSTNAME -> socket.gethostname()
"""

import getpass
import hashlib
import logging
import os
import secrets
import socket
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import IdentityUnavailable, KeyFileUnreadable, KeyFileWrongLength
from .secure_buffer import SecretBuffer

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

KEY_LENGTH = 32           # AES-256
IDENTITY_DELIMITER = "|"  # joins resolved identity values before hashing

SOURCE_IDENTITY = "identity"
SOURCE_KEY_FILE = "key_file"


# ── Derived Key ──────────────────────────────────────────────────────


class DerivedKey:
    """32 bytes of key material plus where it came from.

    Wipes its material when used as a context manager.
    """

    def __init__(self, material: SecretBuffer, source: str):
        if len(material) != KEY_LENGTH:
            raise ValueError(f"Key material must be {KEY_LENGTH} bytes")
        self.material = material
        self.source = source

    def fingerprint(self) -> str:
        """Short fingerprint for display (first 8 hex chars of SHA-256).

        Safe for logging; does not reveal the key itself.
        """
        return hashlib.sha256(self.material.view()).hexdigest()[:8]

    def wipe(self) -> None:
        self.material.wipe()

    def __enter__(self) -> "DerivedKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __eq__(self, other) -> bool:
        if not isinstance(other, DerivedKey):
            return NotImplemented
        return self.material == other.material

    __hash__ = None

    def __repr__(self) -> str:
        return f"DerivedKey(source={self.source!r}, material=<redacted>)"


# ── Identity Sources ─────────────────────────────────────────────────


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _probe_user() -> Optional[str]:
    return getpass.getuser()


def _probe_machine() -> Optional[str]:
    return socket.gethostname()


@dataclass(frozen=True)
class IdentitySource:
    """One identity slot: environment variables in order, then a live probe."""
    name: str
    env_vars: Tuple[str, ...]
    probe: Callable[[], Optional[str]]

    def resolve(self, environ: Optional[Mapping[str, str]] = None) -> str:
        env = os.environ if environ is None else environ
        for var in self.env_vars:
            value = _clean(env.get(var))
            if value is not None:
                return value

        try:
            value = _clean(self.probe())
        except (OSError, KeyError, ImportError):
            # getpass.getuser() raises OSError/KeyError with no passwd entry
            value = None
        if value is None:
            raise IdentityUnavailable(self.name)
        return value


USER_SOURCE = IdentitySource("user", ("USERNAME", "USER"), _probe_user)
MACHINE_SOURCE = IdentitySource("machine", ("COMPUTERNAME", "HOSTNAME"), _probe_machine)

IDENTITY_SOURCES: Dict[str, IdentitySource] = {
    USER_SOURCE.name: USER_SOURCE,
    MACHINE_SOURCE.name: MACHINE_SOURCE,
}

DEFAULT_IDENTITY_SOURCES: Tuple[str, ...] = ("user", "machine")

SourceSpec = Union[str, IdentitySource]


def get_identity_source(name: str) -> IdentitySource:
    """Look up a registered identity slot by name."""
    try:
        return IDENTITY_SOURCES[name]
    except KeyError:
        raise ValueError(
            f"Unknown identity source '{name}'. "
            f"Known: {', '.join(sorted(IDENTITY_SOURCES))}"
        ) from None


def resolve_identity(
    sources: Sequence[SourceSpec] = DEFAULT_IDENTITY_SOURCES,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[str, ...]:
    """Resolve each slot in order. Raises IdentityUnavailable on the first gap."""
    if not sources:
        raise ValueError("At least one identity source is required")
    resolved = []
    for spec in sources:
        source = get_identity_source(spec) if isinstance(spec, str) else spec
        resolved.append(source.resolve(environ))
    return tuple(resolved)


# ── Key Derivation ───────────────────────────────────────────────────


def derive_key(
    sources: Sequence[SourceSpec] = DEFAULT_IDENTITY_SOURCES,
    environ: Optional[Mapping[str, str]] = None,
) -> DerivedKey:
    """Derive the portable backend key from identity facts.

    Args:
        sources: Ordered identity slots (names or IdentitySource objects).
        environ: Environment mapping to read instead of ``os.environ``.

    Returns:
        DerivedKey with ``source == "identity"``.

    Raises:
        IdentityUnavailable: A slot could not be resolved from any source.
    """
    values = resolve_identity(sources, environ)
    material = bytearray(
        hashlib.sha256(IDENTITY_DELIMITER.join(values).encode("utf-8")).digest()
    )
    # SHA-256 width equals KEY_LENGTH; a wider digest would be truncated here
    del material[KEY_LENGTH:]
    key = DerivedKey(SecretBuffer.adopt(material), SOURCE_IDENTITY)
    logger.debug("Derived identity key from %d sources (fp=%s)", len(values), key.fingerprint())
    return key


def load_key_from_file(path: Union[str, Path]) -> DerivedKey:
    """Read a raw 32-byte key from ``path``.

    Raises:
        KeyFileUnreadable: File missing or unreadable.
        KeyFileWrongLength: File does not hold exactly KEY_LENGTH bytes.
    """
    key_path = Path(path)
    try:
        with open(key_path, "rb") as f:
            material = bytearray(f.read(KEY_LENGTH + 1))
    except OSError as e:
        raise KeyFileUnreadable(f"Cannot read key file {key_path}: {e.strerror}") from e

    if len(material) != KEY_LENGTH:
        actual = len(material)
        if actual > KEY_LENGTH:
            try:
                actual = key_path.stat().st_size
            except OSError:
                pass
        SecretBuffer.adopt(material).wipe()
        raise KeyFileWrongLength(KEY_LENGTH, actual)

    key = DerivedKey(SecretBuffer.adopt(material), SOURCE_KEY_FILE)
    logger.debug("Loaded key file %s (fp=%s)", key_path, key.fingerprint())
    return key


def write_key_file(path: Union[str, Path]) -> Path:
    """Create a new random key file with owner-only permissions.

    - Refuses to overwrite an existing file (FileExistsError), including one
      created while this call runs
    - Writes with mode 600 to a temp file, then hard-links it into place
    - Returns the path it was written to
    """
    key_path = Path(path)
    if key_path.exists():
        raise FileExistsError(f"Key file already exists: {key_path}")
    key_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{key_path.name}.", suffix=".tmp", dir=str(key_path.parent)
    )
    material = bytearray(secrets.token_bytes(KEY_LENGTH))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(material)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        # link() fails with FileExistsError instead of replacing the target
        os.link(tmp_name, key_path)
    finally:
        os.remove(tmp_name)
        SecretBuffer.adopt(material).wipe()

    logger.info("Created key file %s", key_path)
    return key_path
