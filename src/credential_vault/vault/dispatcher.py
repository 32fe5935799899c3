"""Platform capability dispatcher.

Picks a backend at call time.  An explicit override is validated against
the platform; otherwise native protection wins where it exists.
"""

import logging
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from .backends import (
    CredentialBackend,
    NativeProtectionBackend,
    PortableSymmetricBackend,
)
from .exceptions import UnsupportedBackend
from .key_deriver import SourceSpec
from .models import BackendKind

logger = logging.getLogger(__name__)

AUTO = "auto"

BackendHint = Union[BackendKind, str, None]


def native_protection_available() -> bool:
    """True when the OS offers user-bound native protection (Windows DPAPI)."""
    return NativeProtectionBackend.is_supported()


def parse_backend_hint(hint: BackendHint) -> Optional[BackendKind]:
    """Normalize a hint to a BackendKind; None means auto-detect.

    Raises:
        UnsupportedBackend: Unknown backend name.
    """
    if hint is None or isinstance(hint, BackendKind):
        return hint
    value = str(hint).strip().lower()
    if value in ("", AUTO):
        return None
    try:
        return BackendKind(value)
    except ValueError:
        raise UnsupportedBackend(f"Unknown backend '{hint}'") from None


def select_backend(
    override: BackendHint = None,
    *,
    key_file: Optional[Union[str, Path]] = None,
    identity_sources: Optional[Sequence[SourceSpec]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CredentialBackend:
    """Return the backend to use for a store or load.

    Args:
        override: Explicit backend choice, "auto" or None.
        key_file: Key file for the portable backend.
        identity_sources: Identity slots for the portable backend.
        environ: Environment mapping for the portable backend.

    Raises:
        UnsupportedBackend: Native requested where it is unavailable.
    """
    kind = parse_backend_hint(override)

    if kind is None:
        kind = (
            BackendKind.NATIVE_PROTECTION
            if native_protection_available()
            else BackendKind.PORTABLE_SYMMETRIC
        )
        logger.debug("Auto-selected backend %s", kind.value)
    elif kind is BackendKind.NATIVE_PROTECTION and not native_protection_available():
        raise UnsupportedBackend("Native protection is not available on this platform")

    if kind is BackendKind.NATIVE_PROTECTION:
        return NativeProtectionBackend()
    return PortableSymmetricBackend(
        key_file=key_file,
        identity_sources=identity_sources,
        environ=environ,
    )
