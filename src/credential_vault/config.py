"""Vault settings read from the environment.

A ``.env`` file in the working directory is loaded first (python-dotenv);
variables already set in the process environment take precedence.

    CREDENTIAL_VAULT_BACKEND            auto | native_protection | portable_symmetric
    CREDENTIAL_VAULT_KEY_FILE           key file for the portable backend
    CREDENTIAL_VAULT_IDENTITY_SOURCES   comma-separated slots (default: user,machine)
    CREDENTIAL_VAULT_AUDIT_DIR          audit log directory (default: ./audit_logs)
    CREDENTIAL_VAULT_AUDIT              0/false/no/off disables the audit trail
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import find_dotenv, load_dotenv

from .vault.dispatcher import AUTO, parse_backend_hint
from .vault.key_deriver import DEFAULT_IDENTITY_SOURCES, get_identity_source

logger = logging.getLogger(__name__)

ENV_PREFIX = "CREDENTIAL_VAULT_"
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class VaultSettings:
    backend: str = AUTO
    key_file: Optional[Path] = None
    identity_sources: Tuple[str, ...] = DEFAULT_IDENTITY_SOURCES
    audit_dir: Path = Path("./audit_logs")
    audit_enabled: bool = True


def _parse_sources(raw: str) -> Tuple[str, ...]:
    names = tuple(part.strip() for part in raw.split(",") if part.strip())
    if not names:
        raise ValueError(f"{ENV_PREFIX}IDENTITY_SOURCES is empty")
    for name in names:
        get_identity_source(name)  # raises ValueError for unknown slots
    return names


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> VaultSettings:
    """Build settings from ``environ`` (default: os.environ after .env).

    Raises:
        ValueError: Unknown identity source name.
        UnsupportedBackend: Unknown backend name.
    """
    if environ is None:
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True), override=False)
        environ = os.environ

    def get(name: str) -> Optional[str]:
        value = environ.get(ENV_PREFIX + name)
        if value is None or not value.strip():
            return None
        return value.strip()

    backend = get("BACKEND") or AUTO
    kind = parse_backend_hint(backend)
    key_file = get("KEY_FILE")
    sources = get("IDENTITY_SOURCES")
    audit_dir = get("AUDIT_DIR")
    audit = get("AUDIT")

    settings = VaultSettings(
        backend=kind.value if kind is not None else AUTO,
        key_file=Path(key_file).expanduser() if key_file else None,
        identity_sources=_parse_sources(sources) if sources else DEFAULT_IDENTITY_SOURCES,
        audit_dir=Path(audit_dir).expanduser() if audit_dir else Path("./audit_logs"),
        audit_enabled=audit is None or audit.lower() not in _FALSE_VALUES,
    )
    logger.debug("Loaded vault settings: backend=%s key_file=%s", settings.backend, settings.key_file)
    return settings


_settings: Optional[VaultSettings] = None


def get_settings() -> VaultSettings:
    """Get process-wide settings (loaded once)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
