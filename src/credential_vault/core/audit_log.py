# Credential Vault - Audit Logging
#
# Append-only audit trail for credential operations.
# Every store, load, failure and key event is logged with a timestamp and
# OS user context.  Records carry identifiers, paths, backend names and key
# fingerprints only: secret material is never passed to the logger.

import logging
import os
import socket
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_STORE_FAILED = "credential.store.failed"
    CREDENTIAL_LOADED = "credential.loaded"
    CREDENTIAL_LOAD_FAILED = "credential.load.failed"
    CREDENTIAL_DELETED = "credential.deleted"

    KEY_FILE_CREATED = "key.file.created"


class EventSeverity(str, Enum):
    """
    Severity levels for vault events.

    - INFO: Normal activity
    - INVESTIGATE: Something failed that is usually benign (missing file, bad config)
    - ALERT: Possible tampering or wrong-identity access (decryption failure)
    - CRITICAL: Reserved for callers escalating an event
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


AUDIT_LOGGER_NAME = "credential_vault.audit"

_LEVELS = {
    EventSeverity.INFO: logging.INFO,
    EventSeverity.INVESTIGATE: logging.WARNING,
    EventSeverity.ALERT: logging.WARNING,
    EventSeverity.CRITICAL: logging.CRITICAL,
}


class AuditLogger:
    """
    Append-only structured audit logger.

    Features:
    - Structured JSON lines (structlog)
    - Automatic timestamp and event ID
    - OS user / hostname context
    - One log file per day: audit_YYYY-MM-DD.log
    """

    def __init__(self, log_dir: Optional[Path] = None, enabled: bool = True):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
            enabled: When False, events are dropped (event IDs still returned)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.enabled = enabled
        # Unregistered logger: each instance owns its handler and nothing
        # accumulates in the logging manager
        self._file_logger = logging.Logger(AUDIT_LOGGER_NAME)
        self._file_logger.propagate = False
        self._file_logger.setLevel(logging.INFO)
        self._handler: Optional[logging.Handler] = None

        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._setup_file_handler()

        self.logger = structlog.wrap_logger(
            self._file_logger,
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
        )

    def _setup_file_handler(self):
        """Attach the daily log file."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))  # structlog handles formatting
        self._file_logger.addHandler(handler)
        self._handler = handler

    def close(self):
        """Detach and close the file handler."""
        if self._handler is not None:
            self._file_logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional details (never secrets!)
            user_context: Overrides the default OS user context

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        if not self.enabled:
            return event_id

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.log(_LEVELS[severity], "vault_event", **event_data)
        return event_id

    def log_credential_event(
        self,
        event_type: EventType,
        identifier: Optional[str],
        path: Any,
        backend: Optional[str] = None,
        severity: EventSeverity = EventSeverity.INFO,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a credential store/load/delete event.

        Args:
            event_type: Type of credential event
            identifier: Credential identifier (never the secret)
            path: Record path
            backend: Backend name
            severity: Event severity
            details: Additional details

        Returns:
            str: Event ID
        """
        event_details = dict(details or {})
        event_details["identifier"] = identifier
        event_details["path"] = str(path)
        if backend:
            event_details["backend"] = backend

        message = f"Credential: {event_type.value}"
        if identifier:
            message += f" - {identifier}"

        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=message,
            details=event_details,
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, platform)."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern).

    Configured from the vault settings on first use.
    """
    global _audit_logger
    if _audit_logger is None:
        from ..config import get_settings

        settings = get_settings()
        _audit_logger = AuditLogger(
            log_dir=settings.audit_dir,
            enabled=settings.audit_enabled,
        )
    return _audit_logger


def reset_audit_logger() -> None:
    """Close and forget the global audit logger."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = None


def log_vault_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_vault_event(
            EventType.KEY_FILE_CREATED,
            EventSeverity.INFO,
            "Created portable key file",
            details={"path": "/home/svc/.vault/key.bin"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
