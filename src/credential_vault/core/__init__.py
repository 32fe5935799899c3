# Core Module - Shared Utilities
#
# Core module provides functionality shared by the vault modules:
# - Audit logging

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_vault_event,
    reset_audit_logger,
)

__all__ = [
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_vault_event",
    "reset_audit_logger",
]
