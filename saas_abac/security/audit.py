"""
Audit Logging

Audit trail for access decisions, field-level access and policy changes.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from config import Settings, get_settings
from saas_abac.models.context import PolicyEvaluationContext, PolicyEvaluationResult
from saas_abac.models.fields import is_field_sensitive


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Authorization
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"

    # Field-level access
    FIELD_ACCESS = "field_access"
    FIELD_ACCESS_DENIED = "field_access_denied"
    SENSITIVE_FIELD_ACCESS = "sensitive_field_access"

    # Admin operations
    POLICY_CREATED = "policy_created"
    POLICY_UPDATED = "policy_updated"
    POLICY_DELETED = "policy_deleted"


class AuditSeverity(str, Enum):
    """Severity levels for audit entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """An audit log entry."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique entry ID")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    action: AuditAction = Field(..., description="Type of action")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)
    success: bool = Field(default=True, description="Whether access was granted")

    # Subject (who)
    user_id: Optional[str] = Field(default=None, description="Acting user ID")
    organization_id: Optional[str] = Field(default=None)

    # Resource (what)
    resource_type: Optional[str] = Field(default=None)
    resource_id: Optional[str] = Field(default=None)
    operation: Optional[str] = Field(default=None, description="Requested action")

    # Context (where)
    ip_address: Optional[str] = Field(default=None)
    request_id: Optional[str] = Field(default=None)

    # Field-level details
    fields: list[str] = Field(default_factory=list)
    denied_fields: list[str] = Field(default_factory=list)
    sensitive_fields: list[str] = Field(default_factory=list)

    # Policy information
    policy_ids: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    details: dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "audit_id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "success": self.success,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "operation": self.operation,
            "policy_ids": self.policy_ids,
            "denied_fields": self.denied_fields,
            "sensitive_fields": self.sensitive_fields,
            "details": self.details,
        }


class AuditLog:
    """
    In-memory audit log with optional file persistence.

    Provides query capabilities for audit entries.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        storage_path: Optional[Path] = None
    ):
        """
        Initialize the audit log.

        Args:
            max_entries: Maximum entries to keep in memory
            storage_path: Optional JSON-lines file receiving every entry
        """
        self._entries: list[AuditEntry] = []
        self._max_entries = max_entries
        self._storage_path = Path(storage_path) if storage_path else None

    def add(self, entry: AuditEntry) -> AuditEntry:
        """Add an entry to the log."""
        self._entries.append(entry)

        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries:]

        if self._storage_path:
            self._append_to_file(entry)

        return entry

    def _append_to_file(self, entry: AuditEntry) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._storage_path, "a") as f:
            f.write(json.dumps(entry.model_dump(mode="json"), default=str) + "\n")

    def __len__(self) -> int:
        return len(self._entries)

    def query(
        self,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        success: Optional[bool] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """
        Query audit entries with filters, most recent first.

        Args:
            action: Filter by action type
            user_id: Filter by user ID
            organization_id: Filter by organization
            resource_type: Filter by resource type
            start_time: Filter by start time
            end_time: Filter by end time
            success: Filter by success status
            limit: Maximum entries to return

        Returns:
            List of matching audit entries
        """
        results = []

        for entry in reversed(self._entries):
            if len(results) >= limit:
                break

            if action and entry.action != action:
                continue
            if user_id and entry.user_id != user_id:
                continue
            if organization_id and entry.organization_id != organization_id:
                continue
            if resource_type and entry.resource_type != resource_type:
                continue
            if start_time and entry.timestamp < start_time:
                continue
            if end_time and entry.timestamp > end_time:
                continue
            if success is not None and entry.success != success:
                continue

            results.append(entry)

        return results

    def get_failed_access_attempts(
        self,
        user_id: Optional[str] = None,
        limit: int = 50
    ) -> list[AuditEntry]:
        """Get denied access decisions."""
        return self.query(action=AuditAction.ACCESS_DENIED, user_id=user_id, limit=limit)

    def get_sensitive_field_access(
        self,
        organization_id: Optional[str] = None,
        limit: int = 50
    ) -> list[AuditEntry]:
        """Get reads of sensitive fields."""
        return self.query(
            action=AuditAction.SENSITIVE_FIELD_ACCESS,
            organization_id=organization_id,
            limit=limit,
        )


class AuditLogger:
    """
    High-level audit logging interface.

    Provides convenient methods for logging common audit events.
    """

    def __init__(
        self,
        audit_log: Optional[AuditLog] = None,
        enable_console: bool = True
    ):
        """
        Initialize the audit logger.

        Args:
            audit_log: Optional AuditLog instance for storage
            enable_console: Whether to also log through structlog
        """
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.enable_console = enable_console

        if enable_console:
            self._logger = structlog.get_logger("saas_abac.audit")

    def _log_entry(self, entry: AuditEntry) -> AuditEntry:
        """Log an entry to all configured destinations."""
        self.audit_log.add(entry)

        if self.enable_console:
            log_method = getattr(self._logger, entry.severity.value, self._logger.info)
            log_method(entry.action.value, **entry.to_log_dict())

        return entry

    def log_evaluation(
        self,
        context: PolicyEvaluationContext,
        result: PolicyEvaluationResult,
        request_id: Optional[str] = None
    ) -> AuditEntry:
        """Log an access decision."""
        deciding = result.denied_policies if not result.allowed else result.decisive_policies
        entry = AuditEntry(
            action=AuditAction.ACCESS_GRANTED if result.allowed else AuditAction.ACCESS_DENIED,
            severity=AuditSeverity.INFO if result.allowed else AuditSeverity.WARNING,
            success=result.allowed,
            user_id=context.subject.id,
            organization_id=context.organization_id,
            resource_type=context.resource.type,
            resource_id=context.resource.id,
            operation=context.action,
            ip_address=context.environment.ip_address,
            request_id=request_id,
            policy_ids=[p.id for p in deciding],
            reasons=list(result.reasons),
            details={
                "evaluation_time_ms": round(result.evaluation_time_ms, 3),
                "from_cache": result.from_cache,
            },
        )
        return self._log_entry(entry)

    def log_field_access(
        self,
        user_id: str,
        organization_id: Optional[str],
        resource_type: str,
        fields: list[str],
        operation: str = "read",
        resource_id: Optional[str] = None,
        denied_fields: Optional[list[str]] = None,
        **kwargs
    ) -> AuditEntry:
        """Log field access, flagging sensitive fields."""
        sensitive = [f for f in fields if is_field_sensitive(resource_type, f)]
        entry = AuditEntry(
            action=AuditAction.SENSITIVE_FIELD_ACCESS if sensitive else AuditAction.FIELD_ACCESS,
            severity=AuditSeverity.WARNING if sensitive else AuditSeverity.INFO,
            user_id=user_id,
            organization_id=organization_id,
            resource_type=resource_type,
            resource_id=resource_id,
            operation=operation,
            fields=list(fields),
            denied_fields=list(denied_fields or []),
            sensitive_fields=sensitive,
            details=kwargs,
        )
        return self._log_entry(entry)

    def log_field_denial(
        self,
        user_id: str,
        organization_id: Optional[str],
        resource_type: str,
        denied_fields: list[str],
        operation: str = "read",
        **kwargs
    ) -> AuditEntry:
        """Log an attempt to read or write denied fields."""
        entry = AuditEntry(
            action=AuditAction.FIELD_ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            success=False,
            user_id=user_id,
            organization_id=organization_id,
            resource_type=resource_type,
            operation=operation,
            denied_fields=list(denied_fields),
            sensitive_fields=[f for f in denied_fields if is_field_sensitive(resource_type, f)],
            details=kwargs,
        )
        return self._log_entry(entry)

    def log_policy_change(
        self,
        user_id: Optional[str],
        action: str,  # created, updated, deleted
        policy_id: str,
        policy_name: str,
        organization_id: Optional[str] = None,
        **kwargs
    ) -> AuditEntry:
        """Log a policy change event."""
        action_map = {
            "created": AuditAction.POLICY_CREATED,
            "updated": AuditAction.POLICY_UPDATED,
            "deleted": AuditAction.POLICY_DELETED,
        }

        entry = AuditEntry(
            action=action_map.get(action, AuditAction.POLICY_UPDATED),
            severity=AuditSeverity.WARNING,  # Policy changes are security-relevant
            user_id=user_id,
            organization_id=organization_id,
            resource_type="policy",
            resource_id=policy_id,
            policy_ids=[policy_id],
            details={"policy_name": policy_name, **kwargs},
        )
        return self._log_entry(entry)


def create_audit_logger(settings: Optional[Settings] = None) -> AuditLogger:
    """Build an audit logger from the storage settings."""
    settings = settings or get_settings()
    audit_log = AuditLog(
        max_entries=settings.audit_max_entries,
        storage_path=settings.audit_log_path,
    )
    return AuditLogger(audit_log=audit_log)
