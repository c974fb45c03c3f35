"""
Audit Logging for accessgate.

Provides audit trails for all security-relevant events:
- Access decisions (granted/denied)
- Permission grants and revocations
- Clearance changes
- Ownership transfers and sharing links
- Security configuration changes (labels, devices, rules)

Every entry goes through the HashChainLedger, so the trail is
tamper-evident.
"""

import dataclasses
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from accessgate.labels import SecurityLabel, SecurityLevel
from accessgate.ledger import HashChainLedger
from accessgate.models import (
    AuditLogEntry,
    LogCategory,
    LogType,
    Resource,
    utcnow,
)


logger = logging.getLogger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert records, enums, sets and datetimes into JSON-compatible values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.name if isinstance(value, SecurityLevel) else value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value


class AuditLogger:
    """
    Main audit logging interface.

    Provides convenient methods for logging security events and querying
    the audit trail.

    Example:
        audit = AuditLogger(ledger)

        audit.log_access_decision(
            subject_id="alice",
            resource_type="document",
            resource_id="q3-report",
            action="read",
            allowed=False,
            reason="Insufficient clearance",
        )

        violations = audit.get_violations(last_hours=24)
    """

    def __init__(
        self,
        ledger: HashChainLedger,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the audit logger.

        Args:
            ledger: Hash-chain ledger every entry is appended to
            clock: Source of entry timestamps
        """
        self.ledger = ledger
        self.store = ledger.store
        self.clock = clock

    def log(
        self,
        category: LogCategory,
        log_type: LogType,
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        details: Optional[dict] = None,
        before_state: Any = None,
        after_state: Any = None,
        access_granted: Optional[bool] = None,
        denial_reason: Optional[str] = None,
        security_label: SecurityLevel = SecurityLevel.INTERNAL,
    ) -> AuditLogEntry:
        """Write a raw audit entry and chain it. Returns the stored entry."""
        entry = AuditLogEntry(
            category=category,
            log_type=log_type,
            action=action,
            resource=resource,
            resource_id=resource_id,
            subject_id=subject_id,
            details=to_jsonable(details or {}),
            before_state=to_jsonable(before_state) if before_state is not None else None,
            after_state=to_jsonable(after_state) if after_state is not None else None,
            access_granted=access_granted,
            denial_reason=denial_reason,
            security_label=security_label,
            created_at=self.clock(),
        )
        self.ledger.append(entry)
        return self.store.get_audit_log(entry.id)

    def log_access_decision(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
        allowed: bool,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
        category: LogCategory = LogCategory.SECURITY,
        security_label: SecurityLevel = SecurityLevel.INTERNAL,
    ) -> AuditLogEntry:
        """Log the outcome of an access evaluation."""
        return self.log(
            category=category,
            log_type=LogType.ACCESS_GRANTED if allowed else LogType.ACCESS_DENIED,
            action=action,
            resource=resource_type,
            resource_id=resource_id,
            subject_id=subject_id,
            details=details,
            access_granted=allowed,
            denial_reason=None if allowed else reason,
            security_label=security_label,
        )

    def log_permission_change(
        self,
        actor_id: str,
        resource: Resource,
        action: str,
        granted: bool,
        before: Any = None,
        after: Any = None,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        return self.log(
            category=LogCategory.SECURITY,
            log_type=LogType.PERMISSION_GRANT if granted else LogType.PERMISSION_REVOKE,
            action=action,
            resource=resource.type,
            resource_id=resource.resource_id,
            subject_id=actor_id,
            details=details,
            before_state=before,
            after_state=after,
            security_label=resource.security_label.level,
        )

    def log_ownership_transfer(
        self,
        actor_id: str,
        resource: Resource,
        action: str,
        transfer: Any,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        return self.log(
            category=LogCategory.SECURITY,
            log_type=LogType.OWNERSHIP_TRANSFER,
            action=action,
            resource=resource.type,
            resource_id=resource.resource_id,
            subject_id=actor_id,
            details=details,
            after_state=transfer,
            security_label=resource.security_label.level,
        )

    def log_clearance_change(
        self,
        actor_id: str,
        subject_id: str,
        action: str,
        before: Any = None,
        after: Any = None,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        details = {"target_subject_id": subject_id}
        if reason:
            details["reason"] = reason

        return self.log(
            category=LogCategory.SECURITY,
            log_type=LogType.CLEARANCE_CHANGE,
            action=action,
            resource="user_clearance",
            resource_id=subject_id,
            subject_id=actor_id,
            details=details,
            before_state=before,
            after_state=after,
            security_label=SecurityLevel.CONFIDENTIAL,
        )

    def log_classification_change(
        self,
        actor_id: str,
        resource: Resource,
        before: SecurityLabel,
        after: SecurityLabel,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        return self.log_security_config_change(
            actor_id=actor_id,
            resource=resource.type,
            resource_id=resource.resource_id,
            action="classify" if after.level >= before.level else "declassify",
            before=before.to_dict(),
            after=after.to_dict(),
            details=details,
        )

    def log_security_config_change(
        self,
        actor_id: Optional[str],
        resource: str,
        resource_id: Optional[str],
        action: str,
        before: Any = None,
        after: Any = None,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        return self.log(
            category=LogCategory.SECURITY,
            log_type=LogType.SECURITY_CONFIG_CHANGE,
            action=action,
            resource=resource,
            resource_id=resource_id,
            subject_id=actor_id,
            details=details,
            before_state=before,
            after_state=after,
        )

    def query(
        self,
        category: Optional[LogCategory] = None,
        log_type: Optional[LogType] = None,
        subject_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Query audit entries, most recent first."""
        results = self.store.list_audit_logs(
            category=category,
            log_type=log_type,
            subject_id=subject_id,
            start_time=start_time,
            end_time=end_time,
        )
        return list(reversed(results))[:limit]

    def get_violations(
        self,
        last_hours: Optional[int] = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Get access denials and explicit policy violations."""
        start_time = None
        if last_hours:
            start_time = self.clock() - timedelta(hours=last_hours)

        denied = self.query(log_type=LogType.ACCESS_DENIED, start_time=start_time, limit=limit)
        violations = self.query(log_type=LogType.POLICY_VIOLATION, start_time=start_time, limit=limit)

        all_entries = denied + violations
        all_entries.sort(key=lambda e: e.created_at, reverse=True)
        return all_entries[:limit]

    def get_subject_activity(self, subject_id: str, limit: int = 100) -> list[AuditLogEntry]:
        return self.query(subject_id=subject_id, limit=limit)

    def get_stats(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> dict:
        """Get audit statistics."""
        entries = self.store.list_audit_logs(start_time=start_time, end_time=end_time)

        stats = {
            "total_events": len(entries),
            "by_type": {},
            "by_category": {},
            "access_granted": 0,
            "access_denied": 0,
            "tampered": 0,
        }

        for entry in entries:
            log_type = entry.log_type.value
            category = entry.category.value
            stats["by_type"][log_type] = stats["by_type"].get(log_type, 0) + 1
            stats["by_category"][category] = stats["by_category"].get(category, 0) + 1

            if entry.log_type == LogType.ACCESS_GRANTED:
                stats["access_granted"] += 1
            elif entry.log_type == LogType.ACCESS_DENIED:
                stats["access_denied"] += 1
            if entry.is_tampered:
                stats["tampered"] += 1

        return stats
