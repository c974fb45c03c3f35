"""
Persistence contract for the access-control engine.

The engine holds no long-lived state of its own. Every record lives in a
Store, which must provide:
- atomic transactions (read-modify-write as one unit, rollback on error)
- per-category serialization of hash-chain appends via a unique
  (category, sequence_number) constraint
- "due before" and "latest sequence" queries

InMemoryStore is the thread-safe reference implementation used by tests
and single-process deployments.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from accessgate.errors import IntegrityFailure
from accessgate.models import (
    AccessPolicy,
    AccessRule,
    AttributeDefinition,
    AttributeType,
    AuditLogEntry,
    ClearanceHistory,
    ClearanceStatus,
    DeviceProfile,
    HashChainEntry,
    Holiday,
    IpAllowList,
    LogBatch,
    LogCategory,
    LogType,
    OwnershipTransfer,
    PolicyType,
    Resource,
    ResourceAttribute,
    ResourcePermission,
    SharingLink,
    Subject,
    SubjectAttribute,
    TransferStatus,
    UserClearance,
)


logger = logging.getLogger(__name__)


class Store(ABC):
    """Abstract repository consumed by every engine component."""

    @abstractmethod
    def transaction(self):
        """Context manager making enclosed reads and writes atomic."""
        ...

    # Subjects

    @abstractmethod
    def get_subject(self, subject_id: str) -> Optional[Subject]: ...

    @abstractmethod
    def save_subject(self, subject: Subject) -> Subject: ...

    # Clearances

    @abstractmethod
    def get_clearance(self, subject_id: str) -> Optional[UserClearance]: ...

    @abstractmethod
    def save_clearance(self, clearance: UserClearance) -> UserClearance: ...

    @abstractmethod
    def list_clearances(
        self,
        status: Optional[ClearanceStatus] = None,
        due_before: Optional[datetime] = None,
    ) -> list[UserClearance]:
        """Clearances filtered by status and next_review_at <= due_before, ascending by due date."""
        ...

    @abstractmethod
    def add_clearance_history(self, record: ClearanceHistory) -> None: ...

    @abstractmethod
    def list_clearance_history(self, subject_id: str) -> list[ClearanceHistory]: ...

    # Resources and grants

    @abstractmethod
    def get_resource(self, resource_type: str, resource_id: str) -> Optional[Resource]: ...

    @abstractmethod
    def get_resource_by_pk(self, pk: str) -> Optional[Resource]: ...

    @abstractmethod
    def save_resource(self, resource: Resource) -> Resource: ...

    @abstractmethod
    def get_permission(self, resource_pk: str, subject_id: str) -> Optional[ResourcePermission]: ...

    @abstractmethod
    def save_permission(self, permission: ResourcePermission) -> ResourcePermission:
        """Upsert keyed by (resource_pk, subject_id)."""
        ...

    @abstractmethod
    def delete_permission(self, resource_pk: str, subject_id: str) -> bool: ...

    @abstractmethod
    def list_permissions(self, resource_pk: str) -> list[ResourcePermission]: ...

    # Sharing links and transfers

    @abstractmethod
    def get_sharing_link(self, token: str) -> Optional[SharingLink]: ...

    @abstractmethod
    def get_sharing_link_by_id(self, link_id: str) -> Optional[SharingLink]: ...

    @abstractmethod
    def save_sharing_link(self, link: SharingLink) -> SharingLink: ...

    @abstractmethod
    def delete_sharing_link(self, link_id: str) -> bool: ...

    @abstractmethod
    def list_sharing_links(self, resource_pk: str) -> list[SharingLink]: ...

    @abstractmethod
    def get_transfer(self, transfer_id: str) -> Optional[OwnershipTransfer]: ...

    @abstractmethod
    def save_transfer(self, transfer: OwnershipTransfer) -> OwnershipTransfer: ...

    @abstractmethod
    def list_transfers(
        self, resource_pk: str, status: Optional[TransferStatus] = None
    ) -> list[OwnershipTransfer]: ...

    # Attributes

    @abstractmethod
    def get_attribute_definition(self, name: str) -> Optional[AttributeDefinition]: ...

    @abstractmethod
    def save_attribute_definition(self, definition: AttributeDefinition) -> AttributeDefinition: ...

    @abstractmethod
    def list_attribute_definitions(
        self, attribute_type: Optional[AttributeType] = None
    ) -> list[AttributeDefinition]: ...

    @abstractmethod
    def list_subject_attributes(self, subject_id: str) -> list[SubjectAttribute]: ...

    @abstractmethod
    def save_subject_attribute(self, attribute: SubjectAttribute) -> SubjectAttribute: ...

    @abstractmethod
    def delete_subject_attribute(self, subject_id: str, name: str) -> bool: ...

    @abstractmethod
    def list_resource_attributes(self, resource_pk: str) -> list[ResourceAttribute]: ...

    @abstractmethod
    def save_resource_attribute(self, attribute: ResourceAttribute) -> ResourceAttribute: ...

    # Rules, policies and environment

    @abstractmethod
    def get_rule(self, rule_id: str) -> Optional[AccessRule]: ...

    @abstractmethod
    def save_rule(self, rule: AccessRule) -> AccessRule: ...

    @abstractmethod
    def get_policy(self, policy_id: str) -> Optional[AccessPolicy]: ...

    @abstractmethod
    def save_policy(self, policy: AccessPolicy) -> AccessPolicy: ...

    @abstractmethod
    def list_policies(
        self,
        resource: str,
        action: str,
        policy_type: PolicyType,
        enabled_only: bool = True,
    ) -> list[AccessPolicy]:
        """Policies for a resource type and action, highest priority first."""
        ...

    @abstractmethod
    def get_device(self, device_id: str) -> Optional[DeviceProfile]: ...

    @abstractmethod
    def save_device(self, device: DeviceProfile) -> DeviceProfile: ...

    @abstractmethod
    def list_devices(self, subject_id: str) -> list[DeviceProfile]: ...

    @abstractmethod
    def save_ip_allow_list(self, allow_list: IpAllowList) -> IpAllowList: ...

    @abstractmethod
    def list_ip_allow_lists(self, enabled_only: bool = True) -> list[IpAllowList]: ...

    @abstractmethod
    def save_holiday(self, holiday: Holiday) -> Holiday: ...

    @abstractmethod
    def list_holidays(self) -> list[Holiday]: ...

    # Audit ledger

    @abstractmethod
    def add_audit_log(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    @abstractmethod
    def get_audit_log(self, log_id: str) -> Optional[AuditLogEntry]: ...

    @abstractmethod
    def update_audit_log(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    @abstractmethod
    def list_audit_logs(
        self,
        category: Optional[LogCategory] = None,
        log_type: Optional[LogType] = None,
        subject_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        """Audit entries in insertion order, filtered."""
        ...

    @abstractmethod
    def latest_chain_entry(self, category: LogCategory) -> Optional[HashChainEntry]: ...

    @abstractmethod
    def get_chain_entry(self, category: LogCategory, sequence_number: int) -> Optional[HashChainEntry]: ...

    @abstractmethod
    def get_chain_entry_for_log(self, log_id: str) -> Optional[HashChainEntry]: ...

    @abstractmethod
    def add_chain_entry(self, entry: HashChainEntry) -> HashChainEntry:
        """Insert a chain entry; raises IntegrityFailure on a duplicate sequence number."""
        ...

    @abstractmethod
    def list_chain_entries(
        self,
        category: LogCategory,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[HashChainEntry]:
        """Chain entries of a category ascending by sequence number."""
        ...

    @abstractmethod
    def save_batch(self, batch: LogBatch) -> LogBatch: ...

    @abstractmethod
    def get_batch(self, batch_id: str) -> Optional[LogBatch]: ...


_TABLES = (
    "subjects",
    "clearances",
    "clearance_history",
    "resources",
    "permissions",
    "sharing_links",
    "transfers",
    "attribute_definitions",
    "subject_attributes",
    "resource_attributes",
    "rules",
    "policies",
    "devices",
    "ip_allow_lists",
    "holidays",
    "audit_logs",
    "chain",
    "chain_heads",
    "chain_by_log",
    "batches",
)

_MISSING = object()


class InMemoryStore(Store):
    """
    Thread-safe in-memory Store.

    All access is serialized through one re-entrant lock. A transaction
    holds the lock for its whole body and journals the previous value of
    every key it writes; if the body raises, only those keys are restored.
    Records are deep-copied on the way in and out so callers never mutate
    stored state directly.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, dict] = {name: {} for name in _TABLES}
        self._journals: list[dict] = []

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        with self._lock:
            journal: dict = {}
            self._journals.append(journal)
            try:
                yield self
            except BaseException:
                self._journals.pop()
                self._undo(journal)
                logger.debug(f"Transaction rolled back ({len(journal)} keys restored)")
                raise
            self._journals.pop()
            if self._journals:
                # Nested commit: the enclosing transaction can still undo this work
                parent = self._journals[-1]
                for slot, previous in journal.items():
                    parent.setdefault(slot, previous)

    def _remember(self, table: str, key) -> None:
        if self._journals:
            journal = self._journals[-1]
            if (table, key) not in journal:
                journal[(table, key)] = self._tables[table].get(key, _MISSING)

    def _undo(self, journal: dict) -> None:
        for (table, key), previous in journal.items():
            if previous is _MISSING:
                self._tables[table].pop(key, None)
            else:
                self._tables[table][key] = previous

    def _get(self, table: str, key):
        with self._lock:
            value = self._tables[table].get(key)
            return copy.deepcopy(value) if value is not None else None

    def _put(self, table: str, key, value):
        with self._lock:
            self._remember(table, key)
            self._tables[table][key] = copy.deepcopy(value)
        return value

    def _delete(self, table: str, key) -> bool:
        with self._lock:
            self._remember(table, key)
            return self._tables[table].pop(key, None) is not None

    def _values(self, table: str, where: Optional[Callable[[Any], bool]] = None) -> list:
        """Copies of the rows matching `where`, in insertion order."""
        with self._lock:
            return [
                copy.deepcopy(v) for v in self._tables[table].values()
                if where is None or where(v)
            ]

    def _first(self, table: str, where: Callable[[Any], bool]):
        with self._lock:
            for value in self._tables[table].values():
                if where(value):
                    return copy.deepcopy(value)
        return None

    # Subjects

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        return self._get("subjects", subject_id)

    def save_subject(self, subject: Subject) -> Subject:
        return self._put("subjects", subject.id, subject)

    # Clearances

    def get_clearance(self, subject_id: str) -> Optional[UserClearance]:
        return self._get("clearances", subject_id)

    def save_clearance(self, clearance: UserClearance) -> UserClearance:
        return self._put("clearances", clearance.subject_id, clearance)

    def list_clearances(
        self,
        status: Optional[ClearanceStatus] = None,
        due_before: Optional[datetime] = None,
    ) -> list[UserClearance]:
        results = self._values("clearances", lambda c: (
            (status is None or c.status == status)
            and (due_before is None or (c.next_review_at is not None and c.next_review_at <= due_before))
        ))
        if due_before is not None:
            results.sort(key=lambda c: c.next_review_at)
        return results

    def add_clearance_history(self, record: ClearanceHistory) -> None:
        self._put("clearance_history", record.id, record)

    def list_clearance_history(self, subject_id: str) -> list[ClearanceHistory]:
        return self._values("clearance_history", lambda h: h.subject_id == subject_id)

    # Resources and grants

    def get_resource(self, resource_type: str, resource_id: str) -> Optional[Resource]:
        return self._first("resources", lambda r: r.key == (resource_type, resource_id))

    def get_resource_by_pk(self, pk: str) -> Optional[Resource]:
        return self._get("resources", pk)

    def save_resource(self, resource: Resource) -> Resource:
        with self._lock:
            existing = self.get_resource(resource.type, resource.resource_id)
            if existing is not None and existing.id != resource.id:
                raise IntegrityFailure(
                    f"Resource {resource.type}:{resource.resource_id} already exists"
                )
            return self._put("resources", resource.id, resource)

    def get_permission(self, resource_pk: str, subject_id: str) -> Optional[ResourcePermission]:
        return self._get("permissions", (resource_pk, subject_id))

    def save_permission(self, permission: ResourcePermission) -> ResourcePermission:
        return self._put("permissions", (permission.resource_pk, permission.subject_id), permission)

    def delete_permission(self, resource_pk: str, subject_id: str) -> bool:
        return self._delete("permissions", (resource_pk, subject_id))

    def list_permissions(self, resource_pk: str) -> list[ResourcePermission]:
        return self._values("permissions", lambda p: p.resource_pk == resource_pk)

    # Sharing links and transfers

    def get_sharing_link(self, token: str) -> Optional[SharingLink]:
        return self._first("sharing_links", lambda l: l.token == token)

    def get_sharing_link_by_id(self, link_id: str) -> Optional[SharingLink]:
        return self._get("sharing_links", link_id)

    def save_sharing_link(self, link: SharingLink) -> SharingLink:
        return self._put("sharing_links", link.id, link)

    def delete_sharing_link(self, link_id: str) -> bool:
        return self._delete("sharing_links", link_id)

    def list_sharing_links(self, resource_pk: str) -> list[SharingLink]:
        return self._values("sharing_links", lambda l: l.resource_pk == resource_pk)

    def get_transfer(self, transfer_id: str) -> Optional[OwnershipTransfer]:
        return self._get("transfers", transfer_id)

    def save_transfer(self, transfer: OwnershipTransfer) -> OwnershipTransfer:
        return self._put("transfers", transfer.id, transfer)

    def list_transfers(
        self, resource_pk: str, status: Optional[TransferStatus] = None
    ) -> list[OwnershipTransfer]:
        return self._values("transfers", lambda t: (
            t.resource_pk == resource_pk and (status is None or t.status == status)
        ))

    # Attributes

    def get_attribute_definition(self, name: str) -> Optional[AttributeDefinition]:
        return self._get("attribute_definitions", name)

    def save_attribute_definition(self, definition: AttributeDefinition) -> AttributeDefinition:
        return self._put("attribute_definitions", definition.name, definition)

    def list_attribute_definitions(
        self, attribute_type: Optional[AttributeType] = None
    ) -> list[AttributeDefinition]:
        return self._values("attribute_definitions", lambda d: (
            attribute_type is None or d.attribute_type == attribute_type
        ))

    def list_subject_attributes(self, subject_id: str) -> list[SubjectAttribute]:
        return self._values("subject_attributes", lambda a: a.subject_id == subject_id)

    def save_subject_attribute(self, attribute: SubjectAttribute) -> SubjectAttribute:
        return self._put("subject_attributes", (attribute.subject_id, attribute.name), attribute)

    def delete_subject_attribute(self, subject_id: str, name: str) -> bool:
        return self._delete("subject_attributes", (subject_id, name))

    def list_resource_attributes(self, resource_pk: str) -> list[ResourceAttribute]:
        return self._values("resource_attributes", lambda a: a.resource_pk == resource_pk)

    def save_resource_attribute(self, attribute: ResourceAttribute) -> ResourceAttribute:
        return self._put("resource_attributes", (attribute.resource_pk, attribute.name), attribute)

    # Rules, policies and environment

    def get_rule(self, rule_id: str) -> Optional[AccessRule]:
        return self._get("rules", rule_id)

    def save_rule(self, rule: AccessRule) -> AccessRule:
        return self._put("rules", rule.id, rule)

    def get_policy(self, policy_id: str) -> Optional[AccessPolicy]:
        return self._get("policies", policy_id)

    def save_policy(self, policy: AccessPolicy) -> AccessPolicy:
        return self._put("policies", policy.id, policy)

    def list_policies(
        self,
        resource: str,
        action: str,
        policy_type: PolicyType,
        enabled_only: bool = True,
    ) -> list[AccessPolicy]:
        results = self._values("policies", lambda p: (
            p.resource == resource
            and p.action == action
            and p.policy_type == policy_type
            and (p.enabled or not enabled_only)
        ))
        results.sort(key=lambda p: p.priority, reverse=True)
        return results

    def get_device(self, device_id: str) -> Optional[DeviceProfile]:
        return self._get("devices", device_id)

    def save_device(self, device: DeviceProfile) -> DeviceProfile:
        return self._put("devices", device.device_id, device)

    def list_devices(self, subject_id: str) -> list[DeviceProfile]:
        return self._values("devices", lambda d: d.subject_id == subject_id)

    def save_ip_allow_list(self, allow_list: IpAllowList) -> IpAllowList:
        return self._put("ip_allow_lists", allow_list.id, allow_list)

    def list_ip_allow_lists(self, enabled_only: bool = True) -> list[IpAllowList]:
        return self._values("ip_allow_lists", lambda a: a.enabled or not enabled_only)

    def save_holiday(self, holiday: Holiday) -> Holiday:
        return self._put("holidays", holiday.id, holiday)

    def list_holidays(self) -> list[Holiday]:
        return sorted(self._values("holidays"), key=lambda h: h.start_date)

    # Audit ledger

    def add_audit_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._lock:
            if entry.id in self._tables["audit_logs"]:
                raise IntegrityFailure(f"Audit log {entry.id} already exists")
            return self._put("audit_logs", entry.id, entry)

    def get_audit_log(self, log_id: str) -> Optional[AuditLogEntry]:
        return self._get("audit_logs", log_id)

    def update_audit_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        return self._put("audit_logs", entry.id, entry)

    def list_audit_logs(
        self,
        category: Optional[LogCategory] = None,
        log_type: Optional[LogType] = None,
        subject_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        def matches(e: AuditLogEntry) -> bool:
            return (
                (category is None or e.category == category)
                and (log_type is None or e.log_type == log_type)
                and (subject_id is None or e.subject_id == subject_id)
                and (start_time is None or e.created_at >= start_time)
                and (end_time is None or e.created_at <= end_time)
            )

        with self._lock:
            rows = [e for e in self._tables["audit_logs"].values() if matches(e)]
            if limit is not None:
                rows = rows[:limit]
            return [copy.deepcopy(e) for e in rows]

    def latest_chain_entry(self, category: LogCategory) -> Optional[HashChainEntry]:
        with self._lock:
            head = self._tables["chain_heads"].get(category)
            return self._get("chain", (category, head)) if head is not None else None

    def get_chain_entry(self, category: LogCategory, sequence_number: int) -> Optional[HashChainEntry]:
        return self._get("chain", (category, sequence_number))

    def get_chain_entry_for_log(self, log_id: str) -> Optional[HashChainEntry]:
        with self._lock:
            key = self._tables["chain_by_log"].get(log_id)
            return self._get("chain", key) if key is not None else None

    def add_chain_entry(self, entry: HashChainEntry) -> HashChainEntry:
        key = (entry.category, entry.sequence_number)
        with self._lock:
            if key in self._tables["chain"]:
                raise IntegrityFailure(
                    f"Sequence {entry.sequence_number} already exists in {entry.category.value} chain"
                )
            head = self._tables["chain_heads"].get(entry.category, 0)
            if entry.sequence_number > head:
                self._put("chain_heads", entry.category, entry.sequence_number)
            self._put("chain_by_log", entry.log_id, key)
            return self._put("chain", key, entry)

    def list_chain_entries(
        self,
        category: LogCategory,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[HashChainEntry]:
        results = self._values("chain", lambda e: (
            e.category == category
            and (start is None or e.sequence_number >= start)
            and (end is None or e.sequence_number <= end)
        ))
        results.sort(key=lambda e: e.sequence_number)
        return results

    def save_batch(self, batch: LogBatch) -> LogBatch:
        return self._put("batches", batch.batch_id, batch)

    def get_batch(self, batch_id: str) -> Optional[LogBatch]:
        return self._get("batches", batch_id)
