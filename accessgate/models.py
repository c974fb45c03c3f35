"""
Core data models for accessgate.

Records shared by the MAC, DAC, RuBAC and ABAC evaluators, the clearance
lifecycle manager and the audit ledger. Records are plain dataclasses
owned by a Store; audit entries and chain entries are immutable.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

from accessgate.errors import PolicyMisconfiguration
from accessgate.labels import SecurityLabel, SecurityLevel, normalize_compartments


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _is_past(moment: Optional[datetime], now: Optional[datetime]) -> bool:
    if moment is None:
        return False
    return (now or utcnow()) > moment


# Enumerations

class ClearanceStatus(Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    SUSPENDED = "SUSPENDED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class ClearanceChangeType(Enum):
    ASSIGNED = "ASSIGNED"
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    REVOKED = "REVOKED"
    REVIEWED = "REVIEWED"
    COMPARTMENT_ADDED = "COMPARTMENT_ADDED"
    COMPARTMENT_REMOVED = "COMPARTMENT_REMOVED"
    EXPIRED = "EXPIRED"


class Permission(Enum):
    """Discretionary permission bits."""
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    DELETE = "delete"
    SHARE = "share"

    @classmethod
    def from_action(cls, action: "Permission | str") -> "Permission":
        if isinstance(action, cls):
            return action
        try:
            return cls(str(action).lower())
        except ValueError:
            raise PolicyMisconfiguration(f"Unknown permission: {action}") from None


class TransferStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ValueType(Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    ENUM = "ENUM"
    JSON = "JSON"


class AttributeType(Enum):
    SUBJECT = "SUBJECT"
    RESOURCE = "RESOURCE"
    ENVIRONMENT = "ENVIRONMENT"


class RuleType(Enum):
    TIME_BASED = "TIME_BASED"
    LOCATION_BASED = "LOCATION_BASED"
    DEVICE_BASED = "DEVICE_BASED"
    COMPOSITE = "COMPOSITE"
    ABAC = "ABAC"


class PolicyType(Enum):
    RUBAC = "RuBAC"
    ABAC = "ABAC"


class TrustLevel(IntEnum):
    """Ordinal device trust scale."""
    BLOCKED = 0
    UNTRUSTED = 1
    UNKNOWN = 2
    VERIFIED = 3
    TRUSTED = 4

    def __str__(self) -> str:
        return self.name


class DeviceType(Enum):
    DESKTOP = "DESKTOP"
    LAPTOP = "LAPTOP"
    MOBILE = "MOBILE"
    TABLET = "TABLET"
    SERVER = "SERVER"
    IOT = "IOT"
    UNKNOWN = "UNKNOWN"


class HolidayType(Enum):
    PUBLIC_HOLIDAY = "PUBLIC_HOLIDAY"
    COMPANY_HOLIDAY = "COMPANY_HOLIDAY"
    EMERGENCY_CLOSURE = "EMERGENCY_CLOSURE"
    MAINTENANCE_WINDOW = "MAINTENANCE_WINDOW"


class LogCategory(Enum):
    SECURITY = "SECURITY"
    USER_ACTIVITY = "USER_ACTIVITY"
    SYSTEM = "SYSTEM"
    COMPLIANCE = "COMPLIANCE"


class LogType(Enum):
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_DENIED = "ACCESS_DENIED"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    CLEARANCE_CHANGE = "CLEARANCE_CHANGE"
    PERMISSION_GRANT = "PERMISSION_GRANT"
    PERMISSION_REVOKE = "PERMISSION_REVOKE"
    OWNERSHIP_TRANSFER = "OWNERSHIP_TRANSFER"
    SECURITY_CONFIG_CHANGE = "SECURITY_CONFIG_CHANGE"
    DATA_ACCESS = "DATA_ACCESS"


# Subjects and clearances

@dataclass
class Subject:
    """
    A user or service account.

    Attributes:
        id: Unique identifier
        name: Display name
        email: Contact address, used by notifiers and sharing-link checks
        role: Role name; roles listed in EngineConfig.privileged_roles bypass checks
        security_clearance: Legacy level mirror, kept in sync by clearance assignment
        trusted_subject: Bypasses MAC level and compartment checks
    """
    id: str
    name: str = ""
    email: Optional[str] = None
    role: str = "USER"
    security_clearance: SecurityLevel = SecurityLevel.PUBLIC
    trusted_subject: bool = False

    def __post_init__(self) -> None:
        self.security_clearance = SecurityLevel.parse(self.security_clearance)


@dataclass
class UserClearance:
    """The single clearance record of a subject."""
    subject_id: str
    level: SecurityLevel
    assigned_by: str
    compartments: frozenset[str] = field(default_factory=frozenset)
    status: ClearanceStatus = ClearanceStatus.ACTIVE
    assigned_at: datetime = field(default_factory=utcnow)
    next_review_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    escalation_requested: bool = False
    escalation_reason: Optional[str] = None
    escalation_requested_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.level = SecurityLevel.parse(self.level)
        self.compartments = normalize_compartments(self.compartments)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _is_past(self.expires_at, now)

    def is_effective(self, now: Optional[datetime] = None) -> bool:
        """Active and not past its expiry."""
        return self.status == ClearanceStatus.ACTIVE and not self.is_expired(now)

    @property
    def label(self) -> SecurityLabel:
        return SecurityLabel(self.level, self.compartments)


@dataclass(frozen=True)
class ClearanceHistory:
    """Append-only record of one clearance mutation."""
    subject_id: str
    change_type: ClearanceChangeType
    new_level: SecurityLevel
    changed_by: str
    previous_level: Optional[SecurityLevel] = None
    previous_compartments: frozenset[str] = field(default_factory=frozenset)
    new_compartments: frozenset[str] = field(default_factory=frozenset)
    reason: Optional[str] = None
    changed_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


# Resources and discretionary grants

@dataclass
class Resource:
    """
    An addressable unit protected by the engine.

    (type, resource_id) is the natural key; `id` is the surrogate key that
    grants, links and transfers refer to.
    """
    type: str
    resource_id: str
    owner_id: str
    security_label: SecurityLabel = field(default_factory=SecurityLabel)
    parent_resource_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.resource_id)


@dataclass
class ResourcePermission:
    """A discretionary grant of permission bits to one subject."""
    resource_pk: str
    subject_id: str
    granted_by: str
    can_read: bool = False
    can_write: bool = False
    can_execute: bool = False
    can_delete: bool = False
    can_share: bool = False
    expires_at: Optional[datetime] = None
    inherited: bool = False
    inherited_from: Optional[str] = None
    reason: Optional[str] = None
    granted_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def allows(self, permission: Permission) -> bool:
        return bool(getattr(self, f"can_{permission.value}"))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _is_past(self.expires_at, now)


@dataclass
class SharingLink:
    """
    Token-based share of a resource.

    `token` is only ever returned to the creator; the password is stored as
    an Argon2 hash.
    """
    token: str
    resource_pk: str
    created_by: str
    can_read: bool = True
    can_write: bool = False
    can_execute: bool = False
    can_delete: bool = False
    can_share: bool = False
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int = 0
    password_hash: Optional[str] = None
    require_auth: bool = False
    allowed_emails: frozenset[str] = field(default_factory=frozenset)
    allowed_domains: frozenset[str] = field(default_factory=frozenset)
    name: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.allowed_emails = frozenset(e.lower() for e in self.allowed_emails)
        self.allowed_domains = frozenset(d.lower() for d in self.allowed_domains)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _is_past(self.expires_at, now)

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.use_count >= self.max_uses


@dataclass
class OwnershipTransfer:
    resource_pk: str
    from_user_id: str
    to_user_id: str
    requested_by: str
    status: TransferStatus = TransferStatus.PENDING
    reason: Optional[str] = None
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)


# Attributes

@dataclass(frozen=True)
class AttributeDefinition:
    """Typed attribute schema with optional constraints."""
    name: str
    value_type: ValueType
    attribute_type: AttributeType = AttributeType.SUBJECT
    description: str = ""
    category: str = ""
    allowed_values: tuple[str, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    pattern: Optional[str] = None


@dataclass
class SubjectAttribute:
    subject_id: str
    name: str
    value: str
    source: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _is_past(self.expires_at, now)


@dataclass
class ResourceAttribute:
    resource_pk: str
    name: str
    value: str
    source: Optional[str] = None
    calculated: bool = False
    expires_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _is_past(self.expires_at, now)


# Rules, policies and their environment

@dataclass
class AccessRule:
    """
    A contextual rule. `config` is the stored JSON document for `rule_type`.

    Disabled rules fail open.
    """
    id: str
    rule_type: RuleType
    config: dict = field(default_factory=dict)
    name: str = ""
    enabled: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    description: Optional[str] = None


@dataclass
class AccessPolicy:
    """
    Attaches a rule (RuBAC) or a condition tree (ABAC) to a resource type
    and action.
    """
    id: str
    resource: str
    action: str
    policy_type: PolicyType
    name: str = ""
    enabled: bool = True
    priority: int = 0
    rule_id: Optional[str] = None
    conditions: Any = None


@dataclass
class DeviceProfile:
    device_id: str
    subject_id: str
    device_type: DeviceType = DeviceType.UNKNOWN
    device_name: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    is_company_managed: bool = False
    has_anti_malware: bool = False
    has_encrypted_storage: bool = False
    trust_level: TrustLevel = TrustLevel.UNKNOWN
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    last_seen: datetime = field(default_factory=utcnow)


@dataclass
class IpAllowList:
    """Named set of IP ranges; `location` marks VPN and office networks."""
    name: str
    ip_ranges: tuple[str, ...] = ()
    location: str = ""
    enabled: bool = True
    id: str = field(default_factory=new_id)


@dataclass
class Holiday:
    name: str
    start_date: date
    end_date: date
    holiday_type: HolidayType = HolidayType.PUBLIC_HOLIDAY
    id: str = field(default_factory=new_id)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass
class DeviceInfo:
    """Device facts reported with a request."""
    os: Optional[str] = None
    os_version: Optional[str] = None
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class AccessContext:
    """
    Request context used by RuBAC rules and ABAC environment attributes.

    Attributes:
        ip_address: Client address
        device_id: Registered device identifier, if any
        device_info: Device facts reported by the client
        country: ISO country code resolved from the client address
        city: City resolved from the client address
        current_time: Evaluation instant; defaults to now
        email: Authenticated email of the subject, if known
        network_security_level: Environment classification of the network
        threat_intelligence_score: External threat score
        system_maintenance_status: e.g. "MAINTENANCE"
    """
    ip_address: Optional[str] = None
    device_id: Optional[str] = None
    device_info: Optional[DeviceInfo] = None
    country: Optional[str] = None
    city: Optional[str] = None
    current_time: Optional[datetime] = None
    email: Optional[str] = None
    network_security_level: Optional[str] = None
    threat_intelligence_score: Optional[float] = None
    system_maintenance_status: Optional[str] = None


# Audit ledger records

@dataclass(frozen=True)
class AuditLogEntry:
    """
    A single immutable audit record.

    `hash_chain`, `previous_hash` and `is_tampered` are maintained by the
    ledger and excluded from the entry hash.
    """
    category: LogCategory
    log_type: LogType
    action: str
    resource: str
    resource_id: Optional[str] = None
    subject_id: Optional[str] = None
    details: dict = field(default_factory=dict)
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    access_granted: Optional[bool] = None
    denial_reason: Optional[str] = None
    security_label: SecurityLevel = SecurityLevel.INTERNAL
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
    hash_chain: Optional[str] = None
    previous_hash: Optional[str] = None
    is_tampered: bool = False

    def to_dict(self) -> dict:
        """Convert entry to dictionary for serialization."""
        result = {
            "id": self.id,
            "category": self.category.value,
            "log_type": self.log_type.value,
            "action": self.action,
            "resource": self.resource,
            "security_label": self.security_label.name,
            "created_at": self.created_at.isoformat(),
            "details": self.details,
            "is_tampered": self.is_tampered,
        }

        # Add optional fields if set
        if self.resource_id is not None:
            result["resource_id"] = self.resource_id
        if self.subject_id is not None:
            result["subject_id"] = self.subject_id
        if self.before_state is not None:
            result["before_state"] = self.before_state
        if self.after_state is not None:
            result["after_state"] = self.after_state
        if self.access_granted is not None:
            result["access_granted"] = self.access_granted
        if self.denial_reason is not None:
            result["denial_reason"] = self.denial_reason
        if self.hash_chain is not None:
            result["hash_chain"] = self.hash_chain
        if self.previous_hash is not None:
            result["previous_hash"] = self.previous_hash

        return result

    @classmethod
    def from_dict(cls, data: dict) -> "AuditLogEntry":
        """Create entry from dictionary."""
        return cls(
            id=data["id"],
            category=LogCategory(data["category"]),
            log_type=LogType(data["log_type"]),
            action=data["action"],
            resource=data["resource"],
            resource_id=data.get("resource_id"),
            subject_id=data.get("subject_id"),
            details=data.get("details", {}),
            before_state=data.get("before_state"),
            after_state=data.get("after_state"),
            access_granted=data.get("access_granted"),
            denial_reason=data.get("denial_reason"),
            security_label=SecurityLevel.parse(data.get("security_label", "INTERNAL")),
            created_at=datetime.fromisoformat(data["created_at"]),
            hash_chain=data.get("hash_chain"),
            previous_hash=data.get("previous_hash"),
            is_tampered=data.get("is_tampered", False),
        )


@dataclass(frozen=True)
class HashChainEntry:
    category: LogCategory
    sequence_number: int
    previous_hash: str
    current_hash: str
    log_id: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class LogBatch:
    """A signed, ordered batch of chained audit entries."""
    batch_id: str
    log_ids: tuple[str, ...]
    signature: str
    signed_by: str
    category: Optional[LogCategory] = None
    signature_algorithm: str = "RSA-SHA256"
    signed_at: datetime = field(default_factory=utcnow)
    verified: bool = False
    verified_at: Optional[datetime] = None


# Evaluation results

@dataclass
class CheckResult:
    """
    Result of one access-control check.

    Attributes:
        allowed: Whether the operation is permitted
        violation: Type of violation if not allowed (e.g. "NO_READ_UP")
        reason: Human-readable explanation
        inherited: For DAC, whether the grant came from the parent resource
        details: Additional check-specific data
    """
    allowed: bool
    violation: Optional[str] = None
    reason: Optional[str] = None
    inherited: Optional[bool] = None
    details: dict = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.allowed

    def __str__(self) -> str:
        if self.allowed:
            return "CheckResult(ALLOWED)"
        return f"CheckResult(DENIED: {self.violation or 'DENIED'}, reason={self.reason})"

    @classmethod
    def allow(cls, reason: Optional[str] = None, **details: Any) -> "CheckResult":
        return cls(allowed=True, reason=reason, details=details)

    @classmethod
    def deny(cls, reason: str, violation: Optional[str] = None, **details: Any) -> "CheckResult":
        return cls(allowed=False, violation=violation, reason=reason, details=details)


@dataclass
class Decision:
    """
    Final outcome of the access pipeline.

    Attributes:
        allowed: Whether access is granted
        reason: Explanation of the deciding stage
        stage: Name of the stage that denied access, if any
        checks: Result of every stage that ran, by stage name
        audit_log_id: Id of the ledger entry recording this decision
    """
    allowed: bool
    reason: Optional[str] = None
    stage: Optional[str] = None
    checks: dict[str, CheckResult] = field(default_factory=dict)
    audit_log_id: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed
