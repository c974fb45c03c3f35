"""
accessgate - unified access-control decisions with a tamper-evident audit trail.

Combines Bell-LaPadula MAC, discretionary grants, contextual rules and
attribute policies into one decision pipeline, and records every
decision in a hash-chained ledger.
"""

from accessgate.labels import SecurityLevel, SecurityLabel, is_subset_compartments, level_value
from accessgate.errors import (
    AccessControlError,
    NotFound,
    Unauthorized,
    ValidationError,
    PolicyMisconfiguration,
    IntegrityFailure,
    Expired,
)
from accessgate.config import EngineConfig, WriteRule
from accessgate.models import (
    AccessContext,
    CheckResult,
    Decision,
    DeviceInfo,
    LogCategory,
    LogType,
    Permission,
    Resource,
    RuleType,
    Subject,
    TrustLevel,
)
from accessgate.store import Store, InMemoryStore
from accessgate.classifier import KeywordTable, auto_classify
from accessgate.mac import MacEvaluator, can_read, can_write, can_classify, can_declassify
from accessgate.dac import PermissionResolver
from accessgate.sharing import SharingLinkManager
from accessgate.rubac import RuleEvaluator
from accessgate.abac import PolicyEvaluator
from accessgate.attributes import AttributeStore
from accessgate.clearance import ClearanceManager
from accessgate.ledger import HashChainLedger, ChainVerification
from accessgate.audit import AuditLogger
from accessgate.signing import SigningKeyProvider
from accessgate.notifications import Notification, NotificationEvent, Notifier, RecordingNotifier
from accessgate.engine import AccessEngine, AccessOptions, create_engine

__version__ = "0.1.0"
__all__ = [
    # Labels
    "SecurityLevel",
    "SecurityLabel",
    "is_subset_compartments",
    "level_value",
    # Errors
    "AccessControlError",
    "NotFound",
    "Unauthorized",
    "ValidationError",
    "PolicyMisconfiguration",
    "IntegrityFailure",
    "Expired",
    # Configuration
    "EngineConfig",
    "WriteRule",
    # Core models
    "AccessContext",
    "CheckResult",
    "Decision",
    "DeviceInfo",
    "LogCategory",
    "LogType",
    "Permission",
    "Resource",
    "RuleType",
    "Subject",
    "TrustLevel",
    # Storage
    "Store",
    "InMemoryStore",
    # Evaluators
    "KeywordTable",
    "auto_classify",
    "MacEvaluator",
    "can_read",
    "can_write",
    "can_classify",
    "can_declassify",
    "PermissionResolver",
    "SharingLinkManager",
    "RuleEvaluator",
    "PolicyEvaluator",
    "AttributeStore",
    "ClearanceManager",
    # Audit
    "HashChainLedger",
    "ChainVerification",
    "AuditLogger",
    "SigningKeyProvider",
    # Notifications
    "Notification",
    "NotificationEvent",
    "Notifier",
    "RecordingNotifier",
    # Engine
    "AccessEngine",
    "AccessOptions",
    "create_engine",
]
