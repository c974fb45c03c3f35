"""
Access Engine - the unified decision pipeline.

Runs the access-control models as an ordered pipeline:

    MAC -> DAC -> RuBAC -> ABAC

The first stage that denies decides the outcome. MAC is the hard gate;
trusted subjects pass it, privileged roles bypass every stage. Every
decision, granted or denied, is written to the hash-chained ledger.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from accessgate.abac import PolicyEvaluator
from accessgate.attributes import AttributeStore
from accessgate.audit import AuditLogger
from accessgate.clearance import ClearanceManager
from accessgate.config import EngineConfig
from accessgate.dac import PermissionResolver
from accessgate.devices import DeviceRegistry
from accessgate.labels import SecurityLevel
from accessgate.ledger import ChainVerification, HashChainLedger
from accessgate.mac import MacEvaluator
from accessgate.models import (
    AccessContext,
    AuditLogEntry,
    CheckResult,
    Decision,
    LogCategory,
    LogType,
    Permission,
    PolicyType,
    SharingLink,
    UserClearance,
    ResourcePermission,
    utcnow,
)
from accessgate.networks import NetworkDirectory
from accessgate.notifications import Notifier
from accessgate.rubac import RuleEvaluator
from accessgate.sharing import SharingLinkManager
from accessgate.signing import SigningKeyProvider
from accessgate.store import InMemoryStore, Store


logger = logging.getLogger(__name__)

STAGES = ("mac", "dac", "rubac", "abac")


@dataclass
class AccessOptions:
    """
    Per-request switches for the decision pipeline.

    Attributes:
        mac, dac, rubac, abac: Whether to run each stage
        target_level: Level a write would produce (MAC write check)
        target_compartments: Compartments a write would produce
    """
    mac: bool = True
    dac: bool = True
    rubac: bool = True
    abac: bool = True
    target_level: Optional[SecurityLevel] = None
    target_compartments: Optional[Iterable[str]] = None

    def enabled(self, stage: str) -> bool:
        return getattr(self, stage)


class AccessEngine:
    """
    Combines the MAC, DAC, RuBAC and ABAC evaluators behind one decision call.

    Example:
        engine = create_engine()
        engine.store.save_subject(Subject("alice", role="USER"))
        engine.assign_clearance("alice", SecurityLevel.CONFIDENTIAL, ["FINANCIAL"], assigned_by="admin")
        engine.permissions.register_resource("document", "q3-report", owner_id="alice",
                                             security_label=SecurityLabel(SecurityLevel.CONFIDENTIAL))

        decision = engine.evaluate_access("alice", "document", "q3-report", "read")
        if not decision:
            print(decision.stage, decision.reason)
    """

    def __init__(
        self,
        store: Store,
        config: Optional[EngineConfig] = None,
        notifier: Optional[Notifier] = None,
        signer: Optional[SigningKeyProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.notifier = notifier
        self.clock = clock

        self.ledger = HashChainLedger(store, signer=signer, notifier=notifier, clock=clock)
        self.audit = AuditLogger(self.ledger, clock=clock)
        self.networks = NetworkDirectory(store)
        self.attributes = AttributeStore(store, self.config, self.networks, clock=clock)
        self.policies = PolicyEvaluator(store, self.attributes, clock=clock)
        self.rules = RuleEvaluator(store, self.config, self.networks, self.policies, clock=clock)
        self.devices = DeviceRegistry(store, audit=self.audit, clock=clock)
        self.mac = MacEvaluator(store, self.config, audit=self.audit, clock=clock)
        self.permissions = PermissionResolver(store, self.config, self.audit, notifier, clock=clock)
        self.sharing = SharingLinkManager(store, self.permissions, self.audit, clock=clock)
        self.clearances = ClearanceManager(store, self.config, self.audit, notifier, clock=clock)

    # Decision pipeline

    def _check_mac(self, subject_id, resource_type, resource_id, action, context, options) -> CheckResult:
        if action == Permission.READ.value:
            return self.mac.check_read_access(subject_id, resource_type, resource_id)
        return self.mac.check_write_access(
            subject_id,
            resource_type,
            resource_id,
            target_level=options.target_level,
            target_compartments=options.target_compartments,
        )

    def _check_dac(self, subject_id, resource_type, resource_id, action, context, options) -> CheckResult:
        return self.permissions.has_permission(subject_id, resource_type, resource_id, action)

    def _check_rubac(self, subject_id, resource_type, resource_id, action, context, options) -> CheckResult:
        policies = self.store.list_policies(resource_type, action, PolicyType.RUBAC)
        for policy in policies:
            if not policy.rule_id:
                continue
            result = self.rules.evaluate_access_rule(
                policy.rule_id, context, subject_id, resource_type, resource_id,
            )
            if not result.allowed:
                result.details.setdefault("policy_id", policy.id)
                return result
        return CheckResult.allow("No rule violated", policies=len(policies))

    def _check_abac(self, subject_id, resource_type, resource_id, action, context, options) -> CheckResult:
        policies = self.store.list_policies(resource_type, action, PolicyType.ABAC)
        for policy in policies:
            result = self.policies.evaluate_policy(policy.id, subject_id, resource_type, resource_id, context)
            if not result.allowed:
                return result
        return CheckResult.allow("No policy violated", policies=len(policies))

    def _record(
        self,
        decision: Decision,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
        security_label: SecurityLevel,
    ) -> Decision:
        entry = self.audit.log_access_decision(
            subject_id=subject_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            allowed=decision.allowed,
            reason=decision.reason,
            details={
                "stage": decision.stage,
                "checks": {
                    name: {"allowed": check.allowed, "reason": check.reason, "violation": check.violation}
                    for name, check in decision.checks.items()
                },
            },
            category=self.config.audit_category,
            security_label=security_label,
        )
        decision.audit_log_id = entry.id
        return decision

    def evaluate_access(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
        context: Optional[AccessContext] = None,
        options: Optional[AccessOptions] = None,
    ) -> Decision:
        """
        Decide whether a subject may perform an action on a resource.

        Denials are returned, not raised. Each call appends exactly one
        ledger entry.

        Raises:
            PolicyMisconfiguration: Unknown action, operator or rule type
        """
        context = context or AccessContext()
        options = options or AccessOptions()
        action = Permission.from_action(action).value

        subject = self.store.get_subject(subject_id)
        resource = self.store.get_resource(resource_type, resource_id)
        label = resource.security_label.level if resource else SecurityLevel.INTERNAL

        if subject is None:
            decision = Decision(allowed=False, reason="Subject not found", stage="subject")
            return self._record(decision, subject_id, resource_type, resource_id, action, label)

        if self.config.is_privileged(subject.role):
            bypass = CheckResult.allow(f"{subject.role} bypass", bypass=True)
            decision = Decision(
                allowed=True,
                reason=f"{subject.role} bypass",
                checks={stage: bypass for stage in STAGES if options.enabled(stage)},
            )
            return self._record(decision, subject_id, resource_type, resource_id, action, label)

        if resource is None:
            decision = Decision(allowed=False, reason="Resource not found", stage="resource")
            return self._record(decision, subject_id, resource_type, resource_id, action, label)

        decision = Decision(allowed=True)
        for stage in STAGES:
            if not options.enabled(stage):
                continue
            check = getattr(self, f"_check_{stage}")
            result = check(subject_id, resource_type, resource_id, action, context, options)
            decision.checks[stage] = result
            if not result.allowed:
                decision.allowed = False
                decision.stage = stage
                decision.reason = f"{stage.upper()}: {result.reason}"
                break

        if decision.allowed:
            logger.debug(f"Access granted: {subject_id} {action} {resource_type}:{resource_id}")
        else:
            logger.info(f"Access denied: {subject_id} {action} {resource_type}:{resource_id} ({decision.reason})")

        return self._record(decision, subject_id, resource_type, resource_id, action, label)

    # Operations exposed to callers of the engine

    def assign_clearance(
        self,
        subject_id: str,
        level: SecurityLevel | str,
        compartments: Iterable[str] = (),
        assigned_by: str = "system",
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserClearance:
        return self.clearances.assign(subject_id, level, compartments, assigned_by, reason, expires_at)

    def revoke_clearance(self, subject_id: str, revoked_by: str, reason: Optional[str] = None) -> UserClearance:
        return self.clearances.revoke(subject_id, revoked_by, reason)

    def grant_permission(self, resource_type: str, resource_id: str, subject_id: str, granted_by: str,
                         **kwargs) -> ResourcePermission:
        return self.permissions.grant_permission(resource_type, resource_id, subject_id, granted_by, **kwargs)

    def create_sharing_link(self, resource_type: str, resource_id: str, created_by: str, **kwargs) -> SharingLink:
        return self.sharing.create_sharing_link(resource_type, resource_id, created_by, **kwargs)

    def append_audit(
        self,
        category: LogCategory,
        log_type: LogType,
        action: str,
        resource: str,
        **kwargs,
    ) -> AuditLogEntry:
        return self.audit.log(category, log_type, action, resource, **kwargs)

    def verify_chain(
        self,
        category: LogCategory = LogCategory.SECURITY,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> ChainVerification:
        return self.ledger.verify(category, start, end)


def signer_from_config(
    config: EngineConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[SigningKeyProvider]:
    """Load batch-signing keys from the variables the config names, or None if neither is set."""
    env = os.environ if environ is None else environ
    if not env.get(config.signing_private_key_env) and not env.get(config.signing_public_key_env):
        return None
    return SigningKeyProvider.from_env(config.signing_private_key_env, config.signing_public_key_env, environ=env)


def create_engine(
    config: Optional[EngineConfig] = None,
    store: Optional[Store] = None,
    notifier: Optional[Notifier] = None,
    signer: Optional[SigningKeyProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    environ: Optional[Mapping[str, str]] = None,
) -> AccessEngine:
    """
    Factory function to create a configured AccessEngine.

    Defaults to an in-memory store and the built-in configuration. Without
    an explicit signer, batch-signing keys are read from the environment
    variables named by the config. The attribute schema is initialized
    with the default definitions.

    Example:
        engine = create_engine(EngineConfig.from_env())
    """
    config = config or EngineConfig()
    if signer is None:
        signer = signer_from_config(config, environ)
    engine = AccessEngine(store or InMemoryStore(), config, notifier, signer, clock)
    engine.attributes.initialize_default_attributes()
    return engine
