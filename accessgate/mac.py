"""
MAC Evaluator - Bell-LaPadula policy enforcement.

Key BLP Properties:
- Simple Security (No Read Up): a subject can only read objects at or
  below their clearance level, and only if they hold every compartment
  of the object (need-to-know)
- Write: by default the same comparison as read is applied (a writer must
  hold read-equivalent clearance). Deployments that want the classical
  *-property (no write down) select WriteRule.STAR_PROPERTY.

Trusted subjects bypass level and compartment checks. Only trusted
subjects may declassify (lower) a label.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from accessgate.classifier import KeywordTable, content_fingerprint
from accessgate.config import EngineConfig, WriteRule
from accessgate.errors import NotFound, Unauthorized
from accessgate.labels import (
    SecurityLabel,
    SecurityLevel,
    is_subset_compartments,
    level_value,
    normalize_compartments,
)
from accessgate.models import CheckResult, ClearanceStatus, Subject, utcnow
from accessgate.store import Store


logger = logging.getLogger(__name__)


def can_read(
    subject_level: SecurityLevel | str,
    subject_compartments: Iterable[str] | None,
    resource_level: SecurityLevel | str,
    resource_compartments: Iterable[str] | None,
    trusted: bool = False,
) -> bool:
    """No read up, plus need-to-know over compartments."""
    if trusted:
        return True

    if level_value(subject_level) < level_value(resource_level):
        return False

    return is_subset_compartments(resource_compartments, subject_compartments)


def can_write(
    subject_level: SecurityLevel | str,
    subject_compartments: Iterable[str] | None,
    resource_level: SecurityLevel | str,
    resource_compartments: Iterable[str] | None,
    trusted: bool = False,
    rule: WriteRule = WriteRule.READ_EQUIVALENT,
) -> bool:
    """
    Write check.

    READ_EQUIVALENT requires subject level >= resource level.
    STAR_PROPERTY requires resource level >= subject level.
    Both require the subject to hold every resource compartment.
    """
    if trusted:
        return True

    subject_rank = level_value(subject_level)
    resource_rank = level_value(resource_level)

    if rule == WriteRule.STAR_PROPERTY:
        if resource_rank < subject_rank:
            return False
    elif subject_rank < resource_rank:
        return False

    return is_subset_compartments(resource_compartments, subject_compartments)


def can_declassify(
    current_level: SecurityLevel | str,
    target_level: SecurityLevel | str,
    trusted: bool,
) -> bool:
    """Only trusted subjects may lower a label, and only downwards."""
    if not trusted:
        return False
    return level_value(target_level) < level_value(current_level)


def can_classify(
    subject_level: SecurityLevel | str,
    target_level: SecurityLevel | str,
    trusted: bool = False,
) -> bool:
    if trusted:
        return True
    return level_value(subject_level) >= level_value(target_level)


@dataclass(frozen=True)
class EffectiveClearance:
    """Clearance a subject actually holds at evaluation time."""
    level: SecurityLevel
    compartments: frozenset[str] = field(default_factory=frozenset)
    trusted: bool = False
    status: Optional[ClearanceStatus] = None


class MacEvaluator:
    """
    Resolves subject clearances and resource labels from the store and
    applies the BLP checks.

    Example:
        mac = MacEvaluator(store)
        result = mac.check_read_access("alice", "document", "q3-report")
        if not result:
            print(result.violation)  # "NO_READ_UP" or "NEED_TO_KNOW"
    """

    def __init__(
        self,
        store: Store,
        config: Optional[EngineConfig] = None,
        audit=None,
        keyword_table: Optional[KeywordTable] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            store: Repository holding subjects, clearances and resources
            config: Engine configuration (privileged roles, write rule)
            audit: Optional AuditLogger for classification changes
            keyword_table: Keywords used by classify_resource
            clock: Source of the current time
        """
        self.store = store
        self.config = config or EngineConfig()
        self.audit = audit
        self.keyword_table = keyword_table or KeywordTable()
        self.clock = clock

    def resolve_clearance(self, subject: Subject) -> EffectiveClearance:
        """
        Determine the effective clearance of a subject.

        An active, unexpired clearance record supplies level and
        compartments. Without any record the legacy level on the subject
        applies with no compartments. A suspended, revoked or expired
        record resolves to PUBLIC with no compartments.
        """
        clearance = self.store.get_clearance(subject.id)
        if clearance is None:
            return EffectiveClearance(
                level=subject.security_clearance,
                trusted=subject.trusted_subject,
            )

        if not clearance.is_effective(self.clock()):
            return EffectiveClearance(
                level=SecurityLevel.PUBLIC,
                trusted=subject.trusted_subject,
                status=clearance.status,
            )

        return EffectiveClearance(
            level=clearance.level,
            compartments=clearance.compartments,
            trusted=subject.trusted_subject,
            status=clearance.status,
        )

    def _load(self, subject_id: str, resource_type: str, resource_id: str):
        subject = self.store.get_subject(subject_id)
        if subject is None:
            return None, None, CheckResult.deny("Subject not found", violation="NOT_FOUND")

        if self.config.is_privileged(subject.role):
            return subject, None, CheckResult.allow(f"{subject.role} bypass", bypass=True)

        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            return subject, None, CheckResult.deny("Resource not found", violation="NOT_FOUND")

        return subject, resource, None

    def check_read_access(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
    ) -> CheckResult:
        """
        Check if the subject may read the resource under No Read Up.

        Returns:
            CheckResult with violation NO_READ_UP or NEED_TO_KNOW on denial
        """
        subject, resource, early = self._load(subject_id, resource_type, resource_id)
        if early is not None:
            return early

        effective = self.resolve_clearance(subject)
        label = resource.security_label

        if can_read(effective.level, effective.compartments, label.level, label.compartments, effective.trusted):
            return CheckResult.allow(
                subject_level=effective.level.name,
                resource_level=label.level.name,
            )

        return self._denial(effective, label, write=False)

    def check_write_access(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        target_level: Optional[SecurityLevel | str] = None,
        target_compartments: Optional[Iterable[str]] = None,
    ) -> CheckResult:
        """
        Check if the subject may write the resource.

        Args:
            target_level: Level the write would produce, instead of the
                resource's current level
            target_compartments: Compartments the write would produce
        """
        subject, resource, early = self._load(subject_id, resource_type, resource_id)
        if early is not None:
            return early

        effective = self.resolve_clearance(subject)
        label = SecurityLabel(
            level=SecurityLevel.parse(target_level) if target_level is not None else resource.security_label.level,
            compartments=(
                normalize_compartments(target_compartments)
                if target_compartments is not None
                else resource.security_label.compartments
            ),
        )

        if can_write(
            effective.level,
            effective.compartments,
            label.level,
            label.compartments,
            effective.trusted,
            rule=self.config.mac_write_rule,
        ):
            return CheckResult.allow(
                subject_level=effective.level.name,
                resource_level=label.level.name,
            )

        return self._denial(effective, label, write=True)

    def _denial(self, effective: EffectiveClearance, label: SecurityLabel, write: bool) -> CheckResult:
        details = {
            "subject_level": effective.level.name,
            "resource_level": label.level.name,
        }

        missing = label.compartments - effective.compartments
        level_ok = (
            effective.level <= label.level
            if write and self.config.mac_write_rule == WriteRule.STAR_PROPERTY
            else effective.level >= label.level
        )

        if not level_ok:
            if write and self.config.mac_write_rule == WriteRule.STAR_PROPERTY:
                return CheckResult.deny(
                    f"Cannot write {effective.level} information to a {label.level} object (no write-down rule)",
                    violation="NO_WRITE_DOWN",
                    **details,
                )
            action = "write to" if write else "read"
            return CheckResult.deny(
                f"Clearance {effective.level} is insufficient to {action} {label.level} resources",
                violation="NO_WRITE_UP" if write else "NO_READ_UP",
                **details,
            )

        return CheckResult.deny(
            f"Missing required compartments: {', '.join(sorted(missing))}",
            violation="NEED_TO_KNOW",
            missing_compartments=sorted(missing),
            **details,
        )

    def classify_resource(
        self,
        actor_id: str,
        resource_type: str,
        resource_id: str,
        content: Optional[str] = None,
        level: Optional[SecurityLevel | str] = None,
        compartments: Optional[Iterable[str]] = None,
    ) -> SecurityLabel:
        """
        Relabel a resource, either explicitly or from its content.

        Raising a label requires clearance at the target level; lowering
        it requires a trusted subject.

        Raises:
            NotFound: Actor or resource does not exist
            Unauthorized: Actor may not apply the new label
        """
        actor = self.store.get_subject(actor_id)
        if actor is None:
            raise NotFound(f"Subject not found: {actor_id}")

        with self.store.transaction():
            resource = self.store.get_resource(resource_type, resource_id)
            if resource is None:
                raise NotFound(f"Resource not found: {resource_type}:{resource_id}")

            if content is not None and level is None:
                new_label = self.keyword_table.classify(content)
            else:
                new_label = SecurityLabel(
                    level=level if level is not None else resource.security_label.level,
                    compartments=compartments if compartments is not None else resource.security_label.compartments,
                )

            effective = self.resolve_clearance(actor)
            current = resource.security_label
            if new_label.level < current.level:
                allowed = can_declassify(current.level, new_label.level, effective.trusted)
            else:
                allowed = can_classify(effective.level, new_label.level, effective.trusted)

            if not allowed and not self.config.is_privileged(actor.role):
                logger.warning(
                    f"Subject {actor_id} denied relabel of {resource_type}:{resource_id} "
                    f"from {current} to {new_label}"
                )
                raise Unauthorized(f"Insufficient clearance to classify to {new_label.level}")

            resource.security_label = new_label
            self.store.save_resource(resource)

            if self.audit is not None:
                details = {"classifier": "keywords" if content is not None and level is None else "manual"}
                if content is not None:
                    details["content_sha256"] = content_fingerprint(content)
                self.audit.log_classification_change(
                    actor_id=actor_id,
                    resource=resource,
                    before=current,
                    after=new_label,
                    details=details,
                )

        logger.info(f"Resource {resource_type}:{resource_id} relabelled {current} -> {new_label}")
        return new_label
