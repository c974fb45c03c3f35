"""
Clearance Lifecycle Manager.

Each subject holds at most one clearance record:

    (none) -> ACTIVE -> SUSPENDED | REVOKED | EXPIRED

Expiry is recorded in the history with its own EXPIRED change type.

Level and compartment changes and approved reviews keep the record
ACTIVE. Every mutation appends a ClearanceHistory record and an audit
entry inside the same store transaction.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from accessgate.config import EngineConfig
from accessgate.errors import NotFound
from accessgate.labels import SecurityLevel, normalize_compartments
from accessgate.models import (
    ClearanceChangeType,
    ClearanceHistory,
    ClearanceStatus,
    UserClearance,
    utcnow,
)
from accessgate.notifications import Notification, NotificationEvent, Notifier, Severity, dispatch
from accessgate.store import Store


logger = logging.getLogger(__name__)


def _state(clearance: Optional[UserClearance]) -> Optional[dict]:
    if clearance is None:
        return None
    return {
        "level": clearance.level,
        "compartments": clearance.compartments,
        "status": clearance.status,
    }


def change_type_for(previous: Optional[SecurityLevel], new: SecurityLevel) -> ClearanceChangeType:
    if previous is None or new == previous:
        return ClearanceChangeType.ASSIGNED
    return ClearanceChangeType.UPGRADED if new > previous else ClearanceChangeType.DOWNGRADED


class ClearanceManager:
    """
    Assigns, revokes, reviews and escalates subject clearances.

    Example:
        clearances = ClearanceManager(store, audit=audit)
        clearances.assign("bob", SecurityLevel.CONFIDENTIAL, ["FINANCIAL"], assigned_by="admin")
        clearances.add_compartment("bob", "PERSONNEL", added_by="admin")

        for clearance in clearances.get_users_requiring_review(days_before_due=30):
            ...
    """

    def __init__(
        self,
        store: Store,
        config: Optional[EngineConfig] = None,
        audit=None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.audit = audit
        self.notifier = notifier
        self.clock = clock

    @property
    def review_interval(self) -> timedelta:
        return timedelta(days=self.config.review_interval_days)

    def _require(self, subject_id: str) -> UserClearance:
        clearance = self.store.get_clearance(subject_id)
        if clearance is None:
            raise NotFound(f"Subject {subject_id} does not have a clearance")
        return clearance

    def _record(
        self,
        subject_id: str,
        change_type: ClearanceChangeType,
        changed_by: str,
        before: Optional[UserClearance],
        new_level: SecurityLevel,
        new_compartments: Iterable[str],
        reason: Optional[str],
        changed_at: Optional[datetime] = None,
    ) -> ClearanceHistory:
        record = ClearanceHistory(
            subject_id=subject_id,
            change_type=change_type,
            new_level=new_level,
            changed_by=changed_by,
            previous_level=before.level if before else None,
            previous_compartments=before.compartments if before else frozenset(),
            new_compartments=normalize_compartments(new_compartments),
            reason=reason,
            changed_at=changed_at or self.clock(),
        )
        self.store.add_clearance_history(record)
        return record

    def _audit(
        self,
        actor_id: str,
        subject_id: str,
        action: str,
        before: Optional[UserClearance],
        after: Optional[UserClearance],
        reason: Optional[str] = None,
    ) -> None:
        if self.audit is not None:
            self.audit.log_clearance_change(
                actor_id=actor_id,
                subject_id=subject_id,
                action=action,
                before=_state(before),
                after=_state(after),
                reason=reason,
            )

    def assign(
        self,
        subject_id: str,
        level: SecurityLevel | str,
        compartments: Iterable[str] = (),
        assigned_by: str = "system",
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserClearance:
        """
        Create or replace a subject's clearance and schedule its next review.

        The level is mirrored onto the subject record for callers that
        still read the legacy field.

        Raises:
            NotFound: Unknown subject
        """
        level = SecurityLevel.parse(level)
        compartments = normalize_compartments(compartments)
        now = self.clock()

        with self.store.transaction():
            subject = self.store.get_subject(subject_id)
            if subject is None:
                raise NotFound(f"Subject not found: {subject_id}")

            existing = self.store.get_clearance(subject_id)
            base = existing or UserClearance(subject_id=subject_id, level=level, assigned_by=assigned_by, assigned_at=now)
            clearance = replace(
                base,
                level=level,
                compartments=compartments,
                assigned_by=assigned_by,
                status=ClearanceStatus.ACTIVE,
                next_review_at=now + self.review_interval,
                expires_at=expires_at,
                updated_at=now,
            )
            self.store.save_clearance(clearance)

            change = change_type_for(existing.level if existing else None, level)
            self._record(subject_id, change, assigned_by, existing, level, compartments, reason)

            subject.security_clearance = level
            self.store.save_subject(subject)

            self._audit(assigned_by, subject_id, "clearance.assigned", existing, clearance, reason)

        logger.info(f"Clearance {level.name} {sorted(compartments)} assigned to {subject_id} by {assigned_by}")
        return clearance

    def revoke(self, subject_id: str, revoked_by: str, reason: Optional[str] = None) -> UserClearance:
        """
        Mark a clearance REVOKED.

        The record keeps its level and compartments; only the history entry
        shows the compartments cleared.

        Raises:
            NotFound: Subject has no clearance
        """
        with self.store.transaction():
            existing = self._require(subject_id)
            clearance = replace(existing, status=ClearanceStatus.REVOKED, updated_at=self.clock())
            self.store.save_clearance(clearance)

            self._record(subject_id, ClearanceChangeType.REVOKED, revoked_by, existing, existing.level, (), reason)
            self._audit(revoked_by, subject_id, "clearance.revoked", existing, clearance, reason)

        logger.info(f"Clearance of {subject_id} revoked by {revoked_by}")
        return clearance

    def add_compartment(
        self,
        subject_id: str,
        compartment: str,
        added_by: str,
        reason: Optional[str] = None,
    ) -> UserClearance:
        """Add a compartment. Adding one the subject already holds changes nothing."""
        compartment = compartment.strip()

        with self.store.transaction():
            existing = self._require(subject_id)
            if compartment in existing.compartments:
                return existing

            clearance = replace(
                existing,
                compartments=existing.compartments | {compartment},
                updated_at=self.clock(),
            )
            self.store.save_clearance(clearance)

            self._record(subject_id, ClearanceChangeType.COMPARTMENT_ADDED, added_by,
                         existing, existing.level, clearance.compartments, reason)
            self._audit(added_by, subject_id, "clearance.compartment_added", existing, clearance, reason)

        return clearance

    def remove_compartment(
        self,
        subject_id: str,
        compartment: str,
        removed_by: str,
        reason: Optional[str] = None,
    ) -> UserClearance:
        compartment = compartment.strip()

        with self.store.transaction():
            existing = self._require(subject_id)
            if compartment not in existing.compartments:
                return existing

            clearance = replace(
                existing,
                compartments=existing.compartments - {compartment},
                updated_at=self.clock(),
            )
            self.store.save_clearance(clearance)

            self._record(subject_id, ClearanceChangeType.COMPARTMENT_REMOVED, removed_by,
                         existing, existing.level, clearance.compartments, reason)
            self._audit(removed_by, subject_id, "clearance.compartment_removed", existing, clearance, reason)

        return clearance

    def request_escalation(
        self,
        subject_id: str,
        target_level: SecurityLevel | str,
        target_compartments: Iterable[str] = (),
        reason: str = "",
    ) -> UserClearance:
        """
        Flag a clearance for escalation. The level itself is not changed.

        Raises:
            NotFound: Subject has no clearance
        """
        target_level = SecurityLevel.parse(target_level)
        target_compartments = normalize_compartments(target_compartments)
        now = self.clock()

        with self.store.transaction():
            existing = self._require(subject_id)
            clearance = replace(
                existing,
                escalation_requested=True,
                escalation_reason=reason,
                escalation_requested_at=now,
                updated_at=now,
            )
            self.store.save_clearance(clearance)

            if self.audit is not None:
                self.audit.log_clearance_change(
                    actor_id=subject_id,
                    subject_id=subject_id,
                    action="clearance.escalation_requested",
                    before=_state(existing),
                    after={"level": target_level, "compartments": target_compartments},
                    reason=reason,
                )

        dispatch(self.notifier, Notification(
            event=NotificationEvent.ESCALATION_REQUESTED,
            title=f"Clearance escalation requested by {subject_id}",
            message=(
                f"{subject_id} requests {target_level.name} "
                f"(current {existing.level.name}). Reason: {reason or 'none given'}"
            ),
            severity=Severity.WARNING,
            data={
                "subject_id": subject_id,
                "current_level": existing.level.name,
                "target_level": target_level.name,
                "target_compartments": sorted(target_compartments),
            },
        ))
        return clearance

    def review_clearance(
        self,
        subject_id: str,
        reviewed_by: str,
        approved: bool,
        new_level: Optional[SecurityLevel | str] = None,
        new_compartments: Optional[Iterable[str]] = None,
        notes: Optional[str] = None,
    ) -> UserClearance:
        """
        Record a periodic review.

        Approval schedules the next review and optionally applies a new
        level or compartment set. Rejection suspends the clearance.

        Raises:
            NotFound: Subject has no clearance
        """
        now = self.clock()

        with self.store.transaction():
            existing = self._require(subject_id)

            if approved:
                level = SecurityLevel.parse(new_level) if new_level is not None else existing.level
                compartments = (
                    normalize_compartments(new_compartments)
                    if new_compartments is not None else existing.compartments
                )
                clearance = replace(
                    existing,
                    level=level,
                    compartments=compartments,
                    next_review_at=now + self.review_interval,
                    escalation_requested=False,
                    updated_at=now,
                )
            else:
                clearance = replace(existing, status=ClearanceStatus.SUSPENDED, updated_at=now)

            self.store.save_clearance(clearance)
            self._record(subject_id, ClearanceChangeType.REVIEWED, reviewed_by,
                         existing, clearance.level, clearance.compartments, notes)

            if approved and clearance.level != existing.level:
                subject = self.store.get_subject(subject_id)
                if subject is not None:
                    subject.security_clearance = clearance.level
                    self.store.save_subject(subject)

            self._audit(reviewed_by, subject_id,
                        "clearance.reviewed" if approved else "clearance.suspended",
                        existing, clearance, notes)

        logger.info(f"Clearance review of {subject_id} by {reviewed_by}: {'approved' if approved else 'suspended'}")
        return clearance

    def get_users_requiring_review(self, days_before_due: int = 30) -> list[UserClearance]:
        """ACTIVE clearances due for review within the window, earliest first."""
        due_before = self.clock() + timedelta(days=days_before_due)
        return self.store.list_clearances(status=ClearanceStatus.ACTIVE, due_before=due_before)

    def get_history(self, subject_id: str) -> list[ClearanceHistory]:
        history = self.store.list_clearance_history(subject_id)
        history.sort(key=lambda h: h.changed_at)
        return history

    def expire_due_clearances(self, now: Optional[datetime] = None) -> list[UserClearance]:
        """
        Mark ACTIVE clearances past their expiry as EXPIRED.

        Meant to be called by an external job runner.
        """
        now = now or self.clock()
        expired = []

        with self.store.transaction():
            for existing in self.store.list_clearances(status=ClearanceStatus.ACTIVE):
                if not existing.is_expired(now):
                    continue
                clearance = replace(existing, status=ClearanceStatus.EXPIRED, updated_at=now)
                self.store.save_clearance(clearance)
                self._record(existing.subject_id, ClearanceChangeType.EXPIRED, "system", existing,
                             existing.level, existing.compartments, "Clearance expired", changed_at=now)
                self._audit("system", existing.subject_id, "clearance.expired", existing, clearance)
                expired.append(clearance)

        if expired:
            logger.info(f"Expired {len(expired)} clearances")
        return expired
