"""Tests for accessgate.clearance"""

from datetime import timedelta

import pytest

from accessgate.clearance import change_type_for
from accessgate.errors import NotFound
from accessgate.labels import SecurityLevel
from accessgate.models import ClearanceChangeType, ClearanceStatus, LogType
from accessgate.notifications import NotificationEvent, Severity


@pytest.fixture
def clearances(engine):
    return engine.clearances


class TestChangeType:
    def test_change_types(self):
        assert change_type_for(None, SecurityLevel.INTERNAL) == ClearanceChangeType.ASSIGNED
        assert change_type_for(SecurityLevel.INTERNAL, SecurityLevel.INTERNAL) == ClearanceChangeType.ASSIGNED
        assert change_type_for(SecurityLevel.INTERNAL, SecurityLevel.RESTRICTED) == ClearanceChangeType.UPGRADED
        assert change_type_for(SecurityLevel.RESTRICTED, SecurityLevel.PUBLIC) == ClearanceChangeType.DOWNGRADED


class TestAssign:
    def test_assign(self, clearances, store, now):
        clearance = clearances.assign("bob", "confidential", ["FINANCIAL"], assigned_by="admin", reason="new role")

        assert clearance.level == SecurityLevel.CONFIDENTIAL
        assert clearance.compartments == frozenset({"FINANCIAL"})
        assert clearance.status == ClearanceStatus.ACTIVE
        assert clearance.next_review_at == now + timedelta(days=365)
        assert store.get_subject("bob").security_clearance == SecurityLevel.CONFIDENTIAL

        history = clearances.get_history("bob")
        assert [h.change_type for h in history] == [ClearanceChangeType.ASSIGNED]
        assert history[0].reason == "new role"

    def test_reassign_records_direction(self, clearances):
        clearances.assign("bob", "CONFIDENTIAL", assigned_by="admin")
        clearances.assign("bob", "RESTRICTED", assigned_by="admin")
        clearances.assign("bob", "INTERNAL", assigned_by="admin")

        changes = [h.change_type for h in clearances.get_history("bob")]
        assert changes == [
            ClearanceChangeType.ASSIGNED,
            ClearanceChangeType.UPGRADED,
            ClearanceChangeType.DOWNGRADED,
        ]

    def test_assign_is_audited(self, engine, clearances):
        clearances.assign("bob", "CONFIDENTIAL", ["FINANCIAL"], assigned_by="admin")
        entry = engine.audit.query(log_type=LogType.CLEARANCE_CHANGE)[0]

        assert entry.action == "clearance.assigned"
        assert entry.subject_id == "admin"
        assert entry.resource_id == "bob"
        assert entry.after_state["level"] == "CONFIDENTIAL"

    def test_unknown_subject(self, clearances):
        with pytest.raises(NotFound):
            clearances.assign("ghost", "INTERNAL", assigned_by="admin")

    def test_invalid_level(self, clearances):
        with pytest.raises(ValueError):
            clearances.assign("bob", "ULTRA", assigned_by="admin")


class TestRevoke:
    def test_soft_revoke(self, clearances):
        clearances.assign("bob", "RESTRICTED", ["PERSONNEL"], assigned_by="admin")
        revoked = clearances.revoke("bob", revoked_by="admin", reason="left team")

        assert revoked.status == ClearanceStatus.REVOKED
        assert revoked.level == SecurityLevel.RESTRICTED

        last = clearances.get_history("bob")[-1]
        assert last.change_type == ClearanceChangeType.REVOKED
        assert last.previous_compartments == frozenset({"PERSONNEL"})
        assert last.new_compartments == frozenset()

    def test_revoke_without_clearance(self, clearances):
        with pytest.raises(NotFound):
            clearances.revoke("carol", revoked_by="admin")


class TestCompartments:
    def test_add_is_idempotent(self, clearances):
        clearances.assign("bob", "CONFIDENTIAL", assigned_by="admin")

        clearances.add_compartment("bob", "FINANCIAL", added_by="admin")
        again = clearances.add_compartment("bob", "FINANCIAL", added_by="admin")

        assert again.compartments == frozenset({"FINANCIAL"})
        added = [h for h in clearances.get_history("bob") if h.change_type == ClearanceChangeType.COMPARTMENT_ADDED]
        assert len(added) == 1

    def test_remove(self, clearances):
        clearances.assign("bob", "CONFIDENTIAL", ["FINANCIAL", "PERSONNEL"], assigned_by="admin")
        updated = clearances.remove_compartment("bob", "PERSONNEL", removed_by="admin")

        assert updated.compartments == frozenset({"FINANCIAL"})
        assert clearances.get_history("bob")[-1].change_type == ClearanceChangeType.COMPARTMENT_REMOVED

    def test_remove_absent_is_noop(self, clearances):
        clearances.assign("bob", "CONFIDENTIAL", assigned_by="admin")
        clearances.remove_compartment("bob", "VISITOR", removed_by="admin")
        assert len(clearances.get_history("bob")) == 1


class TestEscalationAndReview:
    def test_request_escalation(self, clearances, notifier, store):
        clearances.assign("bob", "INTERNAL", assigned_by="admin")
        updated = clearances.request_escalation("bob", "RESTRICTED", ["OPERATIONAL"], reason="incident")

        assert updated.escalation_requested
        assert updated.level == SecurityLevel.INTERNAL

        alert = notifier.by_event(NotificationEvent.ESCALATION_REQUESTED)[0]
        assert alert.severity == Severity.WARNING
        assert alert.data["target_level"] == "RESTRICTED"

    def test_approved_review(self, clearances, store, now):
        clearances.assign("bob", "INTERNAL", assigned_by="admin")
        clearances.request_escalation("bob", "RESTRICTED", reason="incident")

        reviewed = clearances.review_clearance("bob", reviewed_by="officer", approved=True,
                                               new_level="RESTRICTED", notes="approved by CISO")

        assert reviewed.level == SecurityLevel.RESTRICTED
        assert reviewed.escalation_requested is False
        assert reviewed.next_review_at == now + timedelta(days=365)
        assert store.get_subject("bob").security_clearance == SecurityLevel.RESTRICTED
        assert clearances.get_history("bob")[-1].change_type == ClearanceChangeType.REVIEWED

    def test_rejected_review_suspends(self, engine, clearances):
        clearances.assign("bob", "CONFIDENTIAL", assigned_by="admin")
        reviewed = clearances.review_clearance("bob", reviewed_by="officer", approved=False)

        assert reviewed.status == ClearanceStatus.SUSPENDED
        assert engine.audit.query(log_type=LogType.CLEARANCE_CHANGE)[0].action == "clearance.suspended"

    def test_users_requiring_review(self, engine, store, subjects, clock):
        from accessgate.clearance import ClearanceManager
        from accessgate.config import EngineConfig

        clearances = ClearanceManager(store, EngineConfig(review_interval_days=10), clock=clock)
        clearances.assign("bob", "INTERNAL", assigned_by="admin")
        engine.assign_clearance("carol", "INTERNAL", assigned_by="admin")

        due = clearances.get_users_requiring_review(days_before_due=30)
        assert [c.subject_id for c in due] == ["bob"]

    def test_expire_due_clearances(self, clearances, now):
        clearances.assign("bob", "RESTRICTED", assigned_by="admin", expires_at=now + timedelta(days=1))
        clearances.assign("carol", "RESTRICTED", assigned_by="admin", expires_at=now + timedelta(days=90))

        expired = clearances.expire_due_clearances(now + timedelta(days=2))

        assert [c.subject_id for c in expired] == ["bob"]
        assert clearances.store.get_clearance("bob").status == ClearanceStatus.EXPIRED
        assert clearances.store.get_clearance("carol").status == ClearanceStatus.ACTIVE

        history = clearances.get_history("bob")
        assert [h.change_type for h in history] == [ClearanceChangeType.ASSIGNED, ClearanceChangeType.EXPIRED]
        assert history[-1].previous_level == SecurityLevel.RESTRICTED
        assert history[-1].changed_by == "system"
        assert [h.change_type for h in clearances.get_history("carol")] == [ClearanceChangeType.ASSIGNED]
