"""Tests for accessgate.audit"""

from datetime import datetime, timedelta, timezone

import pytest

from accessgate.audit import AuditLogger, to_jsonable
from accessgate.labels import SecurityLabel, SecurityLevel
from accessgate.ledger import HashChainLedger
from accessgate.models import ClearanceStatus, LogCategory, LogType, Resource


@pytest.fixture
def audit(store, clock):
    return AuditLogger(HashChainLedger(store, clock=clock), clock=clock)


class TestToJsonable:
    def test_converts_nested_values(self):
        value = {
            "level": SecurityLevel.RESTRICTED,
            "status": ClearanceStatus.ACTIVE,
            "compartments": frozenset({"B", "A"}),
            "when": datetime(2025, 1, 2, tzinfo=timezone.utc),
            "label": SecurityLabel(SecurityLevel.INTERNAL),
        }
        assert to_jsonable(value) == {
            "level": "RESTRICTED",
            "status": "ACTIVE",
            "compartments": ["A", "B"],
            "when": "2025-01-02T00:00:00+00:00",
            "label": {"level": "INTERNAL", "compartments": []},
        }


class TestAuditLogger:
    def test_log_is_chained(self, audit):
        entry = audit.log(LogCategory.SECURITY, LogType.DATA_ACCESS, "read", "document", resource_id="d1")
        assert entry.hash_chain
        assert entry.previous_hash is None

    def test_access_decision(self, audit):
        granted = audit.log_access_decision("alice", "document", "d1", "read", allowed=True, reason="Owner")
        denied = audit.log_access_decision("bob", "document", "d1", "read", allowed=False, reason="MAC: no")

        assert granted.log_type == LogType.ACCESS_GRANTED
        assert granted.denial_reason is None
        assert denied.log_type == LogType.ACCESS_DENIED
        assert denied.denial_reason == "MAC: no"
        assert denied.access_granted is False

    def test_clearance_change_states(self, audit):
        entry = audit.log_clearance_change(
            actor_id="admin",
            subject_id="bob",
            action="clearance.assigned",
            before=None,
            after={"level": SecurityLevel.CONFIDENTIAL, "compartments": frozenset({"FINANCIAL"})},
            reason="new hire",
        )
        assert entry.log_type == LogType.CLEARANCE_CHANGE
        assert entry.resource_id == "bob"
        assert entry.after_state == {"level": "CONFIDENTIAL", "compartments": ["FINANCIAL"]}
        assert entry.details["reason"] == "new hire"

    def test_classification_direction(self, audit):
        resource = Resource("document", "d1", owner_id="alice")
        low = SecurityLabel(SecurityLevel.INTERNAL)
        high = SecurityLabel(SecurityLevel.RESTRICTED)

        assert audit.log_classification_change("officer", resource, low, high).action == "classify"
        assert audit.log_classification_change("officer", resource, high, low).action == "declassify"

    def test_query_most_recent_first(self, store, now):
        times = iter([now, now + timedelta(minutes=1), now + timedelta(minutes=2)])
        audit = AuditLogger(HashChainLedger(store), clock=lambda: next(times))
        for action in ("first", "second", "third"):
            audit.log(LogCategory.SECURITY, LogType.DATA_ACCESS, action, "document")

        assert [e.action for e in audit.query()] == ["third", "second", "first"]
        assert [e.action for e in audit.query(limit=1)] == ["third"]

    def test_violations_and_activity(self, audit):
        audit.log_access_decision("bob", "document", "d1", "read", allowed=False, reason="denied")
        audit.log_access_decision("alice", "document", "d1", "read", allowed=True)
        audit.log(LogCategory.SECURITY, LogType.POLICY_VIOLATION, "exfiltrate", "document", subject_id="bob")

        violations = audit.get_violations(last_hours=24)
        assert {e.log_type for e in violations} == {LogType.ACCESS_DENIED, LogType.POLICY_VIOLATION}
        assert len(audit.get_subject_activity("bob")) == 2

    def test_stats(self, audit, store):
        audit.log_access_decision("bob", "document", "d1", "read", allowed=False, reason="denied")
        audit.log_access_decision("alice", "document", "d1", "read", allowed=True)
        audit.log(LogCategory.COMPLIANCE, LogType.SECURITY_CONFIG_CHANGE, "rotate", "keys")

        stats = audit.get_stats()
        assert stats["total_events"] == 3
        assert stats["access_granted"] == 1
        assert stats["access_denied"] == 1
        assert stats["by_category"] == {"SECURITY": 2, "COMPLIANCE": 1}
        assert stats["tampered"] == 0
