"""Tests for accessgate.mac"""

from datetime import timedelta
from itertools import combinations

import pytest

from accessgate.config import EngineConfig, WriteRule
from accessgate.errors import NotFound, Unauthorized
from accessgate.labels import SecurityLabel, SecurityLevel
from accessgate.mac import MacEvaluator, can_classify, can_declassify, can_read, can_write
from accessgate.models import ClearanceStatus, LogType, Resource, UserClearance


STRICTLY_HIGHER = list(combinations(SecurityLevel, 2))


class TestCanRead:
    """Tests for the simple security property."""

    @pytest.mark.parametrize("low,high", STRICTLY_HIGHER)
    def test_no_read_up(self, low, high):
        assert not can_read(low, ["FINANCIAL", "PERSONNEL"], high, [])
        assert not can_read(low, ["FINANCIAL"], high, ["FINANCIAL"])

    def test_need_to_know(self):
        assert not can_read("RESTRICTED", ["FINANCIAL"], "CONFIDENTIAL", ["FINANCIAL", "PERSONNEL"])
        assert can_read("RESTRICTED", ["FINANCIAL", "PERSONNEL"], "CONFIDENTIAL", ["FINANCIAL", "PERSONNEL"])

    def test_trusted_bypass(self):
        assert can_read("PUBLIC", [], "TOP_SECRET", ["FINANCIAL"], trusted=True)

    def test_level_gate_with_satisfied_compartments(self):
        assert can_read("CONFIDENTIAL", ["FINANCIAL"], "RESTRICTED", []) is False

    def test_higher_clearance_with_needed_compartment(self):
        assert can_read("RESTRICTED", ["FINANCIAL", "PERSONNEL"], "CONFIDENTIAL", ["PERSONNEL"]) is True

    def test_empty_resource_compartments(self):
        assert can_read("INTERNAL", [], "INTERNAL", [])


class TestCanWrite:
    """Tests for the configurable write rule."""

    def test_read_equivalent_is_default(self):
        assert can_write("RESTRICTED", [], "CONFIDENTIAL", [])
        assert not can_write("CONFIDENTIAL", [], "RESTRICTED", [])

    def test_star_property(self):
        rule = WriteRule.STAR_PROPERTY
        assert can_write("CONFIDENTIAL", [], "RESTRICTED", [], rule=rule)
        assert not can_write("RESTRICTED", [], "CONFIDENTIAL", [], rule=rule)

    def test_write_needs_compartments(self):
        assert not can_write("TOP_SECRET", [], "CONFIDENTIAL", ["FINANCIAL"])

    def test_trusted_writes_anywhere(self):
        assert can_write("TOP_SECRET", [], "PUBLIC", [], trusted=True, rule=WriteRule.STAR_PROPERTY)


class TestClassifyRules:
    def test_only_trusted_declassify(self):
        assert can_declassify("RESTRICTED", "INTERNAL", trusted=True)
        assert not can_declassify("RESTRICTED", "INTERNAL", trusted=False)

    def test_declassify_must_lower(self):
        assert not can_declassify("INTERNAL", "RESTRICTED", trusted=True)

    def test_classify_up_to_own_level(self):
        assert can_classify("CONFIDENTIAL", "CONFIDENTIAL")
        assert not can_classify("CONFIDENTIAL", "RESTRICTED")
        assert can_classify("PUBLIC", "TOP_SECRET", trusted=True)


class TestMacEvaluator:
    """Tests for store-backed MAC checks."""

    @pytest.fixture
    def mac(self, store, subjects, clock):
        return MacEvaluator(store, clock=clock)

    @pytest.fixture
    def payroll(self, store):
        return store.save_resource(Resource(
            "document", "payroll", owner_id="alice",
            security_label=SecurityLabel(SecurityLevel.CONFIDENTIAL, {"PERSONNEL"}),
        ))

    def grant(self, store, subject_id, level, compartments=(), **kwargs):
        store.save_clearance(UserClearance(subject_id, level, "admin", frozenset(compartments), **kwargs))

    def test_read_allowed(self, mac, store, payroll):
        self.grant(store, "bob", SecurityLevel.RESTRICTED, ["FINANCIAL", "PERSONNEL"])
        result = mac.check_read_access("bob", "document", "payroll")
        assert result.allowed
        assert result.details["subject_level"] == "RESTRICTED"

    def test_read_up_denied(self, mac, store, payroll):
        self.grant(store, "bob", SecurityLevel.INTERNAL, ["PERSONNEL"])
        result = mac.check_read_access("bob", "document", "payroll")
        assert not result.allowed
        assert result.violation == "NO_READ_UP"

    def test_need_to_know_flips(self, mac, store, payroll):
        self.grant(store, "bob", SecurityLevel.RESTRICTED, ["FINANCIAL"])
        denied = mac.check_read_access("bob", "document", "payroll")
        assert denied.violation == "NEED_TO_KNOW"
        assert denied.details["missing_compartments"] == ["PERSONNEL"]

        self.grant(store, "bob", SecurityLevel.RESTRICTED, ["FINANCIAL", "PERSONNEL"])
        assert mac.check_read_access("bob", "document", "payroll").allowed

    def test_legacy_level_without_record(self, mac, store, payroll, subjects):
        carol = subjects["carol"]
        carol.security_clearance = SecurityLevel.TOP_SECRET
        store.save_subject(carol)
        # No compartments from the legacy field
        assert mac.check_read_access("carol", "document", "payroll").violation == "NEED_TO_KNOW"

    def test_expired_clearance_resolves_to_public(self, mac, store, payroll, now):
        self.grant(store, "bob", SecurityLevel.TOP_SECRET, ["PERSONNEL"], expires_at=now - timedelta(days=1))
        effective = mac.resolve_clearance(store.get_subject("bob"))
        assert effective.level == SecurityLevel.PUBLIC
        assert effective.compartments == frozenset()

    def test_suspended_clearance_resolves_to_public(self, mac, store, payroll):
        self.grant(store, "bob", SecurityLevel.TOP_SECRET, ["PERSONNEL"], status=ClearanceStatus.SUSPENDED)
        assert mac.check_read_access("bob", "document", "payroll").violation == "NO_READ_UP"

    def test_trusted_subject(self, mac, payroll):
        assert mac.check_read_access("officer", "document", "payroll").allowed

    def test_privileged_role_bypass(self, mac, payroll):
        result = mac.check_read_access("admin", "document", "payroll")
        assert result.allowed
        assert result.details["bypass"] is True

    def test_unknown_subject_and_resource(self, mac, payroll):
        assert mac.check_read_access("ghost", "document", "payroll").violation == "NOT_FOUND"
        assert mac.check_read_access("bob", "document", "missing").violation == "NOT_FOUND"

    def test_write_read_equivalent(self, mac, store, payroll):
        self.grant(store, "bob", SecurityLevel.INTERNAL, ["PERSONNEL"])
        result = mac.check_write_access("bob", "document", "payroll")
        assert result.violation == "NO_WRITE_UP"

    def test_write_star_property(self, store, subjects, payroll, clock):
        mac = MacEvaluator(store, EngineConfig(mac_write_rule=WriteRule.STAR_PROPERTY), clock=clock)
        self.grant(store, "bob", SecurityLevel.TOP_SECRET, ["PERSONNEL"])

        result = mac.check_write_access("bob", "document", "payroll")
        assert result.violation == "NO_WRITE_DOWN"

        raised = mac.check_write_access("bob", "document", "payroll", target_level="TOP_SECRET")
        assert raised.allowed


class TestClassifyResource:
    """Tests for relabelling resources."""

    @pytest.fixture
    def memo(self, engine):
        return engine.permissions.register_resource("document", "memo", owner_id="alice")

    def test_classify_from_content(self, engine, memo):
        engine.assign_clearance("alice", "RESTRICTED", assigned_by="admin")
        label = engine.mac.classify_resource("alice", "document", "memo", content="Confidential budget")

        assert label == SecurityLabel(SecurityLevel.CONFIDENTIAL, {"FINANCIAL"})
        assert engine.store.get_resource("document", "memo").security_label == label

        logs = engine.audit.query(log_type=LogType.SECURITY_CONFIG_CHANGE)
        assert logs[0].action == "classify"
        assert "content_sha256" in logs[0].details

    def test_cannot_classify_above_own_level(self, engine, memo):
        engine.assign_clearance("alice", "CONFIDENTIAL", assigned_by="admin")
        with pytest.raises(Unauthorized):
            engine.mac.classify_resource("alice", "document", "memo", level="TOP_SECRET")

    def test_declassify_requires_trusted(self, engine, memo):
        engine.mac.classify_resource("officer", "document", "memo", level="RESTRICTED")
        engine.assign_clearance("alice", "TOP_SECRET", assigned_by="admin")

        with pytest.raises(Unauthorized):
            engine.mac.classify_resource("alice", "document", "memo", level="PUBLIC")

        label = engine.mac.classify_resource("officer", "document", "memo", level="PUBLIC")
        assert label.level == SecurityLevel.PUBLIC

    def test_unknown_resource(self, engine):
        with pytest.raises(NotFound):
            engine.mac.classify_resource("alice", "document", "nope", level="INTERNAL")
