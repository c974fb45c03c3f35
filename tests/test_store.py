"""Tests for accessgate.store"""

import copy
from datetime import timedelta
from types import SimpleNamespace

import pytest

from accessgate import store as store_module
from accessgate.errors import IntegrityFailure
from accessgate.labels import SecurityLevel
from accessgate.models import (
    AccessPolicy,
    AccessRule,
    AuditLogEntry,
    ClearanceStatus,
    HashChainEntry,
    LogCategory,
    LogType,
    PolicyType,
    RuleType,
    Resource,
    Subject,
    UserClearance,
)


class TestRecords:
    def test_returned_records_are_copies(self, store):
        store.save_subject(Subject("alice", role="USER"))

        loaded = store.get_subject("alice")
        loaded.role = "SUPER_ADMIN"

        assert store.get_subject("alice").role == "USER"

    def test_nested_payloads_are_copies(self, store):
        details = {"note": "ok", "tags": ["a"]}
        store.add_audit_log(AuditLogEntry(
            LogCategory.SECURITY, LogType.DATA_ACCESS, "read", "document", id="log-1", details=details,
        ))
        details["note"] = "changed by writer"

        loaded = store.list_audit_logs(limit=1)[0]
        loaded.details["note"] = "changed by reader"
        loaded.details["tags"].append("b")

        assert store.get_audit_log("log-1").details == {"note": "ok", "tags": ["a"]}

    def test_rule_config_is_copied(self, store):
        store.save_rule(AccessRule("r1", RuleType.TIME_BASED, {"days_of_week": [1, 2]}))

        store.get_rule("r1").config["days_of_week"].append(6)

        assert store.get_rule("r1").config == {"days_of_week": [1, 2]}

    def test_missing_records(self, store):
        assert store.get_subject("nobody") is None
        assert store.get_resource("document", "nothing") is None
        assert store.get_clearance("nobody") is None

    def test_resource_natural_key_is_unique(self, store):
        store.save_resource(Resource("document", "d1", owner_id="alice"))
        with pytest.raises(IntegrityFailure):
            store.save_resource(Resource("document", "d1", owner_id="bob"))

    def test_resource_update_keeps_key(self, store):
        resource = store.save_resource(Resource("document", "d1", owner_id="alice"))
        resource.owner_id = "bob"
        store.save_resource(resource)

        assert store.get_resource("document", "d1").owner_id == "bob"
        assert store.get_resource_by_pk(resource.id).owner_id == "bob"

    def test_duplicate_chain_sequence(self, store):
        store.add_chain_entry(HashChainEntry(LogCategory.SECURITY, 1, "", "a" * 64, "log-1"))
        with pytest.raises(IntegrityFailure):
            store.add_chain_entry(HashChainEntry(LogCategory.SECURITY, 1, "", "b" * 64, "log-2"))

        # Another category has its own sequence space
        store.add_chain_entry(HashChainEntry(LogCategory.SYSTEM, 1, "", "c" * 64, "log-3"))

    def test_policies_sorted_by_priority(self, store):
        for policy_id, priority in (("low", 1), ("high", 10), ("mid", 5)):
            store.save_policy(AccessPolicy(policy_id, "document", "read", PolicyType.ABAC, priority=priority))
        store.save_policy(AccessPolicy("off", "document", "read", PolicyType.ABAC, priority=99, enabled=False))

        ids = [p.id for p in store.list_policies("document", "read", PolicyType.ABAC)]
        assert ids == ["high", "mid", "low"]

    def test_clearances_due_for_review(self, store, now):
        store.save_clearance(UserClearance("a", SecurityLevel.INTERNAL, "admin", next_review_at=now + timedelta(days=20)))
        store.save_clearance(UserClearance("b", SecurityLevel.INTERNAL, "admin", next_review_at=now + timedelta(days=5)))
        store.save_clearance(UserClearance("c", SecurityLevel.INTERNAL, "admin", next_review_at=now + timedelta(days=90)))
        store.save_clearance(UserClearance(
            "d", SecurityLevel.INTERNAL, "admin",
            next_review_at=now, status=ClearanceStatus.SUSPENDED,
        ))

        due = store.list_clearances(status=ClearanceStatus.ACTIVE, due_before=now + timedelta(days=30))
        assert [c.subject_id for c in due] == ["b", "a"]


class TestTransactions:
    def test_commit(self, store):
        with store.transaction():
            store.save_subject(Subject("alice"))
        assert store.get_subject("alice") is not None

    def test_rollback_on_error(self, store):
        store.save_subject(Subject("alice", role="USER"))

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.save_subject(Subject("alice", role="SUPER_ADMIN"))
                store.save_subject(Subject("bob"))
                raise RuntimeError("boom")

        assert store.get_subject("alice").role == "USER"
        assert store.get_subject("bob") is None

    def test_nested_rollback_keeps_outer_work(self, store):
        with store.transaction():
            store.save_subject(Subject("alice"))
            try:
                with store.transaction():
                    store.save_subject(Subject("bob"))
                    raise ValueError("inner failure")
            except ValueError:
                pass
            store.save_subject(Subject("carol"))

        assert store.get_subject("alice") is not None
        assert store.get_subject("bob") is None
        assert store.get_subject("carol") is not None

    def test_outer_rollback_undoes_committed_inner_work(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.save_subject(Subject("bob"))
                raise RuntimeError("outer failure")

        assert store.get_subject("bob") is None

    def test_rollback_restores_overwritten_records(self, store):
        store.save_policy(AccessPolicy("p1", "document", "read", PolicyType.ABAC))

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.save_policy(AccessPolicy("p1", "document", "read", PolicyType.ABAC, priority=7))
                raise RuntimeError("boom")

        assert store.get_policy("p1").priority == 0

    def test_rollback_restores_chain_head(self, store):
        store.add_chain_entry(HashChainEntry(LogCategory.SECURITY, 1, "", "a" * 64, "log-1"))

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.add_chain_entry(HashChainEntry(LogCategory.SECURITY, 2, "a" * 64, "b" * 64, "log-2"))
                raise RuntimeError("boom")

        assert store.latest_chain_entry(LogCategory.SECURITY).sequence_number == 1
        assert store.get_chain_entry_for_log("log-2") is None
        assert store.get_chain_entry_for_log("log-1").sequence_number == 1

    def test_cost_does_not_grow_with_stored_rows(self, store, monkeypatch):
        for _ in range(200):
            store.add_audit_log(AuditLogEntry(LogCategory.SECURITY, LogType.DATA_ACCESS, "read", "document"))

        copies = []

        def deepcopy(value):
            copies.append(value)
            return copy.deepcopy(value)

        monkeypatch.setattr(store_module, "copy", SimpleNamespace(deepcopy=deepcopy))

        with store.transaction():
            store.save_subject(Subject("alice"))

        assert len(copies) == 1
