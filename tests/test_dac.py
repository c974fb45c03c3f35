"""Tests for accessgate.dac"""

from datetime import timedelta

import pytest

from accessgate.errors import AccessControlError, IntegrityFailure, NotFound, PolicyMisconfiguration, Unauthorized
from accessgate.models import LogType, Permission, TransferStatus
from accessgate.notifications import NotificationEvent


@pytest.fixture
def dac(engine):
    return engine.permissions


class TestHasPermission:
    """Owner, direct grant, then parent grant."""

    def test_owner(self, dac, report):
        result = dac.has_permission("alice", "document", "q3-report", "delete")
        assert result.allowed
        assert result.reason == "Owner"

    def test_no_grant(self, dac, report):
        result = dac.has_permission("bob", "document", "q3-report", Permission.READ)
        assert not result.allowed
        assert result.violation == "NO_PERMISSION"

    def test_direct_grant_bits(self, dac, report):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True)

        assert dac.has_permission("bob", "document", "q3-report", "read").reason == "Direct grant"
        assert not dac.has_permission("bob", "document", "q3-report", "write").allowed

    def test_expired_grant(self, dac, report, now):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True,
                             expires_at=now - timedelta(seconds=1))
        assert not dac.has_permission("bob", "document", "q3-report", "read").allowed

    def test_parent_grant_one_level(self, dac, report):
        folder = dac.register_resource("folder", "finance", owner_id="alice")
        child = dac.register_resource("document", "budget", owner_id="alice", parent=folder)
        dac.register_resource("document", "budget-notes", owner_id="alice", parent=child)
        dac.grant_permission("folder", "finance", "bob", granted_by="alice", read=True)

        inherited = dac.has_permission("bob", "document", "budget", "read")
        assert inherited.reason == "Inherited from parent resource"
        assert inherited.inherited is True

        # Grandparent grants do not reach grandchildren
        assert not dac.has_permission("bob", "document", "budget-notes", "read").allowed

    def test_privileged_bypass(self, dac, report):
        result = dac.has_permission("admin", "document", "q3-report", "delete")
        assert result.allowed
        assert result.details["bypass"] is True

    def test_missing_resource(self, dac):
        assert dac.has_permission("bob", "document", "nope", "read").violation == "NOT_FOUND"

    def test_unknown_action(self, dac, report):
        with pytest.raises(PolicyMisconfiguration):
            dac.has_permission("bob", "document", "q3-report", "print")


class TestGrantAndRevoke:
    def test_grant_requires_share(self, dac, report):
        with pytest.raises(Unauthorized, match="You do not have permission to share this resource"):
            dac.grant_permission("document", "q3-report", "carol", granted_by="bob", read=True)

    def test_sharer_can_grant(self, dac, report):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True, share=True)
        dac.grant_permission("document", "q3-report", "carol", granted_by="bob", read=True)
        assert dac.has_permission("carol", "document", "q3-report", "read").allowed

    def test_upsert_keeps_unspecified_bits(self, dac, report):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True)
        grant = dac.grant_permission("document", "q3-report", "bob", granted_by="alice", write=True)

        assert grant.can_read and grant.can_write
        assert len(dac.get_resource_permissions("document", "q3-report")) == 1

    def test_grant_creates_missing_resource(self, dac, store):
        dac.grant_permission("sheet", "new-sheet", "bob", granted_by="carol", read=True)
        assert store.get_resource("sheet", "new-sheet").owner_id == "carol"

    def test_grant_is_audited(self, engine, dac, report):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True, reason="review")
        entry = engine.audit.query(log_type=LogType.PERMISSION_GRANT)[0]

        assert entry.action == "dac.permission_granted"
        assert entry.before_state is None
        assert entry.after_state["read"] is True
        assert entry.details["target_subject_id"] == "bob"

    def test_revoke(self, engine, dac, report):
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True)

        assert dac.revoke_permission("document", "q3-report", "bob", revoked_by="alice") is True
        assert not dac.has_permission("bob", "document", "q3-report", "read").allowed
        assert engine.audit.query(log_type=LogType.PERMISSION_REVOKE)[0].action == "dac.permission_revoked"

    def test_revoke_requires_share(self, dac, report):
        with pytest.raises(Unauthorized):
            dac.revoke_permission("document", "q3-report", "alice", revoked_by="bob")

    def test_duplicate_registration(self, dac, report):
        with pytest.raises(IntegrityFailure):
            dac.register_resource("document", "q3-report", owner_id="bob")

    def test_inherit_permissions(self, dac, report):
        folder = dac.register_resource("folder", "finance", owner_id="alice")
        dac.grant_permission("folder", "finance", "bob", granted_by="alice", read=True, write=True)

        copied = dac.inherit_permissions(report, folder)

        assert len(copied) == 1
        assert copied[0].inherited and copied[0].inherited_from == folder.id
        assert dac.has_permission("bob", "document", "q3-report", "write").allowed


class TestOwnershipTransfer:
    def test_request_and_approve(self, engine, dac, report, notifier):
        transfer = dac.request_ownership_transfer("document", "q3-report", "bob", requested_by="alice")

        alerts = notifier.by_event(NotificationEvent.TRANSFER_REQUESTED)
        assert alerts[0].recipient == "alice@example.com"

        approved = dac.approve_ownership_transfer(transfer.id, approved_by="alice")
        assert approved.status == TransferStatus.APPROVED
        assert engine.store.get_resource("document", "q3-report").owner_id == "bob"

        actions = [e.action for e in engine.audit.query(log_type=LogType.OWNERSHIP_TRANSFER)]
        assert actions == ["dac.ownership_transferred", "dac.ownership_transfer_requested"]

    def test_one_pending_per_resource(self, dac, report):
        dac.request_ownership_transfer("document", "q3-report", "bob", requested_by="alice")
        with pytest.raises(AccessControlError, match="A pending ownership transfer already exists"):
            dac.request_ownership_transfer("document", "q3-report", "carol", requested_by="alice")

    def test_only_owner_approves(self, dac, report):
        transfer = dac.request_ownership_transfer("document", "q3-report", "bob", requested_by="alice")
        with pytest.raises(Unauthorized, match="Only the current owner can approve"):
            dac.approve_ownership_transfer(transfer.id, approved_by="bob")

    def test_reject(self, engine, dac, report):
        transfer = dac.request_ownership_transfer("document", "q3-report", "bob", requested_by="alice")
        rejected = dac.reject_ownership_transfer(transfer.id, rejected_by="alice", reason="not now")

        assert rejected.status == TransferStatus.REJECTED
        assert rejected.rejection_reason == "not now"
        assert engine.store.get_resource("document", "q3-report").owner_id == "alice"

        with pytest.raises(AccessControlError):
            dac.approve_ownership_transfer(transfer.id, approved_by="alice")

    def test_unknown_transfer(self, dac):
        with pytest.raises(NotFound):
            dac.approve_ownership_transfer("missing", approved_by="alice")

    def test_requester_needs_share(self, dac, report):
        with pytest.raises(Unauthorized):
            dac.request_ownership_transfer("document", "q3-report", "bob", requested_by="bob")
