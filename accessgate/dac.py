"""
DAC Permission Resolver.

Discretionary access in evaluation order:
1. Privileged-role bypass
2. Ownership
3. Direct, non-expired grant on the resource
4. Grant on the immediate parent resource (one level only)

Administrative operations (grant, revoke, ownership transfer) enforce
their own preconditions, raise Unauthorized when the actor lacks them,
and write an audit entry.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from accessgate.config import EngineConfig
from accessgate.errors import AccessControlError, NotFound, Unauthorized
from accessgate.labels import SecurityLabel
from accessgate.models import (
    CheckResult,
    OwnershipTransfer,
    Permission,
    Resource,
    ResourcePermission,
    TransferStatus,
    utcnow,
)
from accessgate.notifications import Notification, NotificationEvent, Notifier, dispatch
from accessgate.store import Store


logger = logging.getLogger(__name__)

_BITS = ("read", "write", "execute", "delete", "share")


def _permission_state(permission: Optional[ResourcePermission]) -> Optional[dict]:
    if permission is None:
        return None
    state = {bit: getattr(permission, f"can_{bit}") for bit in _BITS}
    state["expires_at"] = permission.expires_at
    return state


class PermissionResolver:
    """
    Ownership and grant based access decisions.

    Example:
        dac = PermissionResolver(store)
        dac.register_resource("document", "q3-report", owner_id="alice")
        dac.grant_permission("document", "q3-report", "bob", granted_by="alice", read=True)

        dac.has_permission("bob", "document", "q3-report", "read").allowed  # True
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

    def _resource(self, resource_type: str, resource_id: str) -> Resource:
        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            raise NotFound(f"Resource not found: {resource_type}:{resource_id}")
        return resource

    def register_resource(
        self,
        resource_type: str,
        resource_id: str,
        owner_id: str,
        security_label: Optional[SecurityLabel] = None,
        parent: Optional[Resource] = None,
    ) -> Resource:
        """
        Create a resource owned by `owner_id`.

        Raises:
            IntegrityFailure: The (type, resource_id) pair already exists
        """
        resource = Resource(
            type=resource_type,
            resource_id=resource_id,
            owner_id=owner_id,
            security_label=security_label or SecurityLabel(),
            parent_resource_id=parent.id if parent else None,
        )
        self.store.save_resource(resource)
        logger.info(f"Registered resource {resource_type}:{resource_id} owned by {owner_id}")
        return resource

    def is_owner(self, subject_id: str, resource_type: str, resource_id: str) -> bool:
        resource = self.store.get_resource(resource_type, resource_id)
        return resource is not None and resource.owner_id == subject_id

    def _grant_allows(
        self,
        resource_pk: str,
        subject_id: str,
        permission: Permission,
        now: datetime,
    ) -> Optional[ResourcePermission]:
        grant = self.store.get_permission(resource_pk, subject_id)
        if grant is None or grant.is_expired(now) or not grant.allows(permission):
            return None
        return grant

    def has_permission(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        action: Permission | str,
    ) -> CheckResult:
        """
        Resolve a discretionary permission.

        Raises:
            PolicyMisconfiguration: `action` is not a known permission
        """
        permission = Permission.from_action(action)

        subject = self.store.get_subject(subject_id)
        if subject is not None and self.config.is_privileged(subject.role):
            return CheckResult.allow(f"{subject.role} bypass", bypass=True)

        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            return CheckResult.deny("Resource not found", violation="NOT_FOUND")

        if resource.owner_id == subject_id:
            return CheckResult.allow("Owner", owner=True)

        now = self.clock()
        direct = self._grant_allows(resource.id, subject_id, permission, now)
        if direct is not None:
            result = CheckResult.allow("Direct grant")
            result.inherited = direct.inherited
            return result

        if resource.parent_resource_id:
            parent_grant = self._grant_allows(resource.parent_resource_id, subject_id, permission, now)
            if parent_grant is not None:
                result = CheckResult.allow("Inherited from parent resource")
                result.inherited = True
                return result

        return CheckResult.deny("No permission granted", violation="NO_PERMISSION")

    def can_share(self, subject_id: str, resource_type: str, resource_id: str) -> bool:
        if self.is_owner(subject_id, resource_type, resource_id):
            return True
        return self.has_permission(subject_id, resource_type, resource_id, Permission.SHARE).allowed

    def grant_permission(
        self,
        resource_type: str,
        resource_id: str,
        subject_id: str,
        granted_by: str,
        read: Optional[bool] = None,
        write: Optional[bool] = None,
        execute: Optional[bool] = None,
        delete: Optional[bool] = None,
        share: Optional[bool] = None,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> ResourcePermission:
        """
        Upsert a grant. Bits left as None keep their current value.

        The resource is created, owned by the granter, if it does not exist.

        Raises:
            Unauthorized: Granter is neither owner nor holder of share permission
        """
        if not self.can_share(granted_by, resource_type, resource_id):
            logger.warning(f"{granted_by} denied granting on {resource_type}:{resource_id}")
            raise Unauthorized("You do not have permission to share this resource")

        bits = {"read": read, "write": write, "execute": execute, "delete": delete, "share": share}

        with self.store.transaction():
            resource = self.store.get_resource(resource_type, resource_id)
            if resource is None:
                resource = self.register_resource(resource_type, resource_id, owner_id=granted_by)

            existing = self.store.get_permission(resource.id, subject_id)
            if existing is not None:
                grant = replace(
                    existing,
                    expires_at=expires_at,
                    reason=reason,
                    granted_by=granted_by,
                    granted_at=self.clock(),
                    **{f"can_{bit}": value for bit, value in bits.items() if value is not None},
                )
            else:
                grant = ResourcePermission(
                    resource_pk=resource.id,
                    subject_id=subject_id,
                    granted_by=granted_by,
                    expires_at=expires_at,
                    reason=reason,
                    granted_at=self.clock(),
                    **{f"can_{bit}": bool(value) for bit, value in bits.items()},
                )
            self.store.save_permission(grant)

            if self.audit is not None:
                self.audit.log_permission_change(
                    actor_id=granted_by,
                    resource=resource,
                    action="dac.permission_granted",
                    granted=True,
                    before=_permission_state(existing),
                    after=_permission_state(grant),
                    details={"target_subject_id": subject_id, "reason": reason},
                )

        logger.info(f"{granted_by} granted {subject_id} on {resource_type}:{resource_id}")
        return grant

    def revoke_permission(
        self,
        resource_type: str,
        resource_id: str,
        subject_id: str,
        revoked_by: str,
    ) -> bool:
        """
        Delete a subject's grant.

        Raises:
            Unauthorized: Revoker is neither owner nor holder of share permission
            NotFound: Resource does not exist
        """
        if not self.can_share(revoked_by, resource_type, resource_id):
            logger.warning(f"{revoked_by} denied revoking on {resource_type}:{resource_id}")
            raise Unauthorized("You do not have permission to revoke access")

        with self.store.transaction():
            resource = self._resource(resource_type, resource_id)
            existing = self.store.get_permission(resource.id, subject_id)
            removed = self.store.delete_permission(resource.id, subject_id)

            if self.audit is not None:
                self.audit.log_permission_change(
                    actor_id=revoked_by,
                    resource=resource,
                    action="dac.permission_revoked",
                    granted=False,
                    before=_permission_state(existing),
                    details={"target_subject_id": subject_id},
                )

        return removed

    def get_resource_permissions(self, resource_type: str, resource_id: str) -> list[ResourcePermission]:
        """Grants on a resource, newest first."""
        resource = self._resource(resource_type, resource_id)
        grants = self.store.list_permissions(resource.id)
        grants.sort(key=lambda g: g.granted_at, reverse=True)
        return grants

    def inherit_permissions(self, resource: Resource, parent: Resource) -> list[ResourcePermission]:
        """Copy the parent's own (non-inherited) grants onto `resource` as inherited grants."""
        copied = []
        with self.store.transaction():
            for grant in self.store.list_permissions(parent.id):
                if grant.inherited:
                    continue
                inherited = ResourcePermission(
                    resource_pk=resource.id,
                    subject_id=grant.subject_id,
                    granted_by=grant.granted_by,
                    can_read=grant.can_read,
                    can_write=grant.can_write,
                    can_execute=grant.can_execute,
                    can_delete=grant.can_delete,
                    can_share=grant.can_share,
                    expires_at=grant.expires_at,
                    inherited=True,
                    inherited_from=parent.id,
                    granted_at=self.clock(),
                )
                self.store.save_permission(inherited)
                copied.append(inherited)
        return copied

    # Ownership transfer

    def request_ownership_transfer(
        self,
        resource_type: str,
        resource_id: str,
        to_user_id: str,
        requested_by: str,
        reason: Optional[str] = None,
    ) -> OwnershipTransfer:
        """
        Open a transfer request. At most one may be pending per resource.

        Raises:
            NotFound: Resource does not exist
            Unauthorized: Requester is neither owner nor holder of share permission
            AccessControlError: A pending transfer already exists
        """
        with self.store.transaction():
            resource = self._resource(resource_type, resource_id)

            if not self.can_share(requested_by, resource_type, resource_id):
                raise Unauthorized("You do not have permission to transfer ownership")

            if self.store.list_transfers(resource.id, TransferStatus.PENDING):
                raise AccessControlError("A pending ownership transfer already exists")

            transfer = OwnershipTransfer(
                resource_pk=resource.id,
                from_user_id=resource.owner_id,
                to_user_id=to_user_id,
                requested_by=requested_by,
                reason=reason,
                created_at=self.clock(),
            )
            self.store.save_transfer(transfer)

            if self.audit is not None:
                self.audit.log_ownership_transfer(
                    actor_id=requested_by,
                    resource=resource,
                    action="dac.ownership_transfer_requested",
                    transfer=transfer,
                )

        owner = self.store.get_subject(resource.owner_id)
        dispatch(self.notifier, Notification(
            event=NotificationEvent.TRANSFER_REQUESTED,
            title=f"Ownership transfer requested for {resource_type}:{resource_id}",
            message=f"{requested_by} requested transfer of ownership to {to_user_id}.",
            recipient=owner.email if owner else None,
            data={"transfer_id": transfer.id, "to_user_id": to_user_id, "reason": reason},
        ))
        return transfer

    def _pending_transfer_for_owner(self, transfer_id: str, actor_id: str, verb: str) -> tuple[OwnershipTransfer, Resource]:
        transfer = self.store.get_transfer(transfer_id)
        if transfer is None:
            raise NotFound(f"Transfer request not found: {transfer_id}")

        resource = self.store.get_resource_by_pk(transfer.resource_pk)
        if resource is None or resource.owner_id != actor_id:
            raise Unauthorized(f"Only the current owner can {verb} the transfer")

        if transfer.status != TransferStatus.PENDING:
            raise AccessControlError("Transfer is not pending")

        return transfer, resource

    def approve_ownership_transfer(self, transfer_id: str, approved_by: str) -> OwnershipTransfer:
        """
        Complete a pending transfer. Only the current owner may approve.

        Raises:
            NotFound: Unknown transfer
            Unauthorized: Approver is not the current owner
        """
        with self.store.transaction():
            transfer, resource = self._pending_transfer_for_owner(transfer_id, approved_by, "approve")

            resource.owner_id = transfer.to_user_id
            self.store.save_resource(resource)

            transfer.status = TransferStatus.APPROVED
            transfer.approved_by = approved_by
            transfer.completed_at = self.clock()
            self.store.save_transfer(transfer)

            if self.audit is not None:
                self.audit.log_ownership_transfer(
                    actor_id=approved_by,
                    resource=resource,
                    action="dac.ownership_transferred",
                    transfer=transfer,
                    details={"from_user_id": transfer.from_user_id, "to_user_id": transfer.to_user_id},
                )

        logger.info(
            f"Ownership of {resource.type}:{resource.resource_id} transferred "
            f"{transfer.from_user_id} -> {transfer.to_user_id}"
        )
        return transfer

    def reject_ownership_transfer(
        self,
        transfer_id: str,
        rejected_by: str,
        reason: Optional[str] = None,
    ) -> OwnershipTransfer:
        with self.store.transaction():
            transfer, resource = self._pending_transfer_for_owner(transfer_id, rejected_by, "reject")

            transfer.status = TransferStatus.REJECTED
            transfer.rejection_reason = reason
            transfer.completed_at = self.clock()
            self.store.save_transfer(transfer)

            if self.audit is not None:
                self.audit.log_ownership_transfer(
                    actor_id=rejected_by,
                    resource=resource,
                    action="dac.ownership_transfer_rejected",
                    transfer=transfer,
                    details={"reason": reason},
                )

        return transfer
