"""
Sharing links.

A sharing link grants permission bits on a resource to whoever holds its
token. Tokens carry 256 bits of entropy; optional passwords are stored as
Argon2 hashes. Verification checks, in order: existence, expiry, use
ceiling, password, allowed emails, allowed domains, authentication.
"""

import logging
import secrets
from datetime import datetime
from typing import Callable, Iterable, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from accessgate.errors import Expired, NotFound, Unauthorized
from accessgate.models import CheckResult, Resource, SharingLink, utcnow
from accessgate.dac import PermissionResolver
from accessgate.store import Store


logger = logging.getLogger(__name__)


def generate_sharing_token() -> str:
    return secrets.token_urlsafe(32)


def _mask(token: str) -> str:
    return token[:8] + "..."


class SharingLinkManager:
    """
    Creates, verifies, consumes and revokes sharing links.

    Example:
        links = SharingLinkManager(store, dac)
        link = links.create_sharing_link("document", "q3-report", "alice", max_uses=1)

        links.verify_sharing_link(link.token).allowed  # True
        links.use_sharing_link(link.token)
        links.verify_sharing_link(link.token).reason   # "Sharing link has reached maximum uses"
    """

    def __init__(
        self,
        store: Store,
        permissions: PermissionResolver,
        audit=None,
        hasher: Optional[PasswordHasher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.permissions = permissions
        self.audit = audit
        self.hasher = hasher or PasswordHasher()
        self.clock = clock

    def _require_share(self, actor_id: str, resource_type: str, resource_id: str, message: str) -> None:
        if not self.permissions.can_share(actor_id, resource_type, resource_id):
            logger.warning(f"{actor_id} denied sharing-link access on {resource_type}:{resource_id}")
            raise Unauthorized(message)

    def _log(self, actor_id: str, resource: Resource, action: str, details: dict) -> None:
        if self.audit is not None:
            self.audit.log_permission_change(
                actor_id=actor_id,
                resource=resource,
                action=action,
                granted=action == "dac.sharing_link_created",
                details=details,
            )

    def create_sharing_link(
        self,
        resource_type: str,
        resource_id: str,
        created_by: str,
        can_read: bool = True,
        can_write: bool = False,
        can_execute: bool = False,
        can_delete: bool = False,
        can_share: bool = False,
        expires_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        password: Optional[str] = None,
        require_auth: bool = False,
        allowed_emails: Iterable[str] = (),
        allowed_domains: Iterable[str] = (),
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SharingLink:
        """
        Create a link. The returned record is the only place the full token appears.

        Raises:
            Unauthorized: Creator is neither owner nor holder of share permission
            NotFound: Resource does not exist
        """
        self._require_share(created_by, resource_type, resource_id,
                            "You do not have permission to share this resource")

        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            raise NotFound(f"Resource not found: {resource_type}:{resource_id}")

        link = SharingLink(
            token=generate_sharing_token(),
            resource_pk=resource.id,
            created_by=created_by,
            can_read=can_read,
            can_write=can_write,
            can_execute=can_execute,
            can_delete=can_delete,
            can_share=can_share,
            expires_at=expires_at,
            max_uses=max_uses,
            password_hash=self.hasher.hash(password) if password else None,
            require_auth=require_auth,
            allowed_emails=frozenset(allowed_emails),
            allowed_domains=frozenset(allowed_domains),
            name=name,
            description=description,
            created_at=self.clock(),
        )

        with self.store.transaction():
            self.store.save_sharing_link(link)
            self._log(created_by, resource, "dac.sharing_link_created",
                      {"link_id": link.id, "token": _mask(link.token)})

        logger.info(f"Sharing link {link.id} created on {resource_type}:{resource_id} by {created_by}")
        return link

    def _password_matches(self, password_hash: str, password: str) -> bool:
        try:
            return self.hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError) as e:
            logger.error(f"Stored sharing-link password hash is unusable: {e}")
            return False

    def verify_sharing_link(
        self,
        token: str,
        password: Optional[str] = None,
        email: Optional[str] = None,
    ) -> CheckResult:
        """Check a presented token; the first failing condition is reported."""
        link = self.store.get_sharing_link(token)
        if link is None:
            return CheckResult.deny("Invalid sharing link", violation="INVALID_LINK")

        if link.is_expired(self.clock()):
            return CheckResult.deny("Sharing link has expired", violation="LINK_EXPIRED")

        if link.is_exhausted():
            return CheckResult.deny("Sharing link has reached maximum uses", violation="LINK_EXHAUSTED")

        if link.password_hash:
            if not password:
                return CheckResult.deny("Password required", violation="LINK_PASSWORD")
            if not self._password_matches(link.password_hash, password):
                return CheckResult.deny("Invalid password", violation="LINK_PASSWORD")

        normalized = email.strip().lower() if email else None

        if link.allowed_emails:
            if not normalized or normalized not in link.allowed_emails:
                return CheckResult.deny("Email not allowed", violation="LINK_RECIPIENT")

        if link.allowed_domains and normalized:
            _, _, domain = normalized.partition("@")
            if not domain or domain not in link.allowed_domains:
                return CheckResult.deny("Domain not allowed", violation="LINK_RECIPIENT")

        if link.require_auth and not normalized:
            return CheckResult.deny("Authentication required", violation="LINK_AUTH")

        return CheckResult.allow(link_id=link.id, resource_pk=link.resource_pk)

    def use_sharing_link(self, token: str) -> SharingLink:
        """
        Consume one use of a link atomically.

        Raises:
            NotFound: Unknown token
            Expired: Link expired or exhausted since verification
        """
        with self.store.transaction():
            link = self.store.get_sharing_link(token)
            if link is None:
                raise NotFound("Sharing link not found")
            if link.is_expired(self.clock()):
                raise Expired("Sharing link has expired")
            if link.is_exhausted():
                raise Expired("Sharing link has reached maximum uses")

            link.use_count += 1
            link.last_used_at = self.clock()
            self.store.save_sharing_link(link)

        return link

    def revoke_sharing_link(self, link_id: str, revoked_by: str) -> None:
        """
        Delete a link. The creator, the owner and share-holders may revoke.

        Raises:
            NotFound: Unknown link
            Unauthorized: Revoker lacks the right
        """
        with self.store.transaction():
            link = self.store.get_sharing_link_by_id(link_id)
            if link is None:
                raise NotFound(f"Sharing link not found: {link_id}")

            resource = self.store.get_resource_by_pk(link.resource_pk)
            if resource is None:
                raise NotFound(f"Resource for sharing link {link_id} not found")

            if link.created_by != revoked_by:
                self._require_share(revoked_by, resource.type, resource.resource_id,
                                    "You do not have permission to revoke this link")

            self.store.delete_sharing_link(link_id)
            self._log(revoked_by, resource, "dac.sharing_link_revoked", {"link_id": link_id})

        logger.info(f"Sharing link {link_id} revoked by {revoked_by}")

    def list_sharing_links(self, resource_type: str, resource_id: str, actor_id: str) -> list[SharingLink]:
        """Links on a resource, newest first."""
        self._require_share(actor_id, resource_type, resource_id,
                            "You do not have permission to view sharing links")

        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            return []
        links = self.store.list_sharing_links(resource.id)
        links.sort(key=lambda l: l.created_at, reverse=True)
        return links
