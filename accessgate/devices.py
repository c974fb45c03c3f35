"""
Device registry.

Tracks device posture (management, OS, browser, protection) and the
trust level assigned by administrators. Newly registered devices start at
UNKNOWN trust; re-registration refreshes posture but never trust.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from accessgate.errors import NotFound, ValidationError
from accessgate.models import DeviceProfile, DeviceType, TrustLevel, utcnow
from accessgate.store import Store


logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Registers devices and manages their trust level."""

    def __init__(
        self,
        store: Store,
        audit=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.audit = audit
        self.clock = clock

    def register_device(
        self,
        subject_id: str,
        device_id: str,
        device_type: DeviceType = DeviceType.UNKNOWN,
        device_name: Optional[str] = None,
        os: Optional[str] = None,
        os_version: Optional[str] = None,
        browser: Optional[str] = None,
        browser_version: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        is_company_managed: Optional[bool] = None,
        has_anti_malware: Optional[bool] = None,
        has_encrypted_storage: Optional[bool] = None,
    ) -> DeviceProfile:
        """
        Register or refresh a device profile.

        Posture flags left as None keep their previous value on refresh.
        """
        with self.store.transaction():
            existing = self.store.get_device(device_id)

            def keep(value: Optional[bool], attr: str) -> bool:
                if value is not None:
                    return value
                return getattr(existing, attr) if existing else False

            device = DeviceProfile(
                device_id=device_id,
                subject_id=existing.subject_id if existing else subject_id,
                device_type=device_type if existing is None else existing.device_type,
                device_name=device_name,
                os=os,
                os_version=os_version,
                browser=browser,
                browser_version=browser_version,
                is_company_managed=keep(is_company_managed, "is_company_managed"),
                has_anti_malware=keep(has_anti_malware, "has_anti_malware"),
                has_encrypted_storage=keep(has_encrypted_storage, "has_encrypted_storage"),
                trust_level=existing.trust_level if existing else TrustLevel.UNKNOWN,
                ip_address=ip_address,
                user_agent=user_agent,
                last_seen=self.clock(),
            )
            self.store.save_device(device)

        logger.info(f"Device {device_id} registered for {device.subject_id}")
        return device

    def get_device(self, device_id: str) -> Optional[DeviceProfile]:
        return self.store.get_device(device_id)

    def get_subject_devices(self, subject_id: str) -> list[DeviceProfile]:
        """Devices of a subject, most recently seen first."""
        devices = self.store.list_devices(subject_id)
        devices.sort(key=lambda d: d.last_seen, reverse=True)
        return devices

    def update_trust_level(
        self,
        device_id: str,
        trust_level: TrustLevel | str,
        updated_by: str,
        reason: Optional[str] = None,
        action: str = "device.trust_level_updated",
    ) -> DeviceProfile:
        """
        Set a device's trust level.

        Raises:
            NotFound: Unknown device
            ValidationError: Unknown trust level name
        """
        if isinstance(trust_level, str):
            try:
                trust_level = TrustLevel[trust_level.strip().upper()]
            except KeyError:
                raise ValidationError(f"Unknown trust level: {trust_level}") from None

        with self.store.transaction():
            device = self.store.get_device(device_id)
            if device is None:
                raise NotFound(f"Device not found: {device_id}")

            previous = device.trust_level
            device.trust_level = trust_level
            self.store.save_device(device)

            if self.audit is not None:
                details = {"trust_level": trust_level.name}
                if reason:
                    details["reason"] = reason
                self.audit.log_security_config_change(
                    actor_id=updated_by,
                    resource="device",
                    resource_id=device_id,
                    action=action,
                    before={"trust_level": previous.name},
                    after={"trust_level": trust_level.name},
                    details=details,
                )

        logger.info(f"Device {device_id} trust level {previous} -> {trust_level} by {updated_by}")
        return device

    def block_device(self, device_id: str, blocked_by: str, reason: Optional[str] = None) -> DeviceProfile:
        return self.update_trust_level(
            device_id,
            TrustLevel.BLOCKED,
            blocked_by,
            reason=reason,
            action="device.blocked",
        )
