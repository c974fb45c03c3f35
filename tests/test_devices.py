"""Tests for accessgate.devices"""

from datetime import timedelta

import pytest

from accessgate.devices import DeviceRegistry
from accessgate.errors import NotFound, ValidationError
from accessgate.models import DeviceType, LogType, TrustLevel


@pytest.fixture
def devices(engine):
    return engine.devices


class TestDeviceRegistry:
    def test_new_device_is_unknown_trust(self, devices):
        device = devices.register_device("alice", "laptop-1", DeviceType.LAPTOP, os="Windows", os_version="11")
        assert device.trust_level == TrustLevel.UNKNOWN
        assert devices.get_device("laptop-1").os == "Windows"

    def test_refresh_keeps_trust_and_owner(self, devices):
        devices.register_device("alice", "laptop-1", has_anti_malware=True)
        devices.update_trust_level("laptop-1", "verified", updated_by="admin")

        refreshed = devices.register_device("mallory", "laptop-1", os="Linux")

        assert refreshed.subject_id == "alice"
        assert refreshed.trust_level == TrustLevel.VERIFIED
        assert refreshed.has_anti_malware is True

    def test_subject_devices_most_recent_first(self, store, now):
        times = iter([now, now + timedelta(hours=1)])
        devices = DeviceRegistry(store, clock=lambda: next(times))
        devices.register_device("bob", "old-phone", DeviceType.MOBILE)
        devices.register_device("bob", "new-phone", DeviceType.MOBILE)

        assert [d.device_id for d in devices.get_subject_devices("bob")] == ["new-phone", "old-phone"]

    def test_trust_change_is_audited(self, engine, devices):
        devices.register_device("alice", "laptop-1")
        devices.block_device("laptop-1", blocked_by="admin", reason="reported stolen")

        assert devices.get_device("laptop-1").trust_level == TrustLevel.BLOCKED
        entry = engine.audit.query(log_type=LogType.SECURITY_CONFIG_CHANGE)[0]
        assert entry.action == "device.blocked"
        assert entry.before_state == {"trust_level": "UNKNOWN"}
        assert entry.details["reason"] == "reported stolen"

    def test_unknown_device(self, devices):
        with pytest.raises(NotFound):
            devices.update_trust_level("ghost", TrustLevel.TRUSTED, updated_by="admin")

    def test_unknown_trust_level(self, devices):
        devices.register_device("alice", "laptop-1")
        with pytest.raises(ValidationError, match="Unknown trust level: sorta"):
            devices.update_trust_level("laptop-1", "sorta", updated_by="admin")

        assert devices.get_device("laptop-1").trust_level == TrustLevel.UNKNOWN
