"""Shared fixtures for the accessgate test suite."""

from datetime import datetime, timezone

import pytest

from accessgate.config import EngineConfig
from accessgate.engine import AccessEngine
from accessgate.labels import SecurityLabel, SecurityLevel
from accessgate.models import Subject
from accessgate.notifications import RecordingNotifier
from accessgate.signing import SigningKeyProvider
from accessgate.store import InMemoryStore


# Wednesday, mid-morning UTC
NOW = datetime(2025, 6, 11, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture(scope="session")
def signer():
    """One RSA key pair for the whole run; generation is slow."""
    return SigningKeyProvider.generate()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def subjects(store):
    """Subjects at different roles and clearance levels."""
    people = {
        "admin": Subject("admin", "Root Admin", "admin@example.com", role="SUPER_ADMIN"),
        "alice": Subject("alice", "Alice Kim", "alice@example.com"),
        "bob": Subject("bob", "Bob Lee", "bob@example.com"),
        "carol": Subject("carol", "Carol Park", "carol@example.com"),
        "officer": Subject(
            "officer", "Security Officer", "officer@example.com",
            security_clearance=SecurityLevel.TOP_SECRET, trusted_subject=True,
        ),
    }
    for subject in people.values():
        store.save_subject(subject)
    return people


@pytest.fixture
def engine(store, config, notifier, signer, clock, subjects):
    engine = AccessEngine(store, config, notifier=notifier, signer=signer, clock=clock)
    engine.attributes.initialize_default_attributes()
    return engine


@pytest.fixture
def report(engine):
    """A CONFIDENTIAL/FINANCIAL document owned by alice."""
    return engine.permissions.register_resource(
        "document", "q3-report", owner_id="alice",
        security_label=SecurityLabel(SecurityLevel.CONFIDENTIAL, {"FINANCIAL"}),
    )
