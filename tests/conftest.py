"""
Shared fixtures.

Tests run against the in-memory driver: a real implementation of the
storage port with per-account visibility, so ownership and sharing
behave as they do on Drive. No real API calls are made.
"""

import pytest

from splitledger.groups import GroupRepository
from splitledger.models.group import User
from splitledger.services.storage import InMemoryDrive


@pytest.fixture
def drive():
    return InMemoryDrive()


@pytest.fixture
def alice():
    return User(id="u-alice", email="alice@example.com", name="Alice")


@pytest.fixture
def bob():
    return User(id="u-bob", email="bob@example.com", name="Bob")


@pytest.fixture
def alice_storage(drive, alice):
    return drive.storage_for(alice.email)


@pytest.fixture
def bob_storage(drive, bob):
    return drive.storage_for(bob.email)


@pytest.fixture
def alice_groups(alice_storage, alice):
    return GroupRepository(alice_storage, alice)


@pytest.fixture
def bob_groups(bob_storage, bob):
    return GroupRepository(bob_storage, bob)
