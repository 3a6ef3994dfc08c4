"""Fixtures for helm-proxy tests."""

import pytest

from helm_proxy.store import InMemoryStore

from . import FakeCredentialProvider, FakeReleaseExecutor


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Fixture for an empty store."""
    return InMemoryStore()


@pytest.fixture(name="executor")
def executor_fixture() -> FakeReleaseExecutor:
    """Fixture for the fake release executor."""
    return FakeReleaseExecutor()


@pytest.fixture(name="credentials")
def credentials_fixture() -> FakeCredentialProvider:
    """Fixture for the fake credential provider."""
    return FakeCredentialProvider()
