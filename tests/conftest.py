"""Shared fixtures: a relay hub wired to in-memory fakes."""

import pytest

from relay.realtime.hub import RelayHub
from tests.helpers import FakeEventStore, FakeWhitelistStore, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def whitelist():
    store = FakeWhitelistStore()
    store.allow("alice")
    store.allow("bob")
    store.allow("carol", broadcaster=True)
    store.allow("root", broadcaster=True, admin=True)
    return store


@pytest.fixture
def events():
    return FakeEventStore()


@pytest.fixture
def hub(settings, whitelist, events):
    return RelayHub(settings, whitelist, events)
