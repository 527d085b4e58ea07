"""Shared fixtures: an in-memory store seeded with the demo classroom."""

import pytest

from classroom_tutor.demo import seed_demo
from classroom_tutor.realtime import InMemoryFeed
from classroom_tutor.store import InMemoryStore


@pytest.fixture
def feed():
    return InMemoryFeed()


@pytest.fixture
def store(feed):
    return InMemoryStore(feed)


@pytest.fixture
def classroom(store):
    """Demo room with a minor student, a teacher, a learning and an assessment tutor."""
    return seed_demo(store)
