"""Shared pytest fixtures for the Orchestration Hub tests."""

from typing import List

import pytest

from orchestration_hub.core.event_bus import EventBus
from orchestration_hub.core.models import Target
from orchestration_hub.core.storage import InMemoryStatusStore

from .fakes import EventRecorder


@pytest.fixture
def store() -> InMemoryStatusStore:
    return InMemoryStatusStore()


@pytest.fixture
def bus(store) -> EventBus:
    return EventBus(store=store)


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def target() -> Target:
    return Target(name="svc-a", url="http://svc-a", health_check_interval=10,
                  metrics_check_interval=30)


@pytest.fixture
def targets(target) -> List[Target]:
    return [target, Target(name="svc-b", url="http://svc-b")]
