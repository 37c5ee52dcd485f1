import pytest

from video_job_orchestrator.services import event_bus as events
from video_job_orchestrator.services.event_bus import EventBus
from video_job_orchestrator.utils.config import OrchestratorConfig

from factories import FakeClock, RecordingSleep


@pytest.fixture
def config():
    return OrchestratorConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """(event_name, payload) pairs published on ``event_bus``, in order."""
    received = []
    for name in sorted(events.EVENT_NAMES):
        event_bus.subscribe(name, lambda payload, name=name: received.append((name, payload)))
    return received
