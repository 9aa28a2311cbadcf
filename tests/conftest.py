"""
Shared fixtures for the apidesk test suite
"""

import pytest
from typing import Any, List, Tuple

from apidesk.core import EventBus, MemoryStorage
from apidesk.services.logging_service import ConsoleLoggingService, LogLevel


class EventRecorder:
    """Collects (topic, payload) pairs published on a bus"""

    def __init__(self, bus: EventBus, *topics: str):
        self.events: List[Tuple[str, Any]] = []
        for topic in topics:
            bus.subscribe(topic, self._recorder_for(topic))

    def _recorder_for(self, topic: str):
        def record(payload):
            self.events.append((topic, payload))
        return record

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.events]

    def payloads(self, topic: str) -> List[Any]:
        return [payload for recorded, payload in self.events if recorded == topic]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def app_logger():
    return ConsoleLoggingService('test', LogLevel.TRACE)


@pytest.fixture
def record_events(event_bus):
    """Factory: record_events('topic:a', 'topic:b') -> EventRecorder"""
    def factory(*topics: str) -> EventRecorder:
        return EventRecorder(event_bus, *topics)
    return factory
