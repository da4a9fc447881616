from __future__ import annotations

import threading

import pytest
import structlog

from http_to_nsq.metrics import RequestMetrics
from http_to_nsq.publisher import PublishError


class FakePublisher:
    """Records publishes; fails any topic listed in ``fail_topics``."""

    def __init__(self, fail_topics: dict[str, str] | None = None) -> None:
        self.fail_topics = fail_topics or {}
        self.published: list[tuple[str, bytes]] = []
        self.stopped = False
        self._lock = threading.Lock()

    def publish(self, topic: str, payload: bytes) -> None:
        if topic in self.fail_topics:
            raise PublishError(self.fail_topics[topic])
        with self._lock:
            self.published.append((topic, payload))

    def stop(self) -> None:
        self.stopped = True


@pytest.fixture(autouse=True)
def _reset_structlog():
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture()
def metrics() -> RequestMetrics:
    return RequestMetrics(host="localhost")


@pytest.fixture()
def fake_publisher() -> FakePublisher:
    return FakePublisher()
