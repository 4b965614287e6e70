import typing as t
from pathlib import Path

import pytest

from llmrelay import client as client_module
from llmrelay.config import RelaySettings
from llmrelay.events import ALL_EVENTS, EventBus
from llmrelay.models import RequestOptions


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.setenv("TEST_API_KEY", "test-key")
    for name in (
        "LLMRELAY_LOG_LEVEL",
        "LLMRELAY_ALLOW_INSECURE",
        "LLMRELAY_PROXY",
        "LLMRELAY_ARTIFACT_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """
    Keep the client's retry policy but drop the delay between attempts.
    """
    monkeypatch.setattr(client_module, "RETRY_DELAY_SECONDS", 0)


class EventRecorder:
    """Record every event fired on a bus, with a snapshot of its options."""

    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, t.Any]]] = []

    def __call__(self, event: str, data: t.Any) -> None:
        snapshot = data.model_dump() if isinstance(data, RequestOptions) else {"data": data}
        self.records.append((event, snapshot))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.records]

    def last(self, name: str) -> dict[str, t.Any]:
        return [snapshot for event, snapshot in self.records if event == name][-1]


@pytest.fixture
def event_bus() -> EventBus:
    """
    Create an isolated event bus.

    Returns
    -------
    EventBus
        Bus with no subscribers.
    """
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    """
    Subscribe an event recorder to every event of the test bus.

    Returns
    -------
    EventRecorder
        Recorder filled as events are fired.
    """
    recorder = EventRecorder()
    event_bus.subscribe(ALL_EVENTS, recorder)
    return recorder


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    return tmp_path / "artifacts"


@pytest.fixture
def settings(artifact_dir: Path) -> RelaySettings:
    """
    Create settings writing request bodies into the test directory.

    Returns
    -------
    RelaySettings
        Settings with the default ERROR log level.
    """
    return RelaySettings(artifact_dir=artifact_dir)
