"""Test fixtures and configuration."""

import random
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from fakes import EventRecorder, FakeTimers, FakeVeoClient

from veo_queue.core.config import Settings
from veo_queue.services.events import EventBus
from veo_queue.services.queue import VideoQueue, default_queue_settings
from veo_queue.services.state import QueueState
from veo_queue.services.store import JsonStore


@pytest.fixture
def config(tmp_path: Path) -> Settings:
    """Settings pointing at temporary directories with a zero poll interval."""
    base = Settings(
        data_dir=tmp_path / "data",
        default_output_dir=tmp_path / "videos",
        poll_interval_seconds=0,
        initial_backoff_seconds=300,
        max_backoff_seconds=3600,
    )
    return base.model_copy(update={"gemini_api_key": None})


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def fake_client() -> FakeVeoClient:
    return FakeVeoClient()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    rec = EventRecorder()
    events.subscribe(rec)
    return rec


@pytest.fixture
def store(config: Settings) -> JsonStore:
    return JsonStore(config.data_dir)


@pytest.fixture
def state(store: JsonStore, events: EventBus, config: Settings) -> QueueState:
    """Loaded queue state with an API key configured."""
    queue_state = QueueState(store, events, default_queue_settings(config))
    queue_state.load()
    queue_state.settings.api_key = "test-key"
    return queue_state


def build_queue(
    config: Settings,
    store: JsonStore,
    events: EventBus,
    timers: FakeTimers,
    client: FakeVeoClient,
) -> VideoQueue:
    return VideoQueue(
        config,
        store=store,
        events=events,
        timers=timers,
        client_factory=lambda api_key: client,
        rng=random.Random(0),
    )


@pytest.fixture
async def video_queue(
    config: Settings,
    store: JsonStore,
    events: EventBus,
    timers: FakeTimers,
    fake_client: FakeVeoClient,
) -> AsyncIterator[VideoQueue]:
    """An opened queue wired to fakes, with an API key configured."""
    queue = build_queue(config, store, events, timers, fake_client)
    await queue.open()
    queue.state.settings.api_key = "test-key"
    yield queue
    await queue.close()
