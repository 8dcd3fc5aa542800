"""Fakes shared by the test suite: a manual clock and a scripted remote client."""

import asyncio
from collections.abc import Callable
from pathlib import Path

from veo_queue.services.events import Event, EventKind
from veo_queue.services.queue import VideoQueue
from veo_queue.services.veo import GenerationConfig, Operation, RemoteOperationError


class FakeHandle:
    """Timer handle driven by FakeTimers."""

    def __init__(self, when: float, callback: Callable[[], None], interval: float | None) -> None:
        self.when = when
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Manual clock: callbacks only fire when the test advances time."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start
        self.handles: list[FakeHandle] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(self.current + delay, callback, None)
        self.handles.append(handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(self.current + interval, callback, interval)
        self.handles.append(handle)
        return handle

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)

    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in time order."""
        target = self.current + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.current = handle.when
            if handle.interval is None:
                handle.cancelled = True
            else:
                handle.when += handle.interval
            handle.callback()
        self.current = target


class FakeVeoClient:
    """Scripted stand-in for the remote generator.

    ``failures`` maps a prompt to ``(phase, message)`` where phase is one of
    ``start``, ``poll`` or ``download``. ``produce_video=False`` finishes
    operations without any artifact.
    """

    def __init__(
        self,
        polls_until_done: int = 1,
        failures: dict[str, tuple[str, str]] | None = None,
        produce_video: bool = True,
    ) -> None:
        self.polls_until_done = polls_until_done
        self.failures = failures or {}
        self.produce_video = produce_video
        self.started: list[tuple[str, GenerationConfig]] = []
        self.polled: list[str] = []
        self.completed: list[str] = []
        self.downloaded: list[Path] = []
        self._prompt_by_name: dict[str, str] = {}
        self._prompt_by_artifact: dict[str, str] = {}
        self._polls: dict[str, int] = {}

    def _maybe_fail(self, prompt: str, phase: str) -> None:
        failure = self.failures.get(prompt)
        if failure and failure[0] == phase:
            raise RemoteOperationError(failure[1])

    def _operation(self, name: str, done: bool) -> Operation:
        artifacts: list[str] = []
        if done and self.produce_video:
            uri = f"https://files.test/{name.replace('/', '-')}.mp4"
            self._prompt_by_artifact[uri] = self._prompt_by_name[name]
            artifacts.append(uri)
        return Operation(name=name, done=done, artifacts=artifacts)

    async def start(self, prompt: str, config: GenerationConfig) -> Operation:
        self._maybe_fail(prompt, "start")
        self.started.append((prompt, config))
        name = f"operations/{len(self.started)}"
        self._prompt_by_name[name] = prompt
        self._polls[name] = 0
        return self._operation(name, self.polls_until_done == 0)

    async def poll(self, operation: Operation) -> Operation:
        prompt = self._prompt_by_name[operation.name]
        self._maybe_fail(prompt, "poll")
        self.polled.append(prompt)
        self._polls[operation.name] += 1
        return self._operation(operation.name, self._polls[operation.name] >= self.polls_until_done)

    async def download(self, artifact: str, destination: Path) -> None:
        prompt = self._prompt_by_artifact[artifact]
        self._maybe_fail(prompt, "download")
        destination.write_bytes(b"fake-mp4")
        self.downloaded.append(destination)
        self.completed.append(prompt)


class EventRecorder:
    """Collects emitted events."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of(self, kind: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind == kind]


async def settle(queue: VideoQueue, timeout: float = 2.0) -> None:
    """Wait until the pump has nothing running and nothing pending."""
    await asyncio.wait_for(queue.pump.wait_idle(), timeout)
