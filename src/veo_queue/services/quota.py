"""Quota exhaustion detection and cooldown with exponential backoff."""

import math
from collections.abc import Callable

import structlog

from veo_queue.services.events import EventBus, EventKind
from veo_queue.services.state import QueueState
from veo_queue.services.timers import TimerHandle, Timers

logger = structlog.get_logger()

QUOTA_MARKERS = (
    "429",
    "resource_exhausted",
    "resource exhausted",
    "rate limit",
    "rate-limit",
    "quota exceeded",
    "exceeded your current quota",
    "too many requests",
)

DEFAULT_RESUME_CONCURRENCY = 2


def is_quota_error(message: str) -> bool:
    """Return True if an error message signals provider rate limiting."""
    lower = message.lower()
    return any(marker in lower for marker in QUOTA_MARKERS)


class QuotaCooldownController:
    """Suspends admission after quota errors and resumes it on a timer.

    While active the live concurrency limit is 0 and the pre-cooldown limit
    sits in ``quota.prev_concurrency``. The backoff doubles after each resume,
    capped at ``quota.max_backoff_seconds``.
    """

    def __init__(
        self,
        state: QueueState,
        events: EventBus,
        timers: Timers,
        on_resume: Callable[[], None],
        tick_seconds: float = 1.0,
        default_concurrency: int = DEFAULT_RESUME_CONCURRENCY,
    ) -> None:
        self.state = state
        self.events = events
        self.timers = timers
        self.on_resume = on_resume
        self.tick_seconds = tick_seconds
        self.default_concurrency = default_concurrency
        self._resume_handle: TimerHandle | None = None
        self._tick_handle: TimerHandle | None = None

    @property
    def active(self) -> bool:
        return self.state.settings.quota.active

    def remaining_seconds(self) -> int:
        """Whole seconds until the scheduled resume (0 when inactive)."""
        quota = self.state.settings.quota
        if not quota.active or quota.next_retry_at is None:
            return 0
        return max(0, math.ceil(quota.next_retry_at - self.timers.now()))

    def trigger(self, reason: str) -> None:
        """Pause admission because the provider reported quota exhaustion."""
        settings = self.state.settings
        quota = settings.quota
        if not quota.active:
            quota.prev_concurrency = settings.concurrency
            quota.active = True
        settings.concurrency = 0
        quota.next_retry_at = self.timers.now() + quota.backoff_seconds
        self.state.save_settings()

        logger.warning(
            "Quota exhausted, pausing queue",
            reason=reason,
            backoff_seconds=quota.backoff_seconds,
            prev_concurrency=quota.prev_concurrency,
        )
        self.events.emit(EventKind.PAUSED_BY_QUOTA, reason=reason)
        self.events.notify(
            "Quota exhausted",
            f"Queue paused for {math.ceil(quota.backoff_seconds / 60)} min, resuming automatically.",
        )
        self._arm()

    def restore(self) -> None:
        """Re-arm a cooldown persisted by a previous process."""
        quota = self.state.settings.quota
        if not quota.active:
            return
        if quota.next_retry_at is not None and quota.next_retry_at > self.timers.now():
            self.state.settings.concurrency = 0
            logger.info(
                "Restoring quota cooldown",
                remaining_seconds=self.remaining_seconds(),
            )
            self._arm()
        else:
            logger.info("Persisted quota cooldown already expired, resuming")
            self.resume()

    def set_concurrency(self, value: int) -> None:
        """Record a user concurrency change to apply when the cooldown ends."""
        self.state.settings.quota.prev_concurrency = value
        self.state.save_settings()

    def resume(self) -> None:
        """End the cooldown, restore concurrency and grow the next backoff."""
        self._cancel()
        settings = self.state.settings
        quota = settings.quota
        if not quota.active:
            return

        restored = quota.prev_concurrency
        settings.concurrency = restored if restored is not None else self.default_concurrency
        quota.active = False
        quota.prev_concurrency = None
        quota.next_retry_at = None
        quota.backoff_seconds = min(quota.backoff_seconds * 2, quota.max_backoff_seconds)
        self.state.save_settings()

        logger.info(
            "Quota cooldown ended",
            concurrency=settings.concurrency,
            next_backoff_seconds=quota.backoff_seconds,
        )
        self.events.emit(EventKind.COOLDOWN_ENDED, concurrency=settings.concurrency)
        self.on_resume()

    def close(self) -> None:
        """Cancel pending timers without changing persisted state."""
        self._cancel()

    def _arm(self) -> None:
        self._cancel()
        next_retry_at = self.state.settings.quota.next_retry_at or self.timers.now()
        delay = max(0.0, next_retry_at - self.timers.now())
        self._resume_handle = self.timers.call_later(delay, self.resume)
        self._tick_handle = self.timers.call_every(self.tick_seconds, self._tick)
        self._tick()

    def _tick(self) -> None:
        self.events.emit(EventKind.COOLDOWN_TICK, remaining=self.remaining_seconds())

    def _cancel(self) -> None:
        for handle in (self._resume_handle, self._tick_handle):
            if handle is not None:
                handle.cancel()
        self._resume_handle = None
        self._tick_handle = None
