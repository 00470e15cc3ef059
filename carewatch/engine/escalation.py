"""
Client-local escalation countdown

Every client that observes FALL runs its own countdown; nothing about it is
persisted or shared. At zero the owner fires the FALL -> SOS escalation once.
An externally observed status change cancels it without firing.
"""

import itertools
import logging
import threading
from collections.abc import Callable
from enum import Enum

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

DEFAULT_COUNTDOWN_TICKS = 15

_job_ids = itertools.count(1)


class TimerState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    FIRED = "fired"
    CANCELLED = "cancelled"


class EscalationTimer:
    """Countdown of `ticks` ticks that calls `on_expire` exactly once.

    `tick()` holds the countdown logic and can be driven by hand; `start()`
    schedules it every `tick_sec` seconds on an APScheduler interval job.

    Example:
        >>> timer = EscalationTimer("ESP32-AB12CD", on_expire=lambda: engine.escalate("ESP32-AB12CD"))
        >>> timer.start()
        >>> # ... status observed leaving FALL ...
        >>> timer.cancel()
    """

    def __init__(
        self,
        device_id: str,
        on_expire: Callable[[], None],
        ticks: int = DEFAULT_COUNTDOWN_TICKS,
        tick_sec: float = 1.0,
        on_tick: Callable[[int], None] | None = None,
        scheduler: BackgroundScheduler | None = None,
    ):
        if ticks < 1:
            raise ValueError(f"ticks must be positive, got {ticks}")
        self.device_id = device_id
        self.on_expire = on_expire
        self.on_tick = on_tick
        self.ticks = ticks
        self.tick_sec = tick_sec

        self._remaining = ticks
        self._state = TimerState.PENDING
        self._lock = threading.Lock()
        self._scheduler = scheduler
        self._owns_scheduler = False
        self._job = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def fired(self) -> bool:
        return self._state == TimerState.FIRED

    @property
    def cancelled(self) -> bool:
        return self._state == TimerState.CANCELLED

    @property
    def active(self) -> bool:
        return self._state in (TimerState.PENDING, TimerState.RUNNING)

    def start(self) -> None:
        with self._lock:
            if self._state != TimerState.PENDING:
                return
            self._state = TimerState.RUNNING

            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(daemon=True)
                self._owns_scheduler = True
            if not self._scheduler.running:
                self._scheduler.start()

            self._job = self._scheduler.add_job(
                func=self.tick,
                trigger=IntervalTrigger(seconds=self.tick_sec),
                id=f"escalation-{self.device_id}-{next(_job_ids)}",
                name=f"Escalation countdown {self.device_id}",
                max_instances=1,
            )
        logger.info(f"Escalation countdown started for {self.device_id}: {self.ticks} ticks")

    def tick(self) -> int:
        with self._lock:
            if not self.active:
                return self._remaining
            self._remaining -= 1
            expired = self._remaining <= 0
            if expired:
                self._state = TimerState.FIRED
                self._release_job()

        if self.on_tick:
            self.on_tick(self._remaining)

        if expired:
            logger.warning(f"Escalation countdown expired for {self.device_id}")
            try:
                self.on_expire()
            except Exception as e:
                logger.error(f"Escalation failed for {self.device_id}: {e}")
        return self._remaining

    def cancel(self) -> bool:
        """Stop without firing; returns False when already fired or cancelled"""
        with self._lock:
            if not self.active:
                return False
            self._state = TimerState.CANCELLED
            self._release_job()
        logger.info(f"Escalation countdown cancelled for {self.device_id} at {self._remaining}")
        return True

    def _release_job(self) -> None:
        if self._job is not None:
            try:
                self._job.remove()
            except JobLookupError:
                pass
            self._job = None
        if self._owns_scheduler and self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._owns_scheduler = False
