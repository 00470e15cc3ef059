"""
One viewer of one device

A ClientSession is what a wearer app, a caregiver app or a dashboard holds:
push subscriptions to the device record, the event collection and the
caregiver roster, a local view rebuilt on every push, and the client-local
escalation countdown. There is no coordinator between sessions; they agree
through the store.
"""

import logging
import threading
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from carewatch.core.errors import StoreUnavailable
from carewatch.core.models import Actor, Caregiver, Device, DeviceStatus, Event
from carewatch.engine.emergency import EmergencyEngine, TransitionResult
from carewatch.engine.escalation import DEFAULT_COUNTDOWN_TICKS, EscalationTimer
from carewatch.engine.state_machine import Trigger
from carewatch.events.event_logger import device_history
from carewatch.store.base import DocumentStore
from carewatch.store.broadcast import Subscription

logger = logging.getLogger(__name__)


class ClientSession:
    """Subscriptions, local view and escalation timer for one client.

    Status and events arrive on independent channels, so the local view may
    briefly hold a new status without its explaining event (or the reverse).
    Nothing here assumes either order.

    Example:
        >>> session = ClientSession(store, engine, "ESP32-AB12CD", Actor.CAREGIVER)
        >>> session.open()
        >>> session.request_ambulance()
        >>> session.close()
    """

    def __init__(
        self,
        store: DocumentStore,
        engine: EmergencyEngine,
        device_id: str,
        role: Actor,
        countdown_ticks: int = DEFAULT_COUNTDOWN_TICKS,
        tick_sec: float = 1.0,
        retry_initial_sec: float = 0.5,
        retry_max_sec: float = 30.0,
        auto_tick: bool = True,
        on_update: Callable[["ClientSession"], None] | None = None,
    ):
        if not role.is_person:
            raise ValueError(f"Session role must be elderly or caregiver, got {role.value}")
        self.store = store
        self.engine = engine
        self.device_id = device_id
        self.role = role
        self.countdown_ticks = countdown_ticks
        self.tick_sec = tick_sec
        self.retry_initial_sec = retry_initial_sec
        self.retry_max_sec = retry_max_sec
        self.auto_tick = auto_tick
        self.on_update = on_update

        self.device: Device | None = None
        self.events: list[Event] = []
        self.caregivers: list[Caregiver] = []
        self.timer: EscalationTimer | None = None

        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()
        self._closed = threading.Event()
        self._scheduler: BackgroundScheduler | None = None

    # --- lifecycle -----------------------------------------------------

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions) and not self._closed.is_set()

    def open(self) -> None:
        """Subscribe to the device, its events and its caregivers.

        Blocks while the subscriptions are established, retrying
        StoreUnavailable with exponential backoff until it succeeds or the
        session is closed.
        """
        self._closed.clear()
        if self.auto_tick and self._scheduler is None:
            self._scheduler = BackgroundScheduler(daemon=True)
            self._scheduler.start()

        delay = self.retry_initial_sec
        while not self._closed.is_set():
            try:
                self._subscribe_all()
                logger.info(f"{self.role.value} session open on {self.device_id}")
                return
            except StoreUnavailable as e:
                logger.warning(f"Subscribe failed for {self.device_id}, retrying in {delay:.1f}s: {e}")
                self._unsubscribe_all()
                if self._closed.wait(delay):
                    break
                delay = min(delay * 2, self.retry_max_sec)

    def _subscribe_all(self) -> None:
        self._subscriptions.append(self.store.subscribe_device(self.device_id, self._on_device))
        self._subscriptions.append(self.store.subscribe_events(self._on_events))
        self._subscriptions.append(
            self.store.subscribe_caregivers(self.device_id, self._on_caregivers)
        )

    def _unsubscribe_all(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def close(self) -> None:
        """Drop subscriptions and the local countdown; reopening starts fresh"""
        self._closed.set()
        self._unsubscribe_all()
        with self._lock:
            if self.timer is not None:
                self.timer.cancel()
                self.timer = None
            self.device = None
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info(f"{self.role.value} session closed on {self.device_id}")

    # --- push handlers -------------------------------------------------

    def _on_device(self, device: Device) -> None:
        with self._lock:
            previous = self.device.status if self.device else None
            self.device = device

            if device.status == DeviceStatus.FALL:
                if previous != DeviceStatus.FALL or self.timer is None:
                    self._start_countdown()
            elif self.timer is not None:
                # Someone else cancelled or escalated, or this client's own escalation landed
                self.timer.cancel()
                self.timer = None
        self._notify_update()

    def _on_events(self, events: list[Event]) -> None:
        with self._lock:
            self.events = device_history(events, self.device_id)
        self._notify_update()

    def _on_caregivers(self, caregivers: list[Caregiver]) -> None:
        with self._lock:
            self.caregivers = sorted(caregivers, key=lambda c: c.priority)
        self._notify_update()

    def _notify_update(self) -> None:
        if self.on_update:
            self.on_update(self)

    # --- countdown -----------------------------------------------------

    def _start_countdown(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.timer = EscalationTimer(
            self.device_id,
            on_expire=self._escalate,
            ticks=self.countdown_ticks,
            tick_sec=self.tick_sec,
            scheduler=self._scheduler,
        )
        if self.auto_tick:
            self.timer.start()

    def _escalate(self) -> None:
        result = self.engine.escalate(self.device_id, role=self.role)
        logger.info(f"{self.role.value} escalation on {self.device_id}: {result.outcome.value}")

    @property
    def countdown(self) -> int | None:
        timer = self.timer
        return timer.remaining if timer is not None and timer.active else None

    def tick(self) -> int | None:
        """Advance the local countdown by one tick (manual clock)"""
        with self._lock:
            timer = self.timer
        if timer is None:
            return None
        return timer.tick()

    # --- actions -------------------------------------------------------

    def press_sos(self) -> TransitionResult:
        return self.engine.manual_sos(self.device_id, actor=self.role)

    def cancel_fall(self) -> TransitionResult:
        return self.engine.cancel_fall(self.device_id, actor=self.role)

    def request_ambulance(self) -> TransitionResult:
        return self.engine.request_ambulance(self.device_id, actor=self.role)

    def resolve(self) -> TransitionResult:
        return self.engine.resolve(self.device_id, actor=self.role)

    def allowed_actions(self) -> list[Trigger]:
        with self._lock:
            device = self.device
        if device is None:
            return []
        return self.engine.state_machine.allowed_triggers(device.status, self.role)

    @property
    def primary_caregiver(self) -> Caregiver | None:
        return self.caregivers[0] if self.caregivers else None
