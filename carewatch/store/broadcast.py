"""
Push-subscription primitives

Each Subscription owns a FIFO queue and a delivery thread, so a subscriber
receives every payload for its channel in publish order while writers never
wait on slow consumers. There is no atomicity across channels.
"""

import logging
import queue
import threading
from collections import defaultdict
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)

_STOP = object()


class Subscription:
    def __init__(self, channel: Hashable, callback: Callable[[Any], None], on_close=None):
        self.channel = channel
        self.callback = callback
        self._on_close = on_close
        self._queue: queue.Queue = queue.Queue()
        self._pending = 0
        self._idle = threading.Condition()
        self._active = True
        self._thread = threading.Thread(
            target=self._deliver_loop, name=f"sub-{channel}", daemon=True
        )
        self._thread.start()

    @property
    def active(self) -> bool:
        return self._active

    def push(self, payload: Any) -> None:
        if not self._active:
            return
        with self._idle:
            self._pending += 1
        self._queue.put(payload)

    def _deliver_loop(self) -> None:
        while True:
            payload = self._queue.get()
            if payload is _STOP:
                break
            try:
                if self._active:
                    self.callback(payload)
            except Exception:
                logger.exception(f"Subscriber callback failed on {self.channel}")
            finally:
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()

        with self._idle:
            self._pending = 0
            self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued payload has been delivered"""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    @property
    def idle(self) -> bool:
        with self._idle:
            return self._pending == 0

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._queue.put(_STOP)
        if self._on_close:
            self._on_close(self)


class Broadcaster:
    """One fan-out channel per entity key"""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: dict[Hashable, list[Subscription]] = defaultdict(list)

    def subscribe(self, channel: Hashable, callback: Callable[[Any], None]) -> Subscription:
        subscription = Subscription(channel, callback, on_close=self._remove)
        with self._lock:
            self._channels[channel].append(subscription)
        return subscription

    def publish(self, channel: Hashable, payload: Any) -> None:
        with self._lock:
            subscribers = list(self._channels.get(channel, ()))
        for subscription in subscribers:
            subscription.push(payload)

    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return [s for subs in self._channels.values() for s in subs]

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._channels.get(subscription.channel)
            if subs and subscription in subs:
                subs.remove(subscription)

    def close(self) -> None:
        for subscription in self.subscriptions():
            subscription.unsubscribe()
