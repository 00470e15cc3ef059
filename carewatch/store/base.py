"""
Shared document/event store contract

`DocumentStore` is what the engine and the client sessions require from the
real-time store. `BaseStore` implements the contract's bookkeeping (server
timestamps, id assignment, push delivery) on top of a handful of storage hooks
that each backend fills in.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol

from carewatch.core.errors import NotFound, WriteConflict
from carewatch.core.models import (
    Actor,
    Caregiver,
    Device,
    DeviceStatus,
    Event,
    EventStatus,
    Vitals,
)
from carewatch.store.broadcast import Broadcaster, Subscription

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    tenant: str

    def get_device(self, device_id: str) -> Device: ...
    def create_device(self, device_id: str, paired_wearer_ref: str | None = None) -> Device: ...
    def set_device(
        self, device_id: str, fields: dict, expected_status: DeviceStatus | None = None
    ) -> Device: ...
    def commit_transition(
        self,
        device_id: str,
        fields: dict,
        event_type: str,
        event_fields: dict | None = None,
        expected_status: DeviceStatus | None = None,
    ) -> tuple[Device, Event]: ...
    def subscribe_device(self, device_id: str, on_change: Callable[[Device], None]) -> Subscription: ...
    def append_event(self, device_id: str, event_type: str, fields: dict | None = None) -> Event: ...
    def list_events(self) -> list[Event]: ...
    def subscribe_events(self, on_change: Callable[[list[Event]], None]) -> Subscription: ...
    def list_caregivers(self, device_id: str) -> list[Caregiver]: ...
    def subscribe_caregivers(
        self, device_id: str, on_change: Callable[[list[Caregiver]], None]
    ) -> Subscription: ...
    def add_caregiver(self, device_id: str, name: str, phone: str) -> Caregiver: ...
    def remove_caregiver(self, caregiver_id: str) -> None: ...
    def flush(self, timeout: float = 5.0) -> bool: ...
    def close(self) -> None: ...


def _device_channel(device_id: str) -> tuple:
    return ("device", device_id)


def _caregiver_channel(device_id: str) -> tuple:
    return ("caregivers", device_id)


_EVENTS_CHANNEL = ("events",)


class BaseStore:
    """Store bookkeeping shared by every backend.

    All commits and their publishes happen under one lock, so each subscriber
    queue receives states in the order the store committed them.
    """

    def __init__(self, tenant: str = "default", clock: Callable[[], float] = time.time):
        self.tenant = tenant
        self._clock = clock
        self._lock = threading.RLock()
        self._broadcaster = Broadcaster()

    # --- storage hooks -------------------------------------------------

    def _load_device(self, device_id: str) -> Device | None:
        raise NotImplementedError

    def _save_device(self, device: Device) -> None:
        raise NotImplementedError

    def _insert_event(self, event: Event) -> Event:
        """Persist an event and return it with its store-assigned id"""
        raise NotImplementedError

    def _load_events(self) -> list[Event]:
        raise NotImplementedError

    def _load_caregivers(self, device_id: str) -> list[Caregiver]:
        raise NotImplementedError

    def _insert_caregiver(self, caregiver: Caregiver) -> None:
        raise NotImplementedError

    def _delete_caregiver(self, caregiver_id: str) -> str | None:
        """Delete a caregiver and return its device id, or None when absent"""
        raise NotImplementedError

    # --- devices -------------------------------------------------------

    def get_device(self, device_id: str) -> Device:
        return self._require_device(device_id)

    def _require_device(self, device_id: str) -> Device:
        device = self._load_device(device_id)
        if device is None:
            raise NotFound(f"Device not found: {device_id}")
        return device

    def create_device(self, device_id: str, paired_wearer_ref: str | None = None) -> Device:
        with self._lock:
            existing = self._load_device(device_id)
            if existing is None:
                device = Device(
                    id=device_id,
                    status=DeviceStatus.SAFE,
                    vitals=Vitals.baseline(),
                    last_update=self._clock(),
                    paired_wearer_ref=paired_wearer_ref,
                )
                self._save_device(device)
                logger.info(f"[{self.tenant}] Device created: {device_id}")
            elif paired_wearer_ref is not None:
                device = existing.with_fields(
                    {"pairedWearerRef": paired_wearer_ref},
                    last_update=max(self._clock(), existing.last_update),
                )
                self._save_device(device)
            else:
                return existing

            self._broadcaster.publish(_device_channel(device_id), device)
            return device

    def set_device(
        self, device_id: str, fields: dict, expected_status: DeviceStatus | None = None
    ) -> Device:
        """Partial write; `lastUpdate` is assigned here and never moves backwards.

        With `expected_status` the write only commits when the stored status
        still matches, otherwise WriteConflict is raised and nothing changes.
        """
        with self._lock:
            current = self._require_device(device_id)
            self._check_expected(current, expected_status)

            last_update = max(self._clock(), current.last_update)
            device = current.with_fields(fields, last_update=last_update)
            self._save_device(device)
            self._broadcaster.publish(_device_channel(device_id), device)
            return device

    def commit_transition(
        self,
        device_id: str,
        fields: dict,
        event_type: str,
        event_fields: dict | None = None,
        expected_status: DeviceStatus | None = None,
    ) -> tuple[Device, Event]:
        """Device write together with the event that explains it.

        The event is inserted first and `lastUpdate` is stamped no earlier
        than the event timestamp. A WriteConflict or a failed insert leaves
        the device untouched and appends nothing.
        """
        with self._lock:
            current = self._require_device(device_id)
            self._check_expected(current, expected_status)
            device = current.with_fields(fields, last_update=current.last_update)

            event = self._insert_event(self._new_event(device_id, event_type, event_fields))
            device = replace(
                device, last_update=max(self._clock(), current.last_update, event.timestamp)
            )
            self._save_device(device)
            self._broadcaster.publish(_device_channel(device_id), device)
            self._broadcaster.publish(_EVENTS_CHANNEL, self._load_events())
            return device, event

    @staticmethod
    def _check_expected(current: Device, expected_status: DeviceStatus | None) -> None:
        if expected_status is not None and current.status != expected_status:
            raise WriteConflict(
                f"Device {current.id} is {current.status.value}, expected {expected_status.value}"
            )

    def subscribe_device(self, device_id: str, on_change: Callable[[Device], None]) -> Subscription:
        with self._lock:
            device = self._require_device(device_id)
            subscription = self._broadcaster.subscribe(_device_channel(device_id), on_change)
            subscription.push(device)
            return subscription

    # --- events --------------------------------------------------------

    def append_event(self, device_id: str, event_type: str, fields: dict | None = None) -> Event:
        with self._lock:
            event = self._insert_event(self._new_event(device_id, event_type, fields))
            self._broadcaster.publish(_EVENTS_CHANNEL, self._load_events())
            return event

    def _new_event(self, device_id: str, event_type: str, fields: dict | None) -> Event:
        """Unsaved event; id is assigned by _insert_event, timestamp here"""
        fields = dict(fields or {})
        status = fields.pop("status", None)
        role = fields.pop("actorRole", None)
        return Event(
            id=0,
            device_id=device_id,
            type=str(getattr(event_type, "value", event_type)),
            timestamp=self._clock(),
            status=EventStatus(status) if status else None,
            actor_role=Actor(role) if role else None,
            details=fields,
        )

    def list_events(self) -> list[Event]:
        return self._load_events()

    def subscribe_events(self, on_change: Callable[[list[Event]], None]) -> Subscription:
        with self._lock:
            subscription = self._broadcaster.subscribe(_EVENTS_CHANNEL, on_change)
            subscription.push(self._load_events())
            return subscription

    # --- caregivers ----------------------------------------------------

    def list_caregivers(self, device_id: str) -> list[Caregiver]:
        return sorted(self._load_caregivers(device_id), key=lambda c: c.priority)

    def subscribe_caregivers(
        self, device_id: str, on_change: Callable[[list[Caregiver]], None]
    ) -> Subscription:
        with self._lock:
            subscription = self._broadcaster.subscribe(_caregiver_channel(device_id), on_change)
            subscription.push(self.list_caregivers(device_id))
            return subscription

    def add_caregiver(self, device_id: str, name: str, phone: str) -> Caregiver:
        with self._lock:
            self._require_device(device_id)
            existing = self._load_caregivers(device_id)
            caregiver = Caregiver(
                id=uuid.uuid4().hex,
                device_id=device_id,
                name=name,
                phone=phone,
                priority=max((c.priority for c in existing), default=0) + 1,
            )
            self._insert_caregiver(caregiver)
            self._broadcaster.publish(
                _caregiver_channel(device_id), self.list_caregivers(device_id)
            )
            return caregiver

    def remove_caregiver(self, caregiver_id: str) -> None:
        with self._lock:
            device_id = self._delete_caregiver(caregiver_id)
            if device_id is None:
                raise NotFound(f"Caregiver not found: {caregiver_id}")
            self._broadcaster.publish(
                _caregiver_channel(device_id), self.list_caregivers(device_id)
            )

    # --- lifecycle -----------------------------------------------------

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every subscriber has consumed its queue.

        Callbacks may write and trigger further pushes, so this loops until a
        full pass finds every subscription idle.
        """
        deadline = time.monotonic() + timeout
        while True:
            busy = [s for s in self._broadcaster.subscriptions() if not s.idle]
            if not busy:
                return True
            for subscription in busy:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                subscription.wait_idle(remaining)

    def close(self) -> None:
        self._broadcaster.close()
