import time
from collections.abc import Callable
from dataclasses import replace

from carewatch.core.models import Caregiver, Device, Event
from carewatch.store.base import BaseStore


class InMemoryStore(BaseStore):
    """Process-local store; every viewer in the process shares one instance."""

    def __init__(self, tenant: str = "default", clock: Callable[[], float] = time.time):
        super().__init__(tenant=tenant, clock=clock)
        self._devices: dict[str, Device] = {}
        self._events: list[Event] = []
        self._caregivers: dict[str, Caregiver] = {}
        self._next_event_id = 1

    def _load_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def _save_device(self, device: Device) -> None:
        self._devices[device.id] = device

    def _insert_event(self, event: Event) -> Event:
        with self._lock:
            stored = replace(event, id=self._next_event_id)
            self._next_event_id += 1
            self._events.append(stored)
            return stored

    def _load_events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def _load_caregivers(self, device_id: str) -> list[Caregiver]:
        with self._lock:
            return [c for c in self._caregivers.values() if c.device_id == device_id]

    def _insert_caregiver(self, caregiver: Caregiver) -> None:
        self._caregivers[caregiver.id] = caregiver

    def _delete_caregiver(self, caregiver_id: str) -> str | None:
        caregiver = self._caregivers.pop(caregiver_id, None)
        return caregiver.device_id if caregiver else None
