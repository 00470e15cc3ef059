import logging

from carewatch.core.models import Actor, Device, DeviceStatus, Event, EventStatus, EventType
from carewatch.events.observer import EventObserver
from carewatch.store.base import DocumentStore

logger = logging.getLogger(__name__)


class EventLogger:
    """Append-only audit log on top of the store's event collection.

    There is no update or delete: a correction is a new event (FALSE_ALARM
    after a FALL). Observers run synchronously through notify(); log() calls
    it right after the append, log_transition() leaves it to the caller.
    """

    def __init__(self, store: DocumentStore, observers: list[EventObserver] | None = None):
        self.store = store
        self.observers: list[EventObserver] = list(observers or [])

    def add_observer(self, observer: EventObserver) -> None:
        self.observers.append(observer)

    @staticmethod
    def build_fields(
        status: EventStatus | None = None,
        actor_role: Actor | None = None,
        **details,
    ) -> dict:
        fields = {}
        if status is not None:
            fields["status"] = EventStatus(status).value
        if actor_role is not None:
            fields["actorRole"] = Actor(actor_role).value
        fields.update(details)
        return fields

    def log(
        self,
        device_id: str,
        event_type: EventType | str,
        status: EventStatus | None = None,
        actor_role: Actor | None = None,
        **details,
    ) -> Event:
        """Append one event and fan it out.

        Raises:
            StoreUnavailable: the append did not happen
        """
        fields = self.build_fields(status=status, actor_role=actor_role, **details)
        event = self.store.append_event(device_id, event_type, fields)
        logger.info(f"Event {event.id} logged: {event.type} on {device_id}")
        self.notify(event)
        return event

    def log_transition(
        self,
        device_id: str,
        device_fields: dict,
        event_type: EventType | str,
        status: EventStatus | None = None,
        actor_role: Actor | None = None,
        expected_status: DeviceStatus | None = None,
        **details,
    ) -> tuple[Device, Event]:
        """Append an event together with the device write it explains.

        Observers are not called here; the caller runs notify() once the
        write is committed, so they only ever see the new device state.

        Raises:
            WriteConflict: `expected_status` no longer matches; nothing written
            StoreUnavailable: nothing written
        """
        fields = self.build_fields(status=status, actor_role=actor_role, **details)
        device, event = self.store.commit_transition(
            device_id, device_fields, event_type, fields, expected_status=expected_status
        )
        logger.info(f"Event {event.id} logged: {event.type} on {device_id}")
        return device, event

    def history(self, device_id: str, limit: int | None = None) -> list[Event]:
        return device_history(self.store.list_events(), device_id, limit=limit)

    def notify(self, event: Event) -> None:
        for observer in self.observers:
            try:
                observer.on_event_appended(event)
            except Exception as e:
                logger.error(f"Event observer failed for event {event.id}: {e}")


def device_history(events: list[Event], device_id: str, limit: int | None = None) -> list[Event]:
    """Filter the full event set to one device, newest first"""
    mine = [e for e in events if e.device_id == device_id]
    mine.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
    return mine[:limit] if limit is not None else mine
