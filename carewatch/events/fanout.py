import logging

from carewatch.core.models import Event, EventType
from carewatch.events.observer import AlertDispatcher, AlertPlan
from carewatch.store.base import DocumentStore

logger = logging.getLogger(__name__)

EMERGENCY_TYPES = frozenset(
    {EventType.MANUAL_SOS, EventType.FALL_ESCALATED, EventType.AMBULANCE_REQUESTED}
)
RESOLUTION_TYPES = frozenset({EventType.FALSE_ALARM, EventType.EMERGENCY_RESOLVED})


class NotificationFanout:
    """Event observer that hands emergencies to the dispatchers.

    The roster is read at the moment the event fires, so the plan reflects
    the caregiver list current at append time.
    """

    def __init__(self, store: DocumentStore, dispatchers: list[AlertDispatcher] | None = None):
        self.store = store
        self.dispatchers: list[AlertDispatcher] = list(dispatchers or [])

    def add_dispatcher(self, dispatcher: AlertDispatcher) -> None:
        self.dispatchers.append(dispatcher)

    def plan_for(self, event: Event) -> AlertPlan:
        return AlertPlan(event=event, caregivers=self.store.list_caregivers(event.device_id))

    def on_event_appended(self, event: Event) -> None:
        kind = event.known_type
        if kind in EMERGENCY_TYPES:
            plan = self.plan_for(event)
            names = ", ".join(c.name for c in plan.caregivers) or "nobody"
            logger.warning(f"Emergency {event.type} on {event.device_id}, alerting: {names}")
            for dispatcher in self.dispatchers:
                dispatcher.on_emergency(plan)
        elif kind in RESOLUTION_TYPES:
            plan = self.plan_for(event)
            for dispatcher in self.dispatchers:
                dispatcher.on_resolved(plan)
