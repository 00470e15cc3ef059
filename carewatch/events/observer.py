from dataclasses import dataclass, field
from typing import Protocol

from carewatch.core.models import Caregiver, Event


@dataclass
class AlertPlan:
    """An emergency event plus the roster to alert, in ascending priority"""

    event: Event
    caregivers: list[Caregiver] = field(default_factory=list)

    def __post_init__(self):
        self.caregivers = sorted(self.caregivers, key=lambda c: c.priority)

    @property
    def primary(self) -> Caregiver | None:
        return self.caregivers[0] if self.caregivers else None

    def to_dict(self) -> dict:
        return {
            "event": self.event.to_dict(),
            "caregivers": [c.to_dict() for c in self.caregivers],
        }


class EventObserver(Protocol):
    def on_event_appended(self, event: Event) -> None: ...


class AlertDispatcher(Protocol):
    """External dispatch hook (call/SMS lives outside this package)"""

    def on_emergency(self, plan: AlertPlan) -> None: ...
    def on_resolved(self, plan: AlertPlan) -> None: ...
