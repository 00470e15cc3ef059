from dataclasses import dataclass
from enum import Enum

from carewatch.core.errors import InvalidState, PermissionDenied
from carewatch.core.models import Actor, DeviceStatus, EventStatus, EventType


class Trigger(Enum):
    HARDWARE_FALL = "hardware_fall"
    HARDWARE_SOS = "hardware_sos"
    MANUAL_SOS = "manual_sos"
    COUNTDOWN_EXPIRED = "countdown_expired"
    CANCEL_FALL = "cancel_fall"
    REQUEST_AMBULANCE = "request_ambulance"
    RESOLVE = "resolve"


@dataclass(frozen=True)
class Transition:
    trigger: Trigger
    sources: frozenset[DeviceStatus]
    actors: frozenset[Actor]
    target: DeviceStatus
    event_type: EventType | None = None
    event_status: EventStatus | None = None
    # Accept the request when the device already sits in `target`
    idempotent: bool = True

    @property
    def logs_event(self) -> bool:
        return self.event_type is not None


def _transition(trigger, sources, actors, target, event_type=None, event_status=None, **kw):
    return Transition(
        trigger=trigger,
        sources=frozenset(sources),
        actors=frozenset(actors),
        target=target,
        event_type=event_type,
        event_status=event_status,
        **kw,
    )


S = DeviceStatus

TRANSITIONS: dict[Trigger, Transition] = {
    t.trigger: t
    for t in (
        _transition(Trigger.HARDWARE_FALL, [S.SAFE], [Actor.DEVICE], S.FALL),
        _transition(
            Trigger.MANUAL_SOS,
            [S.SAFE],
            [Actor.ELDERLY],
            S.SOS,
            EventType.MANUAL_SOS,
            EventStatus.ACTIVE,
        ),
        _transition(Trigger.HARDWARE_SOS, [S.SAFE], [Actor.DEVICE], S.SOS),
        _transition(
            Trigger.COUNTDOWN_EXPIRED,
            [S.FALL],
            [Actor.SYSTEM],
            S.SOS,
            EventType.FALL_ESCALATED,
            EventStatus.ACTIVE,
        ),
        # Legal only while the status is exactly FALL
        _transition(
            Trigger.CANCEL_FALL,
            [S.FALL],
            [Actor.ELDERLY],
            S.SAFE,
            EventType.FALSE_ALARM,
            EventStatus.RESOLVED,
            idempotent=False,
        ),
        _transition(
            Trigger.REQUEST_AMBULANCE,
            [S.FALL, S.SOS],
            [Actor.CAREGIVER],
            S.AMBULANCE,
            EventType.AMBULANCE_REQUESTED,
            EventStatus.DISPATCHED,
        ),
        _transition(
            Trigger.RESOLVE,
            [S.SOS, S.AMBULANCE],
            [Actor.ELDERLY, Actor.CAREGIVER],
            S.SAFE,
            EventType.EMERGENCY_RESOLVED,
            EventStatus.RESOLVED,
        ),
    )
}


class DeviceStateMachine:
    """Legal device states and which actor may move between them.

    Pure decision logic: it never touches the store. The engine asks it
    whether a trigger is legal from the status it observed.
    """

    def __init__(self, transitions: dict[Trigger, Transition] | None = None):
        self.transitions = transitions if transitions is not None else TRANSITIONS

    def evaluate(self, status: DeviceStatus, trigger: Trigger, actor: Actor) -> Transition:
        """Return the transition for `trigger`, or raise when its guard fails.

        Raises:
            PermissionDenied: the actor may never perform this trigger
            InvalidState: the trigger is not defined from `status`
        """
        transition = self.transitions.get(trigger)
        if transition is None:
            raise InvalidState(f"Unknown trigger: {trigger}")

        if actor not in transition.actors:
            raise PermissionDenied(f"{actor.value} may not {trigger.value}")

        if status in transition.sources:
            return transition
        if transition.idempotent and status == transition.target:
            return transition

        raise InvalidState(f"Cannot {trigger.value} while {status.value}")

    def is_noop(self, status: DeviceStatus, transition: Transition) -> bool:
        return status == transition.target

    def allowed_triggers(self, status: DeviceStatus, actor: Actor) -> list[Trigger]:
        return [
            t.trigger
            for t in self.transitions.values()
            if actor in t.actors and status in t.sources
        ]
