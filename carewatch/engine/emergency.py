import logging
import random
import string
from dataclasses import dataclass
from enum import Enum

from carewatch.core.errors import InvalidState, PermissionDenied, WriteConflict
from carewatch.core.models import Actor, Device, DeviceStatus, Event, Vitals
from carewatch.engine.state_machine import DeviceStateMachine, Transition, Trigger
from carewatch.events.event_logger import EventLogger
from carewatch.store.base import DocumentStore

logger = logging.getLogger(__name__)


class Outcome(Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    PERMISSION_DENIED = "permission_denied"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"


@dataclass
class TransitionResult:
    outcome: Outcome
    trigger: Trigger
    previous: DeviceStatus
    status: DeviceStatus
    event: Event | None = None
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.outcome in (Outcome.APPLIED, Outcome.UNCHANGED)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "trigger": self.trigger.value,
            "previous": self.previous.value,
            "status": self.status.value,
            "event": self.event.to_dict() if self.event else None,
            "reason": self.reason,
        }


HARDWARE_SIGNALS = {"fall": Trigger.HARDWARE_FALL, "sos": Trigger.HARDWARE_SOS}


def generate_device_id(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    alphabet = string.ascii_uppercase + string.digits
    return "ESP32-" + "".join(rng.choice(alphabet) for _ in range(6))


class EmergencyEngine:
    """Executes device transitions against the shared store.

    No locks: every path is safe to run redundantly from several clients.
    The status field is last-writer-wins unless `conditional_writes` is set,
    in which case the write is keyed on the status this engine observed and a
    mismatch is rejected, never retried.
    """

    def __init__(
        self,
        store: DocumentStore,
        event_logger: EventLogger | None = None,
        state_machine: DeviceStateMachine | None = None,
        conditional_writes: bool = False,
    ):
        self.store = store
        self.event_logger = event_logger or EventLogger(store)
        self.state_machine = state_machine or DeviceStateMachine()
        self.conditional_writes = conditional_writes

    def request(
        self,
        device_id: str,
        trigger: Trigger,
        actor: Actor,
        role: Actor | None = None,
    ) -> TransitionResult:
        """Run one trigger for a device.

        Args:
            device_id: target device
            trigger: requested action
            actor: who performs it (guards are checked against this)
            role: person the event is attributed to; defaults to `actor`
                when it is elderly or caregiver

        Raises:
            NotFound: unknown device
            StoreUnavailable: nothing was written
        """
        device = self.store.get_device(device_id)
        previous = device.status

        try:
            transition = self.state_machine.evaluate(previous, trigger, actor)
        except PermissionDenied as e:
            logger.info(f"Rejected on {device_id}: {e}")
            return TransitionResult(Outcome.PERMISSION_DENIED, trigger, previous, previous, reason=str(e))
        except InvalidState as e:
            logger.info(f"Rejected on {device_id}: {e}")
            return TransitionResult(Outcome.INVALID_STATE, trigger, previous, previous, reason=str(e))

        if role is None and actor.is_person:
            role = actor

        if self.state_machine.is_noop(previous, transition):
            event = None
            if transition.logs_event:
                event = self.event_logger.log(
                    device_id, transition.event_type, **self._event_fields(transition, role)
                )
            return TransitionResult(Outcome.UNCHANGED, trigger, previous, previous, event=event)

        expected = previous if self.conditional_writes else None
        try:
            event = self._commit(device_id, transition, role, expected)
        except WriteConflict as e:
            logger.info(f"Conflict on {device_id}: {e}")
            return TransitionResult(Outcome.CONFLICT, trigger, previous, previous, reason=str(e))
        logger.info(f"{device_id}: {previous.value} -> {transition.target.value} ({trigger.value})")

        # Observers run once the status is committed, never in between
        if event is not None:
            self.event_logger.notify(event)
        return TransitionResult(Outcome.APPLIED, trigger, previous, transition.target, event=event)

    def _commit(
        self,
        device_id: str,
        transition: Transition,
        role: Actor | None,
        expected: DeviceStatus | None,
    ) -> Event | None:
        fields = {"status": transition.target}
        if not transition.logs_event:
            self.store.set_device(device_id, fields, expected_status=expected)
            return None

        _, event = self.event_logger.log_transition(
            device_id,
            fields,
            transition.event_type,
            expected_status=expected,
            **self._event_fields(transition, role),
        )
        return event

    @staticmethod
    def _event_fields(transition: Transition, role: Actor | None) -> dict:
        fields = {
            "status": transition.event_status,
            "actor_role": role if role is not None and role.is_person else None,
        }
        if role is not None:
            if transition.trigger == Trigger.REQUEST_AMBULANCE:
                fields["requestedBy"] = role.value
            elif transition.trigger == Trigger.RESOLVE:
                fields["resolvedBy"] = role.value
        return fields

    # --- wearer / caregiver actions ------------------------------------

    def manual_sos(self, device_id: str, actor: Actor = Actor.ELDERLY) -> TransitionResult:
        return self.request(device_id, Trigger.MANUAL_SOS, actor)

    def cancel_fall(self, device_id: str, actor: Actor = Actor.ELDERLY) -> TransitionResult:
        return self.request(device_id, Trigger.CANCEL_FALL, actor)

    def request_ambulance(self, device_id: str, actor: Actor = Actor.CAREGIVER) -> TransitionResult:
        return self.request(device_id, Trigger.REQUEST_AMBULANCE, actor)

    def resolve(self, device_id: str, actor: Actor) -> TransitionResult:
        return self.request(device_id, Trigger.RESOLVE, actor)

    def escalate(self, device_id: str, role: Actor | None = None) -> TransitionResult:
        """Countdown expiry, attributed to the client whose timer fired"""
        return self.request(device_id, Trigger.COUNTDOWN_EXPIRED, Actor.SYSTEM, role=role)

    def allowed_actions(self, device_id: str, actor: Actor) -> list[Trigger]:
        device = self.store.get_device(device_id)
        return self.state_machine.allowed_triggers(device.status, actor)

    # --- device-origin writes ------------------------------------------

    def hardware_fall(self, device_id: str) -> TransitionResult:
        return self.request(device_id, Trigger.HARDWARE_FALL, Actor.DEVICE)

    def hardware_sos(self, device_id: str) -> TransitionResult:
        return self.request(device_id, Trigger.HARDWARE_SOS, Actor.DEVICE)

    def hardware_signal(self, device_id: str, signal: str) -> TransitionResult:
        trigger = HARDWARE_SIGNALS.get(signal)
        if trigger is None:
            raise ValueError(f"Unknown hardware signal: {signal}")
        return self.request(device_id, trigger, Actor.DEVICE)

    def update_vitals(self, device_id: str, vitals: Vitals | dict) -> Device:
        """Vitals-only write; never touches status and logs no event"""
        return self.store.set_device(device_id, {"vitals": vitals})

    def pair_device(
        self,
        actor: Actor,
        device_id: str | None = None,
        user_ref: str | None = None,
    ) -> Device:
        """Ensure the device record exists; a wearer also claims the back-reference"""
        device_id = device_id or generate_device_id()
        wearer_ref = user_ref if actor == Actor.ELDERLY else None
        return self.store.create_device(device_id, paired_wearer_ref=wearer_ref)
