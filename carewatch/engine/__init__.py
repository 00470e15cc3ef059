"""Device state machine, escalation countdown and client sessions."""

from .emergency import EmergencyEngine, Outcome, TransitionResult, generate_device_id
from .escalation import EscalationTimer
from .session import ClientSession
from .state_machine import DeviceStateMachine, Trigger

__all__ = [
    "ClientSession",
    "DeviceStateMachine",
    "EmergencyEngine",
    "EscalationTimer",
    "Outcome",
    "TransitionResult",
    "Trigger",
    "generate_device_id",
]
