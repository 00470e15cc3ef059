"""Audit log and caregiver alert fan-out."""

from .event_logger import EventLogger, device_history
from .fanout import NotificationFanout
from .notifier import WebhookNotifier
from .observer import AlertDispatcher, AlertPlan, EventObserver

__all__ = [
    "AlertDispatcher",
    "AlertPlan",
    "EventLogger",
    "EventObserver",
    "NotificationFanout",
    "WebhookNotifier",
    "device_history",
]
