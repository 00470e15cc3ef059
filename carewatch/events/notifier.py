import logging
from collections import deque
from datetime import datetime

import requests

from carewatch.events.observer import AlertDispatcher, AlertPlan

logger = logging.getLogger(__name__)


class WebhookNotifier(AlertDispatcher):
    """Posts alert plans to an external dispatcher that places the calls/SMS"""

    def __init__(self, url: str, enabled: bool = True, timeout: float = 10.0):
        self.url = url
        self.enabled = enabled and bool(url)
        self.timeout = timeout
        self._pending_queue: deque[dict] = deque()

    def on_emergency(self, plan: AlertPlan) -> None:
        if not self.enabled:
            return

        event = plan.event
        timestamp = datetime.fromtimestamp(event.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        lines = [f"🚨 {event.type} on {event.device_id}", f"Time: {timestamp}"]
        for caregiver in plan.caregivers:
            lines.append(f"#{caregiver.priority} {caregiver.name} {caregiver.phone}")
        self._send({"kind": "emergency", "text": "\n".join(lines), **plan.to_dict()})

    def on_resolved(self, plan: AlertPlan) -> None:
        if not self.enabled:
            return

        event = plan.event
        text = f"✅ {event.type} on {event.device_id}"
        self._send({"kind": "resolved", "text": text, **plan.to_dict()})

    def _post(self, payload: dict) -> bool:
        response = requests.post(self.url, json=payload, timeout=self.timeout)
        return 200 <= response.status_code < 300

    def _send(self, payload: dict) -> bool:
        # 先補送先前失敗的通知，新的警報無論如何都會嘗試送出
        if self._pending_queue:
            self.retry_pending()

        event_id = payload["event"]["id"]
        try:
            if self._post(payload):
                logger.info(f"Notification sent for event {event_id}")
                return True
            logger.warning(f"Notification rejected for event {event_id}")
        except requests.RequestException as e:
            logger.error(f"Notification error: {e}")
        self._pending_queue.append(payload)
        return False

    def retry_pending(self) -> None:
        """依序重送佇列中的通知，遇到第一個失敗即停止"""
        while self._pending_queue:
            payload = self._pending_queue[0]
            try:
                if not self._post(payload):
                    break
            except requests.RequestException:
                break
            self._pending_queue.popleft()
            logger.info(f"Queued notification sent for event {payload['event']['id']}")
