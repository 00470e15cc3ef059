"""Wearer and caregivers sharing one device through the store"""

import pytest

from carewatch.core.models import Actor, DeviceStatus
from carewatch.engine.emergency import EmergencyEngine
from carewatch.engine.session import ClientSession
from carewatch.events.event_logger import EventLogger
from carewatch.events.fanout import NotificationFanout
from carewatch.store.sqlite import SqliteStore

DEVICE_ID = "ESP32-AB12CD"


@pytest.fixture
def shared_store(tmp_path):
    store = SqliteStore(db_path=str(tmp_path / "shared.db"), tenant="integration")
    yield store
    store.close()


@pytest.fixture
def dispatched(shared_store):
    """Alerts captured by a dispatcher on the shared event log"""
    alerts = []

    class Recorder:
        def on_emergency(self, plan):
            alerts.append(("emergency", plan.event.type, [c.name for c in plan.caregivers]))

        def on_resolved(self, plan):
            alerts.append(("resolved", plan.event.type, [c.name for c in plan.caregivers]))

    shared_store.create_device(DEVICE_ID, paired_wearer_ref="wearer-1")
    shared_store.add_caregiver(DEVICE_ID, "Ana", "555-0101")
    shared_store.add_caregiver(DEVICE_ID, "Ben", "555-0102")
    return alerts, NotificationFanout(shared_store, dispatchers=[Recorder()])


@pytest.fixture
def clients(shared_store, dispatched):
    _, fanout = dispatched
    engine = EmergencyEngine(shared_store, event_logger=EventLogger(shared_store, observers=[fanout]))
    sessions = {
        name: ClientSession(shared_store, engine, DEVICE_ID, role, countdown_ticks=3, auto_tick=False)
        for name, role in (
            ("wearer", Actor.ELDERLY),
            ("ana", Actor.CAREGIVER),
            ("ben", Actor.CAREGIVER),
        )
    }
    for session in sessions.values():
        session.open()
    assert shared_store.flush()
    yield engine, sessions
    for session in sessions.values():
        session.close()


def statuses(sessions):
    return {name: s.device.status for name, s in sessions.items()}


class TestMultiClient:
    def test_every_client_starts_its_own_countdown(self, shared_store, clients):
        engine, sessions = clients

        engine.hardware_fall(DEVICE_ID)
        assert shared_store.flush()

        assert {name: s.countdown for name, s in sessions.items()} == {
            "wearer": 3,
            "ana": 3,
            "ben": 3,
        }

    def test_false_alarm_clears_all_timers(self, shared_store, clients, dispatched):
        alerts, _ = dispatched
        engine, sessions = clients
        engine.hardware_fall(DEVICE_ID)
        assert shared_store.flush()

        sessions["wearer"].cancel_fall()
        assert shared_store.flush()

        assert set(statuses(sessions).values()) == {DeviceStatus.SAFE}
        assert all(s.timer is None for s in sessions.values())
        assert alerts == [("resolved", "FALSE_ALARM", ["Ana", "Ben"])]

    def test_escalation_ambulance_resolve(self, shared_store, clients, dispatched):
        alerts, _ = dispatched
        engine, sessions = clients
        engine.hardware_fall(DEVICE_ID)
        assert shared_store.flush()

        for _ in range(3):
            sessions["ana"].tick()
        assert shared_store.flush()
        assert set(statuses(sessions).values()) == {DeviceStatus.SOS}
        assert all(s.countdown is None for s in sessions.values())

        sessions["ana"].request_ambulance()
        sessions["ben"].request_ambulance()
        assert shared_store.flush()
        assert set(statuses(sessions).values()) == {DeviceStatus.AMBULANCE}

        sessions["wearer"].resolve()
        assert shared_store.flush()

        assert set(statuses(sessions).values()) == {DeviceStatus.SAFE}
        types = [e.type for e in reversed(sessions["ben"].events)]
        assert types == [
            "FALL_ESCALATED",
            "AMBULANCE_REQUESTED",
            "AMBULANCE_REQUESTED",
            "EMERGENCY_RESOLVED",
        ]
        assert [kind for kind, _, _ in alerts] == ["emergency", "emergency", "emergency", "resolved"]

    def test_caregiver_cannot_cancel_fall(self, shared_store, clients):
        _, sessions = clients
        sessions["wearer"].engine.hardware_fall(DEVICE_ID)
        assert shared_store.flush()

        result = sessions["ana"].cancel_fall()

        assert not result.accepted
        assert shared_store.get_device(DEVICE_ID).status == DeviceStatus.FALL
        assert sessions["ana"].countdown == 3
