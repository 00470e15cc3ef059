import threading

import pytest

from carewatch.core.errors import NotFound, WriteConflict
from carewatch.core.models import DeviceStatus, EventStatus, Vitals
from carewatch.store.sqlite import SqliteStore

DEVICE_ID = "ESP32-AB12CD"


class Recorder:
    def __init__(self):
        self.items = []
        self.lock = threading.Lock()

    def __call__(self, payload):
        with self.lock:
            self.items.append(payload)


class TestDevices:
    def test_create_device_defaults(self, store):
        device = store.create_device(DEVICE_ID, paired_wearer_ref="wearer-1")

        assert device.status == DeviceStatus.SAFE
        assert device.vitals == Vitals.baseline()
        assert device.paired_wearer_ref == "wearer-1"
        assert store.get_device(DEVICE_ID) == device

    def test_create_existing_keeps_status(self, store, device):
        store.set_device(DEVICE_ID, {"status": "FALL"})
        again = store.create_device(DEVICE_ID)
        assert again.status == DeviceStatus.FALL

    def test_create_existing_updates_wearer(self, store, device):
        again = store.create_device(DEVICE_ID, paired_wearer_ref="wearer-2")
        assert again.paired_wearer_ref == "wearer-2"

    def test_get_missing_device(self, store):
        with pytest.raises(NotFound):
            store.get_device("ESP32-NOPE00")

    def test_set_missing_device(self, store):
        with pytest.raises(NotFound):
            store.set_device("ESP32-NOPE00", {"status": "SOS"})

    def test_partial_write(self, store, device):
        updated = store.set_device(DEVICE_ID, {"vitals": {"heartRate": 101}})
        assert updated.vitals.heart_rate == 101
        assert updated.vitals.spo2 == device.vitals.spo2
        assert updated.status == DeviceStatus.SAFE

    def test_invalid_status_never_stored(self, store, device):
        with pytest.raises(ValueError):
            store.set_device(DEVICE_ID, {"status": "PANIC"})
        assert store.get_device(DEVICE_ID).status == DeviceStatus.SAFE

    def test_last_update_non_decreasing(self, store, device, clock):
        first = store.set_device(DEVICE_ID, {"status": "FALL"})
        clock.now -= 100  # server clock skew
        second = store.set_device(DEVICE_ID, {"status": "SOS"})
        assert second.last_update >= first.last_update

    def test_conditional_write_matches(self, store, device):
        updated = store.set_device(
            DEVICE_ID, {"status": "FALL"}, expected_status=DeviceStatus.SAFE
        )
        assert updated.status == DeviceStatus.FALL

    def test_conditional_write_mismatch(self, store, device):
        store.set_device(DEVICE_ID, {"status": "SOS"})
        with pytest.raises(WriteConflict):
            store.set_device(DEVICE_ID, {"status": "SAFE"}, expected_status=DeviceStatus.FALL)
        assert store.get_device(DEVICE_ID).status == DeviceStatus.SOS


class TestCommitTransition:
    def test_event_never_postdates_status(self, store, device, clock):
        store.set_device(DEVICE_ID, {"status": "FALL"})
        clock.now -= 100  # server clock skew

        device, event = store.commit_transition(
            DEVICE_ID,
            {"status": "SAFE"},
            "FALSE_ALARM",
            {"status": "RESOLVED", "actorRole": "elderly"},
            expected_status=DeviceStatus.FALL,
        )

        assert device.status == DeviceStatus.SAFE
        assert event.timestamp <= device.last_update
        assert store.get_device(DEVICE_ID) == device
        assert store.list_events() == [event]

    def test_conflict_writes_nothing(self, store, device):
        store.set_device(DEVICE_ID, {"status": "SOS"})
        with pytest.raises(WriteConflict):
            store.commit_transition(
                DEVICE_ID, {"status": "SAFE"}, "FALSE_ALARM", expected_status=DeviceStatus.FALL
            )
        assert store.get_device(DEVICE_ID).status == DeviceStatus.SOS
        assert store.list_events() == []

    def test_invalid_status_appends_nothing(self, store, device):
        with pytest.raises(ValueError):
            store.commit_transition(DEVICE_ID, {"status": "PANIC"}, "MANUAL_SOS")
        assert store.list_events() == []

    def test_pushes_device_and_events(self, store, device):
        statuses, batches = Recorder(), Recorder()
        store.subscribe_device(DEVICE_ID, lambda d: statuses(d.status))
        store.subscribe_events(batches)

        store.commit_transition(DEVICE_ID, {"status": "SOS"}, "MANUAL_SOS")
        assert store.flush()

        assert statuses.items == [DeviceStatus.SAFE, DeviceStatus.SOS]
        assert [len(batch) for batch in batches.items] == [0, 1]


class TestDeviceSubscription:
    def test_initial_value_pushed(self, store, device):
        recorder = Recorder()
        sub = store.subscribe_device(DEVICE_ID, recorder)
        assert store.flush()

        assert [d.status for d in recorder.items] == [DeviceStatus.SAFE]
        sub.unsubscribe()

    def test_pushes_in_commit_order(self, store, device):
        recorder = Recorder()
        store.subscribe_device(DEVICE_ID, recorder)
        for status in ("FALL", "SOS", "AMBULANCE", "SAFE"):
            store.set_device(DEVICE_ID, {"status": status})
        assert store.flush()

        assert [d.status.value for d in recorder.items] == ["SAFE", "FALL", "SOS", "AMBULANCE", "SAFE"]

    def test_every_subscriber_sees_every_write(self, store, device):
        recorders = [Recorder() for _ in range(3)]
        for recorder in recorders:
            store.subscribe_device(DEVICE_ID, recorder)
        store.set_device(DEVICE_ID, {"status": "FALL"})
        assert store.flush()

        for recorder in recorders:
            assert recorder.items[-1].status == DeviceStatus.FALL

    def test_unsubscribe_stops_pushes(self, store, device):
        recorder = Recorder()
        sub = store.subscribe_device(DEVICE_ID, recorder)
        assert store.flush()
        sub.unsubscribe()

        store.set_device(DEVICE_ID, {"status": "FALL"})
        assert store.flush()
        assert len(recorder.items) == 1

    def test_callback_error_does_not_stop_delivery(self, store, device):
        seen = []

        def flaky(device):
            seen.append(device.status)
            if len(seen) == 1:
                raise RuntimeError("boom")

        store.subscribe_device(DEVICE_ID, flaky)
        store.set_device(DEVICE_ID, {"status": "FALL"})
        assert store.flush()
        assert seen == [DeviceStatus.SAFE, DeviceStatus.FALL]

    def test_subscribe_missing_device(self, store):
        with pytest.raises(NotFound):
            store.subscribe_device("ESP32-NOPE00", Recorder())


class TestEvents:
    def test_append_assigns_id_and_timestamp(self, store, device):
        first = store.append_event(DEVICE_ID, "MANUAL_SOS", {"status": "ACTIVE"})
        second = store.append_event(DEVICE_ID, "EMERGENCY_RESOLVED", {"actorRole": "elderly"})

        assert second.id > first.id
        assert second.timestamp >= first.timestamp
        assert first.status == EventStatus.ACTIVE

    def test_extra_fields_kept(self, store, device):
        event = store.append_event(
            DEVICE_ID, "AMBULANCE_REQUESTED", {"status": "DISPATCHED", "requestedBy": "caregiver"}
        )
        assert event.details == {"requestedBy": "caregiver"}
        assert store.list_events()[-1].details == {"requestedBy": "caregiver"}

    def test_subscribe_events_pushes_full_set(self, store, device):
        recorder = Recorder()
        store.subscribe_events(recorder)
        store.append_event(DEVICE_ID, "MANUAL_SOS")
        store.append_event("ESP32-OTHER1", "MANUAL_SOS")
        assert store.flush()

        assert [len(batch) for batch in recorder.items] == [0, 1, 2]

    def test_unknown_event_type_roundtrip(self, store, device):
        store.append_event(DEVICE_ID, "BATTERY_LOW", {"level": 4})
        event = store.list_events()[-1]
        assert event.type == "BATTERY_LOW"
        assert event.known_type is None


class TestCaregivers:
    def test_priority_assigned_in_order(self, store, device):
        first = store.add_caregiver(DEVICE_ID, "Ana", "555-0101")
        second = store.add_caregiver(DEVICE_ID, "Ben", "555-0102")

        assert (first.priority, second.priority) == (1, 2)
        assert [c.name for c in store.list_caregivers(DEVICE_ID)] == ["Ana", "Ben"]

    def test_priority_unique_after_removal(self, store, device):
        first = store.add_caregiver(DEVICE_ID, "Ana", "555-0101")
        store.add_caregiver(DEVICE_ID, "Ben", "555-0102")
        store.remove_caregiver(first.id)
        third = store.add_caregiver(DEVICE_ID, "Cy", "555-0103")

        priorities = [c.priority for c in store.list_caregivers(DEVICE_ID)]
        assert priorities == [2, 3]
        assert third.priority == 3

    def test_remove_missing_caregiver(self, store, device):
        with pytest.raises(NotFound):
            store.remove_caregiver("nope")

    def test_add_to_missing_device(self, store):
        with pytest.raises(NotFound):
            store.add_caregiver("ESP32-NOPE00", "Ana", "555")

    def test_roster_scoped_to_device(self, store, device):
        store.create_device("ESP32-OTHER1")
        store.add_caregiver("ESP32-OTHER1", "Zed", "555")
        assert store.list_caregivers(DEVICE_ID) == []

    def test_subscription_pushes_ordered_roster(self, store, device):
        recorder = Recorder()
        store.subscribe_caregivers(DEVICE_ID, recorder)
        store.add_caregiver(DEVICE_ID, "Ana", "555-0101")
        store.add_caregiver(DEVICE_ID, "Ben", "555-0102")
        assert store.flush()

        assert [[c.name for c in batch] for batch in recorder.items] == [[], ["Ana"], ["Ana", "Ben"]]


class TestSqliteTenancy:
    def test_tenants_isolated_in_shared_file(self, tmp_path):
        db_path = str(tmp_path / "shared.db")
        store_a = SqliteStore(db_path=db_path, tenant="app-a")
        store_b = SqliteStore(db_path=db_path, tenant="app-b")
        try:
            store_a.create_device(DEVICE_ID)
            store_a.append_event(DEVICE_ID, "MANUAL_SOS")

            with pytest.raises(NotFound):
                store_b.get_device(DEVICE_ID)
            assert store_b.list_events() == []
        finally:
            store_a.close()
            store_b.close()

    def test_data_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / "durable.db")
        store = SqliteStore(db_path=db_path, tenant="app")
        store.create_device(DEVICE_ID)
        store.set_device(DEVICE_ID, {"status": "SOS"})
        store.append_event(DEVICE_ID, "MANUAL_SOS", {"status": "ACTIVE"})
        store.close()

        reopened = SqliteStore(db_path=db_path, tenant="app")
        try:
            assert reopened.get_device(DEVICE_ID).status == DeviceStatus.SOS
            assert reopened.list_events()[0].type == "MANUAL_SOS"
        finally:
            reopened.close()
