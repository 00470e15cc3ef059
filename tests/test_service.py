from unittest.mock import patch

import pytest

from carewatch.core.config import (
    Config,
    EscalationConfig,
    NotificationConfig,
    SimulatorConfig,
    StoreConfig,
    SubscriptionConfig,
    WebConfig,
)
from carewatch.core.models import Actor, DeviceStatus, Vitals
from carewatch.service import build_service, build_session
from carewatch.store import InMemoryStore, SqliteStore, create_store
from scripts.simulate_device import HttpDeviceLink

DEVICE_ID = "ESP32-DEMO01"


@pytest.fixture
def config(tmp_path):
    return Config(
        store=StoreConfig(backend="memory", db_path=str(tmp_path / "cw.db"), tenant="svc-test"),
        escalation=EscalationConfig(countdown_ticks=2, tick_sec=0.05),
        subscription=SubscriptionConfig(retry_initial_sec=0.01, retry_max_sec=0.1),
        notification=NotificationConfig(
            webhook_url="https://dispatch.example.com/hook", enabled=True, timeout_sec=3.0
        ),
        simulator=SimulatorConfig(enabled=True, device_id=DEVICE_ID, interval_sec=0.05),
        web=WebConfig(host="127.0.0.1", port=8000),
    )


class TestCreateStore:
    def test_memory_backend(self, config):
        store = create_store(config.store)
        assert isinstance(store, InMemoryStore)
        assert store.tenant == "svc-test"

    def test_sqlite_backend(self, config):
        config.store.backend = "sqlite"
        store = create_store(config.store)
        try:
            assert isinstance(store, SqliteStore)
        finally:
            store.close()

    def test_unknown_backend(self, config):
        config.store.backend = "firestore"
        with pytest.raises(ValueError):
            create_store(config.store)


class TestBuildService:
    def test_simulated_device_created(self, config):
        store, engine, simulator = build_service(config)

        assert simulator is not None
        assert simulator.device_id == DEVICE_ID
        assert store.get_device(DEVICE_ID).status == DeviceStatus.SAFE
        assert engine.store is store
        store.close()

    def test_simulator_disabled(self, config):
        config.simulator.enabled = False
        store, _, simulator = build_service(config)
        assert simulator is None
        store.close()

    def test_emergency_reaches_webhook(self, config):
        config.simulator.enabled = False
        store, engine, _ = build_service(config)
        store.create_device("ESP32-AB12CD")
        store.add_caregiver("ESP32-AB12CD", "Ana", "555-0101")

        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 200
            engine.manual_sos("ESP32-AB12CD")

            mock_post.assert_called_once()
            json_body = mock_post.call_args.kwargs["json"]
            assert json_body["kind"] == "emergency"
            assert json_body["caregivers"][0]["name"] == "Ana"
        store.close()

    def test_session_uses_configured_countdown(self, config):
        store, engine, _ = build_service(config)
        session = build_session(config, store, engine, DEVICE_ID, Actor.CAREGIVER, auto_tick=False)
        session.open()
        engine.hardware_fall(DEVICE_ID)
        assert store.flush()

        assert session.countdown == 2
        assert session.retry_max_sec == 0.1

        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 200
            session.tick()
            session.tick()
        assert store.get_device(DEVICE_ID).status == DeviceStatus.SOS
        assert mock_post.call_args.kwargs["json"]["event"]["type"] == "FALL_ESCALATED"
        session.close()
        store.close()


class TestHttpDeviceLink:
    def test_update_vitals(self):
        link = HttpDeviceLink("http://localhost:8000/", timeout=2.0)
        with patch("requests.put") as mock_put:
            mock_put.return_value.json.return_value = {"id": DEVICE_ID}
            link.update_vitals(DEVICE_ID, Vitals(heart_rate=80, spo2=97, battery=60))

            call_args = mock_put.call_args
            assert call_args.args[0] == f"http://localhost:8000/api/devices/{DEVICE_ID}/vitals"
            assert call_args.kwargs["json"] == {"heartRate": 80, "spo2": 97, "battery": 60}
            assert call_args.kwargs["timeout"] == 2.0

    def test_hardware_signal(self):
        link = HttpDeviceLink("http://localhost:8000")
        with patch("requests.post") as mock_post:
            mock_post.return_value.json.return_value = {
                "outcome": "applied",
                "previous": "SAFE",
                "status": "FALL",
            }
            result = link.hardware_signal(DEVICE_ID, "fall")

            assert mock_post.call_args.args[0].endswith(f"/api/devices/{DEVICE_ID}/signals/fall")
            assert result["status"] == "FALL"
