from carewatch.core.config import Config
from carewatch.core.models import Actor
from carewatch.device.simulator import VitalsSimulator
from carewatch.engine.emergency import EmergencyEngine
from carewatch.engine.session import ClientSession
from carewatch.events.event_logger import EventLogger
from carewatch.events.fanout import NotificationFanout
from carewatch.events.notifier import WebhookNotifier
from carewatch.store import BaseStore, create_store


def build_service(config: Config) -> tuple[BaseStore, EmergencyEngine, VitalsSimulator | None]:
    """Wire store, event log, fan-out and engine (plus the simulator when enabled)"""
    store = create_store(config.store)

    notifier = WebhookNotifier(
        url=config.notification.webhook_url,
        enabled=config.notification.enabled,
        timeout=config.notification.timeout_sec,
    )
    fanout = NotificationFanout(store, dispatchers=[notifier])
    event_logger = EventLogger(store, observers=[fanout])
    engine = EmergencyEngine(
        store,
        event_logger=event_logger,
        conditional_writes=config.escalation.conditional_writes,
    )

    simulator = None
    if config.simulator.enabled:
        store.create_device(config.simulator.device_id)
        simulator = VitalsSimulator(
            engine,
            config.simulator.device_id,
            interval_sec=config.simulator.interval_sec,
        )

    return store, engine, simulator


def build_session(
    config: Config,
    store: BaseStore,
    engine: EmergencyEngine,
    device_id: str,
    role: Actor,
    **kwargs,
) -> ClientSession:
    """ClientSession with countdown and reconnect settings taken from config"""
    return ClientSession(
        store,
        engine,
        device_id,
        role,
        countdown_ticks=config.escalation.countdown_ticks,
        tick_sec=config.escalation.tick_sec,
        retry_initial_sec=config.subscription.retry_initial_sec,
        retry_max_sec=config.subscription.retry_max_sec,
        **kwargs,
    )
