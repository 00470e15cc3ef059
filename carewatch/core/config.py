import os
import re
from dataclasses import dataclass

import yaml


@dataclass
class StoreConfig:
    backend: str
    db_path: str
    tenant: str


@dataclass
class EscalationConfig:
    countdown_ticks: int
    tick_sec: float
    conditional_writes: bool = False


@dataclass
class SubscriptionConfig:
    retry_initial_sec: float
    retry_max_sec: float


@dataclass
class NotificationConfig:
    webhook_url: str
    enabled: bool
    timeout_sec: float = 10.0


@dataclass
class SimulatorConfig:
    enabled: bool
    device_id: str
    interval_sec: float


@dataclass
class WebConfig:
    host: str
    port: int


@dataclass
class Config:
    store: StoreConfig
    escalation: EscalationConfig
    subscription: SubscriptionConfig
    notification: NotificationConfig
    simulator: SimulatorConfig
    web: WebConfig


def _substitute_env_vars(value: str) -> str:
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replace(match):
        env_var, default = match.group(1), match.group(2)
        if env_var in os.environ:
            return os.environ[env_var]
        return default if default is not None else match.group(0)

    return re.sub(pattern, replace, value)


def _process_config_values(data: dict) -> dict:
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = _process_config_values(value)
        elif isinstance(value, str):
            result[key] = _substitute_env_vars(value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = "config/settings.yaml") -> Config:
    with open(config_path) as f:
        raw_config = yaml.safe_load(f)

    config_data = _process_config_values(raw_config)

    return Config(
        store=StoreConfig(**config_data["store"]),
        escalation=EscalationConfig(**config_data["escalation"]),
        subscription=SubscriptionConfig(**config_data["subscription"]),
        notification=NotificationConfig(**config_data["notification"]),
        simulator=SimulatorConfig(**config_data["simulator"]),
        web=WebConfig(**config_data["web"]),
    )
