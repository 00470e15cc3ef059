from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class DeviceStatus(str, Enum):
    SAFE = "SAFE"
    FALL = "FALL"
    SOS = "SOS"
    AMBULANCE = "AMBULANCE"


class EventType(str, Enum):
    MANUAL_SOS = "MANUAL_SOS"
    FALL_ESCALATED = "FALL_ESCALATED"
    FALSE_ALARM = "FALSE_ALARM"
    AMBULANCE_REQUESTED = "AMBULANCE_REQUESTED"
    EMERGENCY_RESOLVED = "EMERGENCY_RESOLVED"


class EventStatus(str, Enum):
    """Lifecycle tag carried by the event itself, independent of the device status."""

    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    DISPATCHED = "DISPATCHED"


class Actor(str, Enum):
    ELDERLY = "elderly"
    CAREGIVER = "caregiver"
    DEVICE = "device"
    SYSTEM = "system"

    @property
    def is_person(self) -> bool:
        return self in (Actor.ELDERLY, Actor.CAREGIVER)


def _percent(name: str, value: int) -> int:
    value = int(value)
    if not 0 <= value <= 100:
        raise ValueError(f"{name} must be within 0-100, got {value}")
    return value


@dataclass(frozen=True)
class Vitals:
    heart_rate: int
    spo2: int
    battery: int

    def __post_init__(self):
        if int(self.heart_rate) < 0:
            raise ValueError(f"heartRate must be non-negative, got {self.heart_rate}")
        object.__setattr__(self, "heart_rate", int(self.heart_rate))
        object.__setattr__(self, "spo2", _percent("spo2", self.spo2))
        object.__setattr__(self, "battery", _percent("battery", self.battery))

    @classmethod
    def baseline(cls) -> "Vitals":
        return cls(heart_rate=75, spo2=98, battery=100)

    def merged(self, partial: dict) -> "Vitals":
        return Vitals(
            heart_rate=partial.get("heartRate", self.heart_rate),
            spo2=partial.get("spo2", self.spo2),
            battery=partial.get("battery", self.battery),
        )

    def to_dict(self) -> dict:
        return {"heartRate": self.heart_rate, "spo2": self.spo2, "battery": self.battery}

    @classmethod
    def from_dict(cls, data: dict) -> "Vitals":
        return cls(heart_rate=data["heartRate"], spo2=data["spo2"], battery=data["battery"])


@dataclass(frozen=True)
class Device:
    """One record per physical wearable.

    `status` and `vitals` are written independently, so a snapshot may pair a
    fresh status with stale vitals (or the reverse) until the next push.
    """

    id: str
    status: DeviceStatus = DeviceStatus.SAFE
    vitals: Vitals = field(default_factory=Vitals.baseline)
    last_update: float = 0.0
    paired_wearer_ref: str | None = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("device id must be non-empty")
        object.__setattr__(self, "status", DeviceStatus(self.status))

    def with_fields(self, fields: dict, last_update: float) -> "Device":
        """Apply a partial wire-format write.

        Args:
            fields: any of "status", "vitals" (partial merge), "pairedWearerRef"
            last_update: server-assigned commit time

        Raises:
            ValueError: unknown field, status outside the vocabulary or vitals out of range
        """
        unknown = set(fields) - {"status", "vitals", "pairedWearerRef"}
        if unknown:
            raise ValueError(f"Unknown device fields: {sorted(unknown)}")

        changes: dict[str, Any] = {"last_update": last_update}
        if "status" in fields:
            changes["status"] = DeviceStatus(fields["status"])
        if "vitals" in fields:
            vitals = fields["vitals"]
            changes["vitals"] = vitals if isinstance(vitals, Vitals) else self.vitals.merged(vitals)
        if "pairedWearerRef" in fields:
            changes["paired_wearer_ref"] = fields["pairedWearerRef"]
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "vitals": self.vitals.to_dict(),
            "lastUpdate": self.last_update,
            "pairedWearerRef": self.paired_wearer_ref,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Device":
        return cls(
            id=data["id"],
            status=DeviceStatus(data["status"]),
            vitals=Vitals.from_dict(data["vitals"]),
            last_update=data.get("lastUpdate", 0.0),
            paired_wearer_ref=data.get("pairedWearerRef"),
        )


@dataclass(frozen=True)
class Event:
    """Immutable audit record; corrections are new events, never edits."""

    id: int
    device_id: str
    type: str
    timestamp: float
    status: EventStatus | None = None
    actor_role: Actor | None = None
    details: dict = field(default_factory=dict)

    @property
    def known_type(self) -> EventType | None:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "deviceId": self.device_id,
            "type": self.type,
            "timestamp": self.timestamp,
        }
        if self.status is not None:
            data["status"] = self.status.value
        if self.actor_role is not None:
            data["actorRole"] = self.actor_role.value
        data.update(self.details)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        reserved = {"id", "deviceId", "type", "timestamp", "status", "actorRole"}
        status = data.get("status")
        role = data.get("actorRole")
        return cls(
            id=data["id"],
            device_id=data["deviceId"],
            type=str(data["type"]),
            timestamp=data["timestamp"],
            status=EventStatus(status) if status else None,
            actor_role=Actor(role) if role else None,
            details={k: v for k, v in data.items() if k not in reserved},
        )


@dataclass(frozen=True)
class Caregiver:
    id: str
    device_id: str
    name: str
    phone: str
    priority: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "name": self.name,
            "phone": self.phone,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Caregiver":
        return cls(
            id=data["id"],
            device_id=data["deviceId"],
            name=data["name"],
            phone=data["phone"],
            priority=int(data["priority"]),
        )
