from .simulator import DeviceLink, VitalsSimulator

__all__ = ["DeviceLink", "VitalsSimulator"]
