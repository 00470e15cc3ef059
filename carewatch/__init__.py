"""CareWatch: emergency state machine and real-time sync for shared wearables."""

__version__ = "0.1.0"
