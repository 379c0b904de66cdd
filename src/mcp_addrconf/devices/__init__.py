"""Network devices and the lease store."""
from .base import NetworkDevice
from .store import DeviceStore

__all__ = [
    "NetworkDevice",
    "DeviceStore",
]
