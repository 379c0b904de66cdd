"""In-process lease store: the devices and the leases they own."""
import logging
from typing import Iterator

from ..config.inventory import AddrconfInventory
from ..config.schema import Lease
from ..exceptions import DeviceNotFoundError
from .base import NetworkDevice

logger = logging.getLogger(__name__)


class DeviceStore:
    """Devices by name plus the lease sequence number counter.

    Sequence numbers come from one counter for the whole process, so
    they increase per device and never collide across devices.
    """

    def __init__(self):
        self._devices: dict[str, NetworkDevice] = {}
        self._seqno = 0

    @classmethod
    def from_inventory(cls, inventory: AddrconfInventory) -> "DeviceStore":
        store = cls()
        for name in inventory.get_device_names():
            config = inventory.get_device_config(name)
            store.add_device(name, ifindex=int(config.get("ifindex", 0)))
        return store

    def add_device(self, name: str, ifindex: int = 0) -> NetworkDevice:
        """Register a device, returning the existing one if already known."""
        if name in self._devices:
            return self._devices[name]
        device = NetworkDevice(name=name, ifindex=ifindex)
        self._devices[name] = device
        logger.debug(f"Registered device {name} (ifindex={ifindex})")
        return device

    def get_device(self, name: str) -> NetworkDevice:
        if name not in self._devices:
            raise DeviceNotFoundError(name)
        return self._devices[name]

    def get_device_names(self) -> list[str]:
        return list(self._devices.keys())

    def __iter__(self) -> Iterator[NetworkDevice]:
        return iter(list(self._devices.values()))

    def __len__(self) -> int:
        return len(self._devices)

    def next_seqno(self) -> int:
        """Allocate the next lease sequence number (never 0)."""
        self._seqno += 1
        return self._seqno

    def iter_leases(self) -> Iterator[tuple[NetworkDevice, Lease]]:
        """Iterate over every (device, lease) pair."""
        for device in self:
            for lease in list(device.leases):
                yield device, lease
