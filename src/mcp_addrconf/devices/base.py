"""Network device holding the leases obtained for it."""
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config.schema import AddrconfMode, AddressFamily, Lease, NULL_UUID

logger = logging.getLogger(__name__)


@dataclass
class NetworkDevice:
    """A network interface and its current lease set."""
    name: str
    ifindex: int = 0
    leases: list[Lease] = field(default_factory=list)

    def find_lease(self, mode: AddrconfMode, family: AddressFamily) -> Optional[Lease]:
        """Get the lease of a given protocol and family, if any."""
        for lease in self.leases:
            if lease.mode == mode and lease.family == family:
                return lease
        return None

    def lease_by_uuid(self, uuid: bytes) -> Optional[Lease]:
        if uuid == NULL_UUID:
            return None
        for lease in self.leases:
            if lease.uuid == uuid:
                return lease
        return None

    def add_lease(self, lease: Lease) -> Optional[Lease]:
        """Add a lease, replacing one of the same protocol and family.

        Returns:
            The replaced lease, or None
        """
        old = self.find_lease(lease.mode, lease.family)
        if old is not None:
            self.leases.remove(old)
            logger.debug(f"{self.name}: replacing {old.mode.value}/{old.family.value} lease seqno={old.seqno}")
        self.leases.append(lease)
        return old

    def remove_lease(self, lease: Lease) -> bool:
        """Remove a lease. Returns False if it was not present."""
        for i, candidate in enumerate(self.leases):
            if candidate is lease:
                del self.leases[i]
                return True
        return False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "ifindex": self.ifindex,
            "leases": [lease.to_dict() for lease in self.leases],
        }
