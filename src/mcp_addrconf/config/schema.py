"""Lease data model shared by the acquisition layer and the updaters."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

# All-zero uuid means "no uuid given"
NULL_UUID = bytes(16)


class AddrconfMode(str, Enum):
    """Protocol that produced a lease."""
    STATIC = "static"
    DHCP = "dhcp"
    IBFT = "ibft"   # firmware-provided boot configuration
    AUTOCONF = "auto"


class AddressFamily(str, Enum):
    """Address family of a lease."""
    IPV4 = "ipv4"
    IPV6 = "ipv6"


class UpdateKind(str, Enum):
    """Host-wide setting that a lease may drive."""
    HOSTNAME = "hostname"
    RESOLVER = "resolver"
    NTP = "ntp"
    NIS = "nis"

    @property
    def bit(self) -> int:
        """Bit of this kind in a lease's update mask."""
        return 1 << list(UpdateKind).index(self)


def update_mask(kinds: Iterable[UpdateKind]) -> int:
    """Fold update kinds into a bitmask."""
    mask = 0
    for kind in kinds:
        mask |= UpdateKind(kind).bit
    return mask


DEFAULT_UPDATE_MASK = update_mask([UpdateKind.HOSTNAME, UpdateKind.RESOLVER])


@dataclass
class ResolverInfo:
    """DNS resolver settings carried by a lease."""
    default_domain: Optional[str] = None
    dns_servers: list[str] = field(default_factory=list)
    dns_search: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.default_domain or self.dns_servers or self.dns_search)


@dataclass
class Lease:
    """Snapshot of configuration obtained from one source for one device."""
    mode: AddrconfMode
    family: AddressFamily = AddressFamily.IPV4
    # Assigned by the acquisition layer; 0 until stamped
    seqno: int = 0
    uuid: bytes = NULL_UUID
    update: int = DEFAULT_UPDATE_MASK
    # Payload
    hostname: Optional[str] = None
    resolver: Optional[ResolverInfo] = None
    ntp_servers: list[str] = field(default_factory=list)
    nis_domain: Optional[str] = None
    lease_time: int = 0
    acquired_at: Optional[datetime] = None

    def should_update(self, kind: UpdateKind) -> bool:
        """Check the update-permission bit for a kind."""
        return bool(self.update & kind.bit)

    def provides(self, kind: UpdateKind) -> bool:
        """Check whether the payload holds a value for a kind."""
        if kind == UpdateKind.HOSTNAME:
            return bool(self.hostname)
        if kind == UpdateKind.RESOLVER:
            return self.resolver is not None and not self.resolver.is_empty
        if kind == UpdateKind.NTP:
            return bool(self.ntp_servers)
        if kind == UpdateKind.NIS:
            return bool(self.nis_domain)
        return False

    def can_update(self, kind: UpdateKind) -> bool:
        return self.should_update(kind) and self.provides(kind)

    @property
    def update_kinds(self) -> list[UpdateKind]:
        return [kind for kind in UpdateKind if self.should_update(kind)]

    def to_dict(self) -> dict:
        resolver = None
        if self.resolver is not None:
            resolver = {
                "default_domain": self.resolver.default_domain,
                "dns_servers": list(self.resolver.dns_servers),
                "dns_search": list(self.resolver.dns_search),
            }
        return {
            "mode": self.mode.value,
            "family": self.family.value,
            "seqno": self.seqno,
            "uuid": self.uuid.hex(),
            "update": [kind.value for kind in self.update_kinds],
            "hostname": self.hostname,
            "resolver": resolver,
            "ntp_servers": list(self.ntp_servers),
            "nis_domain": self.nis_domain,
            "lease_time": self.lease_time,
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
        }
