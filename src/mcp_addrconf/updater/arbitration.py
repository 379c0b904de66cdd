"""Source registration and selection for the updaters."""
from typing import Optional

from ..config.schema import AddrconfMode, AddressFamily, Lease
from .schema import Source, Updater

# Per-protocol weight; authoritative sources outrank dynamic ones
ADDRCONF_WEIGHTS = {
    AddrconfMode.DHCP: 5,
    AddrconfMode.IBFT: 10,
}


def source_weight(lease: Lease) -> int:
    """Priority of a lease as a settings source.

    IPv4 wins over IPv6 at equal protocol weight.
    """
    weight = 10 * ADDRCONF_WEIGHTS.get(lease.mode, 0)
    if lease.family == AddressFamily.IPV4:
        weight += 1
    return weight


def add_source(updater: Updater, lease: Lease) -> Source:
    """Record that a lease can drive this updater.

    A source with the same seqno is refreshed rather than duplicated.
    """
    for src in updater.sources:
        if src.seqno == lease.seqno:
            src.lease = lease
            return src

    src = Source(seqno=lease.seqno, weight=source_weight(lease), lease=lease)
    updater.sources.append(src)
    return src


def select_source(updater: Updater) -> Optional[Source]:
    """Pick the best source, ties going to the earliest registered one."""
    best = None
    for src in updater.sources:
        if src.lease is None:
            continue
        if best is None or src.weight > best.weight:
            best = src
    return best


def clear_marks(updater: Updater) -> None:
    """Mark every source unseen."""
    for src in updater.sources:
        src.lease = None


def prune_sources(updater: Updater) -> int:
    """Drop sources whose lease went away. Returns how many were dropped."""
    before = len(updater.sources)
    updater.sources = [src for src in updater.sources if src.lease is not None]
    return before - len(updater.sources)
