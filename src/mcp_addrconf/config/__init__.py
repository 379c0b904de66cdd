"""Configuration loading and the lease data model."""
from .schema import (
    AddrconfMode,
    AddressFamily,
    UpdateKind,
    Lease,
    ResolverInfo,
    NULL_UUID,
    update_mask,
)
from .inventory import AddrconfInventory, UpdaterScripts

__all__ = [
    "AddrconfMode",
    "AddressFamily",
    "UpdateKind",
    "Lease",
    "ResolverInfo",
    "NULL_UUID",
    "update_mask",
    "AddrconfInventory",
    "UpdaterScripts",
]
