"""Lease acquisition: requests, negotiation, completion events."""

from .schema import (
    AcquireRequest,
    AcquisitionState,
    AcquisitionTicket,
    LeaseEvent,
    LeaseEventType,
    parse_uuid,
)
from .events import LeaseEventBus, LeaseObserver, Subscription
from .negotiator import Negotiator, StaticNegotiator
from .service import DeviceSession, LeaseAcquisitionService
from .api import AddrconfDeviceObject, ERROR_FAILED, ERROR_INVALID_ARGS

__all__ = [
    "AcquireRequest",
    "AcquisitionState",
    "AcquisitionTicket",
    "LeaseEvent",
    "LeaseEventType",
    "parse_uuid",
    "LeaseEventBus",
    "LeaseObserver",
    "Subscription",
    "Negotiator",
    "StaticNegotiator",
    "DeviceSession",
    "LeaseAcquisitionService",
    "AddrconfDeviceObject",
    "ERROR_FAILED",
    "ERROR_INVALID_ARGS",
]
