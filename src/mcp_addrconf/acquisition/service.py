"""Lease acquisition service.

Drives the per-device Idle -> Acquiring -> Bound -> Releasing -> Idle
cycle. ``acquire`` and ``release`` validate, start the negotiation and
return right away; the negotiator reports back through the completion
callbacks, and the outcome is published on the event bus.

Usage:
    service = LeaseAcquisitionService(store, StaticNegotiator())
    ticket = service.acquire("eth0", {"hostname": "node1"})
    event = await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..config.schema import AddrconfMode, Lease, NULL_UUID
from ..devices.store import DeviceStore
from ..exceptions import OperationFailedError
from .events import LeaseEventBus
from .negotiator import Negotiator
from .schema import (
    AcquireRequest,
    AcquisitionState,
    AcquisitionTicket,
    LeaseEvent,
    LeaseEventType,
)

logger = logging.getLogger(__name__)


@dataclass
class DeviceSession:
    """Acquisition state of one device."""
    device: str
    state: AcquisitionState = AcquisitionState.IDLE
    generation: int = 0
    ticket: Optional[AcquisitionTicket] = None
    lease: Optional[Lease] = None

    def is_current(self, ticket: AcquisitionTicket) -> bool:
        return self.ticket is not None and ticket.generation == self.generation

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "state": self.state.value,
            "generation": self.generation,
            "lease": self.lease.to_dict() if self.lease else None,
        }


class LeaseAcquisitionService:
    """Acquire and release leases on behalf of remote callers."""

    def __init__(
        self,
        store: DeviceStore,
        negotiator: Negotiator,
        bus: Optional[LeaseEventBus] = None,
    ):
        self.store = store
        self.negotiator = negotiator
        self.bus = bus or LeaseEventBus()
        self._sessions: dict[str, DeviceSession] = {}

    @property
    def mode(self) -> AddrconfMode:
        return self.negotiator.mode

    def session(self, device: str) -> DeviceSession:
        """Get the session of a device, creating it on first use.

        Raises:
            DeviceNotFoundError: If the device is not in the store
        """
        self.store.get_device(device)
        if device not in self._sessions:
            self._sessions[device] = DeviceSession(device=device)
        return self._sessions[device]

    def acquire(self, device: str, options: Any) -> AcquisitionTicket:
        """Start acquiring a lease for a device.

        A request already in flight is replaced, never joined.

        Raises:
            InvalidArgumentError: Malformed options; nothing is started
            DeviceNotFoundError: Unknown device
            NegotiationError: The negotiator could not start
        """
        request = AcquireRequest.from_options(options)
        session = self.session(device)

        if session.state == AcquisitionState.RELEASING:
            # the caller was already told the lease is gone
            self.negotiator.cancel(session.ticket)
            lease = self._drop_lease(session)
            logger.info(f"{device}: release of seqno={lease.seqno if lease else 0} finished early")
            self.bus.publish(LeaseEvent(
                device=device,
                event_type=LeaseEventType.RELEASED,
                lease=lease,
                request_uuid=lease.uuid if lease else None,
            ))

        previous = (session.state, session.generation, session.ticket)
        if session.state == AcquisitionState.ACQUIRING and session.ticket is not None:
            logger.info(f"{device}: replacing in-flight request generation {session.generation}")
            self.negotiator.cancel(session.ticket)

        session.generation += 1
        ticket = AcquisitionTicket(device=device, generation=session.generation, request=request)
        session.ticket = ticket
        session.state = AcquisitionState.ACQUIRING

        try:
            self.negotiator.start(ticket, self)
        except Exception:
            session.state, session.generation, session.ticket = previous
            raise

        logger.info(
            f"{device}: acquiring {self.mode.value}/{request.family.value} lease "
            f"(request {request.uuid.hex()})"
        )
        return ticket

    def release(self, device: str, lease_uuid: Optional[bytes] = None) -> None:
        """Start releasing the active lease of a device.

        A non-zero ``lease_uuid`` must name the active lease; an all-zero
        or missing uuid releases whatever is active.

        Raises:
            OperationFailedError: No matching lease or negotiation to release
            DeviceNotFoundError: Unknown device
        """
        session = self.session(device)
        specific = lease_uuid is not None and lease_uuid != NULL_UUID

        if specific and (session.lease is None or session.lease.uuid != lease_uuid):
            raise OperationFailedError(f"no active lease with uuid {lease_uuid.hex()}")

        if session.lease is None:
            if session.state == AcquisitionState.ACQUIRING and session.ticket is not None:
                self._cancel_request(session)
                return
            raise OperationFailedError("no active lease or negotiation to release")

        if session.state == AcquisitionState.RELEASING:
            raise OperationFailedError("lease release already in progress")

        if session.state == AcquisitionState.ACQUIRING and session.ticket is not None:
            self.negotiator.cancel(session.ticket)

        previous = (session.state, session.generation, session.ticket)
        session.generation += 1
        ticket = AcquisitionTicket(device=device, generation=session.generation)
        session.ticket = ticket
        session.state = AcquisitionState.RELEASING

        try:
            self.negotiator.release(ticket, session.lease, self)
        except Exception:
            session.state, session.generation, session.ticket = previous
            raise

        logger.info(f"{device}: releasing lease seqno={session.lease.seqno}")

    def complete_acquire(self, ticket: AcquisitionTicket, lease: Lease) -> None:
        """Negotiator callback: a lease was obtained."""
        session = self._current_session(ticket, "acquire")
        if session is None:
            return

        request = ticket.request
        device = self.store.get_device(ticket.device)

        lease.seqno = self.store.next_seqno()
        lease.mode = self.mode
        if request is not None:
            lease.uuid = request.uuid
            lease.family = request.family
            lease.update = request.update_mask
            if request.lease_time is not None:
                lease.lease_time = request.lease_time
        lease.acquired_at = datetime.now()

        # a re-acquire supersedes the lease it was issued over
        if session.lease is not None and session.lease is not lease:
            device.remove_lease(session.lease)
        device.add_lease(lease)
        session.lease = lease
        session.ticket = None
        session.state = AcquisitionState.BOUND

        logger.info(
            f"{ticket.device}: acquired {lease.mode.value}/{lease.family.value} "
            f"lease seqno={lease.seqno}"
        )
        self.bus.publish(LeaseEvent(
            device=ticket.device,
            event_type=LeaseEventType.ACQUIRED,
            lease=lease,
            request_uuid=lease.uuid,
        ))

    def fail_acquire(self, ticket: AcquisitionTicket, reason: str) -> None:
        """Negotiator callback: the acquisition failed."""
        session = self._current_session(ticket, "acquire")
        if session is None:
            return

        session.ticket = None
        session.state = AcquisitionState.BOUND if session.lease else AcquisitionState.IDLE

        logger.warning(f"{ticket.device}: lease acquisition failed: {reason}")
        self.bus.publish(LeaseEvent(
            device=ticket.device,
            event_type=LeaseEventType.ACQUIRED,
            success=False,
            reason=reason,
            request_uuid=ticket.request.uuid if ticket.request else None,
        ))

    def complete_release(self, ticket: AcquisitionTicket) -> None:
        """Negotiator callback: the lease was torn down."""
        session = self._current_session(ticket, "release")
        if session is None:
            return

        lease = self._drop_lease(session)
        logger.info(f"{ticket.device}: released lease seqno={lease.seqno if lease else 0}")
        self.bus.publish(LeaseEvent(
            device=ticket.device,
            event_type=LeaseEventType.RELEASED,
            lease=lease,
            request_uuid=lease.uuid if lease else None,
        ))

    def expire(self, device: str, lease_uuid: Optional[bytes] = None) -> bool:
        """Drop a lease that ran out.

        Returns:
            False if no matching lease was active
        """
        session = self.session(device)
        if session.lease is None:
            return False
        if lease_uuid is not None and lease_uuid != NULL_UUID and session.lease.uuid != lease_uuid:
            return False

        if session.state == AcquisitionState.ACQUIRING and session.ticket is not None:
            # a re-acquire in flight outlives the lease it was issued over
            lease = session.lease
            self.store.get_device(device).remove_lease(lease)
            session.lease = None
        else:
            if session.ticket is not None:
                self.negotiator.cancel(session.ticket)
            session.generation += 1
            lease = self._drop_lease(session)
        logger.info(f"{device}: lease seqno={lease.seqno} expired")
        self.bus.publish(LeaseEvent(
            device=device,
            event_type=LeaseEventType.RELEASED,
            lease=lease,
            reason="expired",
            request_uuid=lease.uuid,
        ))
        return True

    def status(self) -> list[dict]:
        return [session.to_dict() for session in self._sessions.values()]

    def _current_session(self, ticket: AcquisitionTicket, what: str) -> Optional[DeviceSession]:
        session = self._sessions.get(ticket.device)
        if session is None or not session.is_current(ticket):
            logger.debug(
                f"{ticket.device}: ignoring stray {what} completion "
                f"(generation {ticket.generation})"
            )
            return None
        return session

    def _cancel_request(self, session: DeviceSession) -> None:
        ticket = session.ticket
        self.negotiator.cancel(ticket)
        session.generation += 1
        session.ticket = None
        session.state = AcquisitionState.IDLE

        logger.info(f"{session.device}: cancelled pending acquisition")
        self.bus.publish(LeaseEvent(
            device=session.device,
            event_type=LeaseEventType.RELEASED,
            success=False,
            reason="cancelled",
            request_uuid=ticket.request.uuid if ticket.request else None,
        ))

    def _drop_lease(self, session: DeviceSession) -> Optional[Lease]:
        lease = session.lease
        if lease is not None:
            self.store.get_device(session.device).remove_lease(lease)
        session.lease = None
        session.ticket = None
        session.state = AcquisitionState.IDLE
        return lease
