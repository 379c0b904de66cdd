"""Negotiators: the protocol exchange that actually obtains a lease."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..config.schema import AddrconfMode, Lease, ResolverInfo
from ..exceptions import NegotiationError
from .schema import AcquisitionTicket

if TYPE_CHECKING:
    from .service import LeaseAcquisitionService

logger = logging.getLogger(__name__)


class Negotiator(ABC):
    """Abstract base class for lease negotiation protocols.

    ``start`` and ``release`` only initiate work and must return without
    waiting for completion. The outcome is reported later through the
    service's ``complete_acquire``/``fail_acquire``/``complete_release``
    callbacks, passing back the ticket it was started with.
    """

    mode: AddrconfMode

    @abstractmethod
    def start(self, ticket: AcquisitionTicket, service: "LeaseAcquisitionService") -> None:
        """Start negotiating a lease for ``ticket.device``.

        Raises:
            NegotiationError: If the exchange cannot be started
        """
        pass

    @abstractmethod
    def release(self, ticket: AcquisitionTicket, lease: Lease, service: "LeaseAcquisitionService") -> None:
        """Start tearing down a lease."""
        pass

    def cancel(self, ticket: AcquisitionTicket) -> None:
        """Lose interest in an in-flight request.

        The exchange is not aborted; its completion arrives as a stray
        event and the service ignores it.
        """
        logger.debug(f"{ticket.device}: dropping interest in request generation {ticket.generation}")


class StaticNegotiator(Negotiator):
    """Static assignment: the lease payload comes from the request itself."""

    mode = AddrconfMode.STATIC

    def start(self, ticket: AcquisitionTicket, service: "LeaseAcquisitionService") -> None:
        request = ticket.request
        if request is None:
            raise NegotiationError("no request to negotiate")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise NegotiationError("no event loop running")

        resolver = None
        if request.dns_servers or request.dns_search or request.domain:
            resolver = ResolverInfo(
                default_domain=request.domain,
                dns_servers=list(request.dns_servers),
                dns_search=list(request.dns_search),
            )

        lease = Lease(
            mode=self.mode,
            family=request.family,
            hostname=request.hostname,
            resolver=resolver,
            lease_time=request.lease_time or 0,
        )
        loop.call_soon(service.complete_acquire, ticket, lease)

    def release(self, ticket: AcquisitionTicket, lease: Lease, service: "LeaseAcquisitionService") -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise NegotiationError("no event loop running")
        loop.call_soon(service.complete_release, ticket)
