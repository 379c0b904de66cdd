"""Lease event notifications.

Acquisition completes out of band. Observers subscribe to a device (or
to all devices) and get a LeaseEvent once the negotiation finishes;
``wait_for`` turns the next matching event into an awaitable.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .schema import LeaseEvent, LeaseEventType

logger = logging.getLogger(__name__)

LeaseObserver = Callable[[LeaseEvent], None]


@dataclass(eq=False)
class Subscription:
    """A registered observer. ``cancel()`` stops delivery."""
    bus: "LeaseEventBus"
    callback: LeaseObserver
    device: Optional[str] = None

    @property
    def active(self) -> bool:
        return self in self.bus._subscriptions

    def matches(self, event: LeaseEvent) -> bool:
        return self.device is None or self.device == event.device

    def cancel(self) -> None:
        self.bus.unsubscribe(self)


@dataclass(eq=False)
class _Waiter:
    device: Optional[str]
    event_type: Optional[LeaseEventType]
    request_uuid: Optional[bytes]
    future: asyncio.Future

    def matches(self, event: LeaseEvent) -> bool:
        if self.device is not None and self.device != event.device:
            return False
        if self.event_type is not None and self.event_type != event.event_type:
            return False
        if self.request_uuid is not None and self.request_uuid != event.request_uuid:
            return False
        return True


class LeaseEventBus:
    """Fan out lease events to observers and waiters."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._waiters: list[_Waiter] = []

    def subscribe(self, callback: LeaseObserver, device: Optional[str] = None) -> Subscription:
        """Register an observer for one device, or for all when device is None."""
        sub = Subscription(bus=self, callback=callback, device=device)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(sub)

    def publish(self, event: LeaseEvent) -> None:
        """Deliver an event. Observer errors are logged, not raised."""
        logger.debug(
            f"{event.device}: {event.event_type.value} "
            f"({'ok' if event.success else 'failed'}{': ' + event.reason if event.reason else ''})"
        )

        for sub in list(self._subscriptions):
            if not sub.matches(event):
                continue
            try:
                sub.callback(event)
            except Exception:
                logger.exception(f"Lease observer failed on {event.event_type.value} for {event.device}")

        remaining = []
        for waiter in self._waiters:
            if not waiter.future.done() and waiter.matches(event):
                waiter.future.set_result(event)
            elif not waiter.future.done():
                remaining.append(waiter)
        self._waiters = remaining

    async def wait_for(
        self,
        device: Optional[str] = None,
        event_type: Optional[LeaseEventType] = None,
        request_uuid: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> Optional[LeaseEvent]:
        """Wait for the next matching event.

        Returns:
            The event, or None on timeout
        """
        fut = asyncio.get_running_loop().create_future()
        waiter = _Waiter(device=device, event_type=event_type, request_uuid=request_uuid, future=fut)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            with contextlib.suppress(ValueError):
                self._waiters.remove(waiter)
