"""Tests for the lease event bus."""
import asyncio
import pytest

from mcp_addrconf.acquisition.events import LeaseEventBus
from mcp_addrconf.acquisition.schema import LeaseEvent, LeaseEventType


def acquired(device="eth0", request_uuid=None, success=True):
    return LeaseEvent(
        device=device,
        event_type=LeaseEventType.ACQUIRED,
        success=success,
        request_uuid=request_uuid,
    )


class TestSubscriptions:
    """Tests for observer delivery."""

    def test_device_filter(self):
        bus = LeaseEventBus()
        seen = []
        bus.subscribe(seen.append, device="eth0")

        bus.publish(acquired("eth1"))
        bus.publish(acquired("eth0"))

        assert [e.device for e in seen] == ["eth0"]

    def test_all_devices(self):
        bus = LeaseEventBus()
        seen = []
        bus.subscribe(seen.append)
        bus.publish(acquired("eth0"))
        bus.publish(acquired("eth1"))
        assert len(seen) == 2

    def test_cancel(self):
        bus = LeaseEventBus()
        seen = []
        sub = bus.subscribe(seen.append)
        assert sub.active

        sub.cancel()
        sub.cancel()
        bus.publish(acquired())

        assert not sub.active
        assert seen == []

    def test_observer_error_does_not_propagate(self, caplog):
        """A broken observer neither raises nor blocks the others."""
        bus = LeaseEventBus()
        seen = []

        def broken(event):
            raise RuntimeError("observer bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        bus.publish(acquired())

        assert len(seen) == 1
        assert "Lease observer failed" in caplog.text

    def test_unsubscribe_during_publish(self):
        bus = LeaseEventBus()
        seen = []
        holder = {}

        def once(event):
            seen.append(event)
            holder["sub"].cancel()

        holder["sub"] = bus.subscribe(once)
        bus.publish(acquired())
        bus.publish(acquired())
        assert len(seen) == 1


class TestWaitFor:
    """Tests for awaiting events."""

    @pytest.mark.asyncio
    async def test_resolves_on_publish(self):
        bus = LeaseEventBus()
        loop = asyncio.get_running_loop()
        loop.call_soon(bus.publish, acquired())

        event = await bus.wait_for("eth0", timeout=1)
        assert event.device == "eth0"

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        bus = LeaseEventBus()
        assert await bus.wait_for("eth0", timeout=0.05) is None
        assert bus._waiters == []

    @pytest.mark.asyncio
    async def test_filters(self):
        """Non-matching events leave the waiter pending."""
        bus = LeaseEventBus()
        wanted = b"\x02" * 16
        loop = asyncio.get_running_loop()
        loop.call_soon(bus.publish, acquired("eth1", wanted))
        loop.call_soon(bus.publish, LeaseEvent(device="eth0", event_type=LeaseEventType.RELEASED))
        loop.call_soon(bus.publish, acquired("eth0", b"\x01" * 16))
        loop.call_soon(bus.publish, acquired("eth0", wanted))

        event = await bus.wait_for("eth0", LeaseEventType.ACQUIRED, request_uuid=wanted, timeout=1)

        assert event.request_uuid == wanted
        assert event.device == "eth0"

    @pytest.mark.asyncio
    async def test_several_waiters(self):
        bus = LeaseEventBus()
        first = asyncio.ensure_future(bus.wait_for("eth0", timeout=1))
        second = asyncio.ensure_future(bus.wait_for(timeout=1))
        await asyncio.sleep(0)

        bus.publish(acquired())

        assert (await first).device == "eth0"
        assert (await second).device == "eth0"
