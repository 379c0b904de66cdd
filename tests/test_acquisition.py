"""Tests for the lease acquisition service."""
import pytest

from mcp_addrconf.acquisition import (
    AcquisitionState,
    LeaseAcquisitionService,
    LeaseEventType,
    Negotiator,
    StaticNegotiator,
)
from mcp_addrconf.config.inventory import UpdaterScripts
from mcp_addrconf.config.schema import (
    AddrconfMode,
    AddressFamily,
    Lease,
    NULL_UUID,
    UpdateKind,
    update_mask,
)
from mcp_addrconf.devices.store import DeviceStore
from mcp_addrconf.exceptions import (
    DeviceNotFoundError,
    InvalidArgumentError,
    NegotiationError,
    OperationFailedError,
)
from mcp_addrconf.updater import ReconciliationEngine, ScriptResult, UpdaterRegistry


class ManualNegotiator(Negotiator):
    """Negotiator the test completes by hand."""

    mode = AddrconfMode.DHCP

    def __init__(self, fail_start=None):
        self.fail_start = fail_start
        self.started = []
        self.released = []
        self.cancelled = []

    def start(self, ticket, service):
        if self.fail_start:
            raise NegotiationError(self.fail_start)
        self.started.append(ticket)

    def release(self, ticket, lease, service):
        self.released.append(ticket)

    def cancel(self, ticket):
        self.cancelled.append(ticket)


class OkExecutor:
    def __init__(self):
        self.calls = []

    async def run(self, kind, action, argv, artifact=None, timeout=None):
        self.calls.append((kind, action, artifact))
        return ScriptResult(success=True, command=list(argv), returncode=0)


def make_service(negotiator=None):
    store = DeviceStore()
    store.add_device("eth0")
    store.add_device("eth1")
    service = LeaseAcquisitionService(store, negotiator or ManualNegotiator())
    events = []
    service.bus.subscribe(events.append)
    return service, store, events


def bind(service, device="eth0", **options):
    ticket = service.acquire(device, options or {"hostname": "node1"})
    service.complete_acquire(ticket, Lease(mode=AddrconfMode.DHCP, hostname=options.get("hostname", "node1")))
    return ticket, service.session(device).lease


class TestAcquire:
    """Tests for starting and completing acquisitions."""

    def test_returns_before_completion(self):
        service, store, events = make_service()
        ticket = service.acquire("eth0", {"hostname": "node1"})

        session = service.session("eth0")
        assert session.state == AcquisitionState.ACQUIRING
        assert session.lease is None
        assert ticket.generation == 1
        assert service.negotiator.started == [ticket]
        assert store.get_device("eth0").leases == []
        assert events == []

    def test_completion_stamps_and_installs_lease(self):
        service, store, events = make_service()
        ticket = service.acquire("eth0", {
            "hostname": "node1",
            "family": "ipv6",
            "update": ["hostname"],
            "lease_time": 3600,
        })
        lease = Lease(mode=AddrconfMode.STATIC, hostname="node1")
        service.complete_acquire(ticket, lease)

        assert service.session("eth0").state == AcquisitionState.BOUND
        assert store.get_device("eth0").leases == [lease]
        assert lease.seqno == 1
        assert lease.uuid == ticket.request.uuid
        assert lease.mode == AddrconfMode.DHCP
        assert lease.family == AddressFamily.IPV6
        assert lease.update == update_mask([UpdateKind.HOSTNAME])
        assert lease.lease_time == 3600
        assert lease.acquired_at is not None

        assert len(events) == 1
        assert events[0].event_type == LeaseEventType.ACQUIRED
        assert events[0].success
        assert events[0].lease is lease
        assert events[0].request_uuid == ticket.request.uuid

    def test_seqnos_increase_across_devices(self):
        service, store, events = make_service()
        _, first = bind(service, "eth0")
        _, second = bind(service, "eth1")
        _, third = bind(service, "eth0", hostname="again")
        assert first.seqno < second.seqno < third.seqno
        assert store.get_device("eth0").leases == [third]

    def test_empty_options_rejected_before_negotiation(self):
        """Empty options fail with InvalidArgument and start nothing."""
        service, store, events = make_service()
        with pytest.raises(InvalidArgumentError):
            service.acquire("eth0", {})
        assert service.negotiator.started == []
        assert service.session("eth0").state == AcquisitionState.IDLE
        assert service.session("eth0").generation == 0

    def test_unknown_device(self):
        service, store, events = make_service()
        with pytest.raises(DeviceNotFoundError):
            service.acquire("wlan9", {"hostname": "node1"})

    def test_start_failure_restores_state(self):
        service, store, events = make_service(ManualNegotiator(fail_start="link down"))
        with pytest.raises(NegotiationError, match="link down"):
            service.acquire("eth0", {"hostname": "node1"})
        session = service.session("eth0")
        assert session.state == AcquisitionState.IDLE
        assert session.generation == 0
        assert session.ticket is None

    def test_second_acquire_replaces_first(self):
        """Only the latest request can complete."""
        service, store, events = make_service()
        first = service.acquire("eth0", {"hostname": "first"})
        second = service.acquire("eth0", {"hostname": "second"})

        assert service.negotiator.cancelled == [first]

        service.complete_acquire(first, Lease(mode=AddrconfMode.DHCP, hostname="first"))
        assert store.get_device("eth0").leases == []
        assert events == []

        service.complete_acquire(second, Lease(mode=AddrconfMode.DHCP, hostname="second"))
        assert [lease.hostname for lease in store.get_device("eth0").leases] == ["second"]
        assert len(events) == 1

    def test_reacquire_while_bound(self):
        service, store, events = make_service()
        _, old = bind(service, "eth0", hostname="old")
        ticket = service.acquire("eth0", {"hostname": "new"})

        assert service.session("eth0").state == AcquisitionState.ACQUIRING
        assert store.get_device("eth0").leases == [old]

        service.complete_acquire(ticket, Lease(mode=AddrconfMode.DHCP, hostname="new"))
        assert [lease.hostname for lease in store.get_device("eth0").leases] == ["new"]

    def test_failure_event(self):
        service, store, events = make_service()
        ticket = service.acquire("eth0", {"hostname": "node1"})
        service.fail_acquire(ticket, "no offer")

        assert service.session("eth0").state == AcquisitionState.IDLE
        assert len(events) == 1
        assert not events[0].success
        assert events[0].reason == "no offer"
        assert not events[0].changes_leases

    def test_failure_keeps_existing_lease(self):
        service, store, events = make_service()
        bind(service)
        ticket = service.acquire("eth0", {"hostname": "other"})
        service.fail_acquire(ticket, "no offer")
        assert service.session("eth0").state == AcquisitionState.BOUND

    def test_stray_failure_ignored(self):
        service, store, events = make_service()
        first = service.acquire("eth0", {"hostname": "first"})
        service.acquire("eth0", {"hostname": "second"})
        service.fail_acquire(first, "late")
        assert service.session("eth0").state == AcquisitionState.ACQUIRING
        assert events == []


class TestRelease:
    """Tests for releasing leases."""

    def test_nothing_to_release(self):
        service, store, events = make_service()
        with pytest.raises(OperationFailedError):
            service.release("eth0")

    def test_release_bound_lease(self):
        service, store, events = make_service()
        _, lease = bind(service)
        events.clear()

        service.release("eth0")
        session = service.session("eth0")
        assert session.state == AcquisitionState.RELEASING
        assert store.get_device("eth0").leases == [lease]

        service.complete_release(service.negotiator.released[0])
        assert session.state == AcquisitionState.IDLE
        assert store.get_device("eth0").leases == []
        assert len(events) == 1
        assert events[0].event_type == LeaseEventType.RELEASED
        assert events[0].lease is lease

    def test_release_matching_uuid(self):
        service, store, events = make_service()
        _, lease = bind(service)
        service.release("eth0", lease.uuid)
        assert service.session("eth0").state == AcquisitionState.RELEASING

    def test_release_null_uuid_means_any(self):
        service, store, events = make_service()
        bind(service)
        service.release("eth0", NULL_UUID)
        assert service.session("eth0").state == AcquisitionState.RELEASING

    def test_release_mismatched_uuid(self):
        """A uuid naming another lease releases nothing."""
        service, store, events = make_service()
        _, lease = bind(service)
        with pytest.raises(OperationFailedError, match="no active lease with uuid"):
            service.release("eth0", b"\x01" * 16)
        assert service.session("eth0").state == AcquisitionState.BOUND
        assert service.negotiator.released == []
        assert store.get_device("eth0").leases == [lease]

    def test_release_twice(self):
        service, store, events = make_service()
        bind(service)
        service.release("eth0")
        with pytest.raises(OperationFailedError, match="already in progress"):
            service.release("eth0")

    def test_release_cancels_pending_acquire(self):
        """Dropping an in-flight request cancels it; its completion is ignored."""
        service, store, events = make_service()
        ticket = service.acquire("eth0", {"hostname": "node1"})

        service.release("eth0")

        assert service.session("eth0").state == AcquisitionState.IDLE
        assert service.negotiator.cancelled == [ticket]
        assert events[-1].event_type == LeaseEventType.RELEASED
        assert events[-1].reason == "cancelled"
        assert not events[-1].success

        service.complete_acquire(ticket, Lease(mode=AddrconfMode.DHCP, hostname="node1"))
        assert store.get_device("eth0").leases == []
        assert service.session("eth0").state == AcquisitionState.IDLE

    def test_acquire_during_release_finishes_drop(self):
        """A failed follow-up acquisition does not bring the dropped lease back."""
        service, store, events = make_service()
        _, old = bind(service, hostname="a")
        service.release("eth0")
        release_ticket = service.negotiator.released[0]
        events.clear()

        ticket = service.acquire("eth0", {"hostname": "b"})
        assert store.get_device("eth0").leases == []
        assert service.negotiator.cancelled == [release_ticket]
        assert events[0].event_type == LeaseEventType.RELEASED
        assert events[0].lease is old

        service.complete_release(release_ticket)
        service.fail_acquire(ticket, "no offer")

        assert service.session("eth0").state == AcquisitionState.IDLE
        assert service.session("eth0").lease is None
        assert store.get_device("eth0").leases == []
        assert [e.event_type for e in events] == [LeaseEventType.RELEASED, LeaseEventType.ACQUIRED]
        assert not events[-1].success


class TestExpire:
    """Tests for lease expiry."""

    def test_expire(self):
        service, store, events = make_service()
        _, lease = bind(service)
        events.clear()

        assert service.expire("eth0")
        assert store.get_device("eth0").leases == []
        assert events[0].reason == "expired"
        assert events[0].lease is lease
        assert events[0].changes_leases

    def test_expire_other_uuid(self):
        service, store, events = make_service()
        bind(service)
        assert not service.expire("eth0", b"\x07" * 16)
        assert service.session("eth0").state == AcquisitionState.BOUND

    def test_expire_without_lease(self):
        service, store, events = make_service()
        assert not service.expire("eth0")

    def test_expire_keeps_pending_reacquire(self):
        service, store, events = make_service()
        bind(service, hostname="old")
        ticket = service.acquire("eth0", {"hostname": "new"})
        events.clear()

        assert service.expire("eth0")
        session = service.session("eth0")
        assert session.state == AcquisitionState.ACQUIRING
        assert session.ticket is ticket
        assert service.negotiator.cancelled == []
        assert store.get_device("eth0").leases == []

        service.complete_acquire(ticket, Lease(mode=AddrconfMode.DHCP, hostname="new"))
        assert session.state == AcquisitionState.BOUND
        assert [lease.hostname for lease in store.get_device("eth0").leases] == ["new"]
        assert [(e.event_type, e.success) for e in events] == [
            (LeaseEventType.RELEASED, True),
            (LeaseEventType.ACQUIRED, True),
        ]
        assert events[0].reason == "expired"

    def test_expire_during_release_drops_late_completion(self):
        service, store, events = make_service()
        bind(service)
        service.release("eth0")
        service.expire("eth0")
        events.clear()

        service.complete_release(service.negotiator.released[0])
        assert events == []


class TestStaticNegotiator:
    """Tests for static assignment on a running loop."""

    @pytest.mark.asyncio
    async def test_acquire_completes_on_next_iteration(self):
        service, store, events = make_service(StaticNegotiator())
        service.acquire("eth0", {
            "hostname": "node1",
            "domain": "example.com",
            "dns_servers": ["192.0.2.53"],
        })
        assert service.session("eth0").state == AcquisitionState.ACQUIRING

        event = await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED, timeout=1)

        assert event is not None
        lease = event.lease
        assert lease.mode == AddrconfMode.STATIC
        assert lease.hostname == "node1"
        assert lease.resolver.default_domain == "example.com"
        assert lease.resolver.dns_servers == ["192.0.2.53"]
        assert service.session("eth0").state == AcquisitionState.BOUND

    @pytest.mark.asyncio
    async def test_no_resolver_without_dns_options(self):
        service, store, events = make_service(StaticNegotiator())
        service.acquire("eth0", {"hostname": "node1"})
        event = await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED, timeout=1)
        assert event.lease.resolver is None

    @pytest.mark.asyncio
    async def test_release(self):
        service, store, events = make_service(StaticNegotiator())
        service.acquire("eth0", {"hostname": "node1"})
        await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED, timeout=1)

        service.release("eth0")
        event = await service.bus.wait_for("eth0", LeaseEventType.RELEASED, timeout=1)

        assert event.success
        assert store.get_device("eth0").leases == []

    def test_requires_running_loop(self):
        service, store, events = make_service(StaticNegotiator())
        with pytest.raises(NegotiationError, match="no event loop"):
            service.acquire("eth0", {"hostname": "node1"})
        assert service.session("eth0").state == AcquisitionState.IDLE


class TestAcquireThenReconcile:
    """End-to-end: acquisition events drive reconciliation."""

    @pytest.mark.asyncio
    async def test_mismatched_drop_keeps_winner(self):
        """A drop naming another lease leaves the installed source in place."""
        service, store, events = make_service(StaticNegotiator())
        registry = UpdaterRegistry({UpdateKind.HOSTNAME: UpdaterScripts(
            install=["install"], backup=["backup"], restore=["restore"],
        )})
        executor = OkExecutor()
        engine = ReconciliationEngine(store, registry, executor)
        engine.watch(service.bus)

        service.acquire("eth0", {"hostname": "node1"})
        event = await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED, timeout=1)
        await engine.drain()
        winner = event.lease.seqno
        assert registry.get(UpdateKind.HOSTNAME).installed_seqno == winner

        with pytest.raises(OperationFailedError):
            service.release("eth0", b"\xff" * 16)

        executor.calls.clear()
        result = await engine.reconcile_all()
        assert executor.calls == []
        assert result.get(UpdateKind.HOSTNAME).seqno == winner
        sources = registry.get(UpdateKind.HOSTNAME).sources
        assert [src.seqno for src in sources] == [winner]

    @pytest.mark.asyncio
    async def test_release_restores(self):
        service, store, events = make_service(StaticNegotiator())
        registry = UpdaterRegistry({UpdateKind.HOSTNAME: UpdaterScripts(
            install=["install"], backup=["backup"], restore=["restore"],
        )})
        executor = OkExecutor()
        engine = ReconciliationEngine(store, registry, executor)
        engine.watch(service.bus)

        service.acquire("eth0", {"hostname": "node1"})
        await service.bus.wait_for("eth0", LeaseEventType.ACQUIRED, timeout=1)
        await engine.drain()

        service.release("eth0")
        await service.bus.wait_for("eth0", LeaseEventType.RELEASED, timeout=1)
        await engine.drain()

        assert [action.value for _, action, _ in executor.calls] == ["backup", "install", "restore"]
        assert not registry.get(UpdateKind.HOSTNAME).have_backup
