"""Tests for settings artifact builders."""
import pytest

from mcp_addrconf.config.schema import AddrconfMode, AddressFamily, Lease, ResolverInfo, UpdateKind
from mcp_addrconf.exceptions import UnsupportedKindError
from mcp_addrconf.updater.builders import BuilderRegistry, build_hostname, build_resolver


class TestBuilders:
    """Tests for the built-in builders."""

    def test_hostname(self):
        lease = Lease(mode=AddrconfMode.DHCP, hostname="node1.example.com")
        assert build_hostname(lease) == "node1.example.com\n"

    def test_resolver(self):
        lease = Lease(
            mode=AddrconfMode.DHCP,
            family=AddressFamily.IPV4,
            seqno=5,
            resolver=ResolverInfo(
                default_domain="example.com",
                dns_servers=["192.0.2.53", "192.0.2.54"],
                dns_search=["example.com", "lab.example.com"],
            ),
        )
        assert build_resolver(lease).splitlines() == [
            "# generated by mcp-addrconf from dhcp/ipv4 lease 5",
            "domain example.com",
            "search example.com lab.example.com",
            "nameserver 192.0.2.53",
            "nameserver 192.0.2.54",
        ]

    def test_resolver_servers_only(self):
        lease = Lease(mode=AddrconfMode.STATIC, resolver=ResolverInfo(dns_servers=["2001:db8::1"]))
        text = build_resolver(lease)
        assert "domain" not in text
        assert "search" not in text
        assert text.endswith("nameserver 2001:db8::1\n")


class TestBuilderRegistry:
    """Tests for BuilderRegistry."""

    def test_defaults(self):
        registry = BuilderRegistry()
        assert UpdateKind.HOSTNAME in registry
        assert UpdateKind.RESOLVER in registry
        assert UpdateKind.NTP not in registry

    def test_unsupported_kind(self):
        registry = BuilderRegistry()
        lease = Lease(mode=AddrconfMode.DHCP, ntp_servers=["192.0.2.1"])
        with pytest.raises(UnsupportedKindError, match="ntp settings - file format not understood"):
            registry.build(UpdateKind.NTP, lease)

    def test_register_custom_builder(self):
        registry = BuilderRegistry()
        registry.register(UpdateKind.NTP, lambda lease: "\n".join(lease.ntp_servers) + "\n")
        lease = Lease(mode=AddrconfMode.DHCP, ntp_servers=["192.0.2.1", "192.0.2.2"])
        assert registry.build(UpdateKind.NTP, lease) == "192.0.2.1\n192.0.2.2\n"

    def test_unregister(self):
        registry = BuilderRegistry()
        registry.unregister(UpdateKind.HOSTNAME)
        assert UpdateKind.HOSTNAME not in registry
        assert list(registry) == [UpdateKind.RESOLVER]

    def test_explicit_empty(self):
        """An explicit empty mapping means no builders at all."""
        assert list(BuilderRegistry({})) == []
