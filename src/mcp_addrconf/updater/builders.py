"""Settings artifact builders.

Turns the payload of a winning lease into the file handed to an
updater's install script.
"""
from typing import Callable, Iterator, Optional

from ..config.schema import Lease, UpdateKind
from ..exceptions import UnsupportedKindError

ArtifactBuilder = Callable[[Lease], str]


def build_hostname(lease: Lease) -> str:
    """Hostname artifact: the bare hostname on one line."""
    return f"{lease.hostname}\n"


def build_resolver(lease: Lease) -> str:
    """Resolver artifact in resolv.conf format."""
    resolver = lease.resolver
    lines = [f"# generated by mcp-addrconf from {lease.mode.value}/{lease.family.value} lease {lease.seqno}"]

    if resolver.default_domain:
        lines.append(f"domain {resolver.default_domain}")
    if resolver.dns_search:
        lines.append("search " + " ".join(resolver.dns_search))
    for server in resolver.dns_servers:
        lines.append(f"nameserver {server}")

    return "\n".join(lines) + "\n"


DEFAULT_BUILDERS: dict[UpdateKind, ArtifactBuilder] = {
    UpdateKind.HOSTNAME: build_hostname,
    UpdateKind.RESOLVER: build_resolver,
}


class BuilderRegistry:
    """Maps update kinds to their artifact builders."""

    def __init__(self, builders: Optional[dict[UpdateKind, ArtifactBuilder]] = None):
        self._builders: dict[UpdateKind, ArtifactBuilder] = dict(
            DEFAULT_BUILDERS if builders is None else builders
        )

    def register(self, kind: UpdateKind, builder: ArtifactBuilder) -> None:
        self._builders[kind] = builder

    def unregister(self, kind: UpdateKind) -> None:
        self._builders.pop(kind, None)

    def get(self, kind: UpdateKind) -> Optional[ArtifactBuilder]:
        return self._builders.get(kind)

    def __contains__(self, kind: UpdateKind) -> bool:
        return kind in self._builders

    def __iter__(self) -> Iterator[UpdateKind]:
        return iter(self._builders)

    def build(self, kind: UpdateKind, lease: Lease) -> str:
        """Build the artifact for a kind.

        Raises:
            UnsupportedKindError: If no builder exists for the kind
        """
        builder = self._builders.get(kind)
        if builder is None:
            raise UnsupportedKindError(kind.value)
        return builder(lease)
