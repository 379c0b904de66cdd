"""Updaters - apply host-wide settings from the best available lease.

Each update kind (hostname, resolver, ...) has one Updater that tracks
the leases able to drive it, picks the most authoritative one, and runs
the configured external scripts to back up, install or restore the
system setting.

Usage:
    from mcp_addrconf.updater import ReconciliationEngine, UpdaterRegistry

    registry = UpdaterRegistry.from_inventory(inventory)
    engine = ReconciliationEngine(store, registry)
    result = await engine.reconcile_all()
"""

from .engine import ReconciliationEngine
from .registry import UpdaterRegistry
from .schema import (
    NOT_INSTALLED,
    Source,
    Updater,
    UpdateAction,
    ScriptAction,
    KindOutcome,
    ReconcileResult,
)
from .arbitration import (
    ADDRCONF_WEIGHTS,
    source_weight,
    add_source,
    select_source,
    clear_marks,
    prune_sources,
)
from .builders import BuilderRegistry, build_hostname, build_resolver
from .executor import ScriptExecutor, ScriptResult

__all__ = [
    # Main engine
    "ReconciliationEngine",
    "UpdaterRegistry",
    # Schema classes
    "NOT_INSTALLED",
    "Source",
    "Updater",
    "UpdateAction",
    "ScriptAction",
    "KindOutcome",
    "ReconcileResult",
    # Arbitration
    "ADDRCONF_WEIGHTS",
    "source_weight",
    "add_source",
    "select_source",
    "clear_marks",
    "prune_sources",
    # Components (for advanced use)
    "BuilderRegistry",
    "build_hostname",
    "build_resolver",
    "ScriptExecutor",
    "ScriptResult",
]
