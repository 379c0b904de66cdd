"""Reconciliation engine - keeps host-wide settings in line with the leases.

One pass:
1. Mark every known source unseen
2. Register every lease that may and can drive a kind
3. Prune sources whose lease went away
4. Per enabled kind, select the best source and restore, install or
   leave the settings alone
"""
import asyncio
import logging
from typing import Optional

from ..acquisition.events import LeaseEvent, LeaseEventBus, Subscription
from ..config.schema import Lease, UpdateKind
from ..devices.store import DeviceStore
from ..exceptions import ScriptFailureError, UnsupportedKindError
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed
from .arbitration import add_source, clear_marks, prune_sources, select_source
from .executor import ScriptExecutor
from .registry import UpdaterRegistry
from .schema import (
    NOT_INSTALLED,
    KindOutcome,
    ReconcileResult,
    ScriptAction,
    Source,
    UpdateAction,
    Updater,
)

logger = logging.getLogger(__name__)

_ACTION_VERBS = {
    ScriptAction.BACKUP: "back up current",
    ScriptAction.RESTORE: "restore current",
    ScriptAction.INSTALL: "install new",
}


class ReconciliationEngine:
    """
    Drives backup/install/restore of system settings from the lease store.

    Usage:
        engine = ReconciliationEngine(store, registry)
        result = await engine.reconcile_all()
    """

    name = "engine"

    def __init__(
        self,
        store: DeviceStore,
        registry: UpdaterRegistry,
        executor: Optional[ScriptExecutor] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Devices and their leases
            registry: Per-kind updaters
            executor: Script runner (default: ScriptExecutor with default timeout)
        """
        self.store = store
        self.registry = registry
        self.executor = executor or ScriptExecutor()
        self._lock = asyncio.Lock()
        self._dirty = False
        self._runner: Optional[asyncio.Task] = None
        self._lease_devices: dict[int, str] = {}
        self._trackers: dict[UpdateKind, ChangeTracker] = {}

    @timed("reconcile")
    async def reconcile_all(self) -> ReconcileResult:
        """Run one full reconciliation pass over all devices and kinds.

        Returns:
            ReconcileResult; ``success`` is False if any kind failed
        """
        async with self._lock:
            self.registry.initialize()
            self._collect_sources()

            result = ReconcileResult()
            for updater in self.registry:
                dropped = prune_sources(updater)
                if dropped:
                    logger.debug(f"{updater.name}: dropped {dropped} withdrawn source(s)")

                if not updater.enabled:
                    continue

                result.outcomes.append(await self._update(updater))

            if not result.success:
                failed = [o.kind.value for o in result.outcomes if not o.success]
                logger.warning(f"Reconciliation incomplete, failed kinds: {', '.join(failed)}")
            return result

    async def on_lease_changed(self, lease: Optional[Lease] = None) -> ReconcileResult:
        """Re-run reconciliation after the caller changed a device's leases."""
        if lease is not None:
            logger.debug(f"Lease change: {lease.mode.value}/{lease.family.value} seqno={lease.seqno}")
        return await self.reconcile_all()

    def schedule(self) -> asyncio.Task:
        """Request a pass on the running loop.

        Requests arriving before or during a pass fold into one follow-up
        pass.
        """
        self._dirty = True
        if self._runner is None or self._runner.done():
            self._runner = asyncio.get_running_loop().create_task(self._run_pending())
        return self._runner

    async def drain(self) -> Optional[ReconcileResult]:
        """Wait for scheduled passes to finish."""
        if self._runner is None:
            return None
        return await self._runner

    def watch(self, bus: LeaseEventBus) -> Subscription:
        """Schedule a pass whenever a lease is gained, released or expires."""
        def on_event(event: LeaseEvent) -> None:
            if event.changes_leases:
                self.schedule()

        return bus.subscribe(on_event)

    def status(self) -> dict:
        return {
            "devices": len(self.store),
            "updaters": self.registry.status(),
        }

    async def _run_pending(self) -> Optional[ReconcileResult]:
        result = None
        while self._dirty:
            self._dirty = False
            result = await self.reconcile_all()
        return result

    def _collect_sources(self) -> None:
        for updater in self.registry:
            clear_marks(updater)

        self._lease_devices.clear()
        for device, lease in self.store.iter_leases():
            self._lease_devices[lease.seqno] = device.name
            for kind in UpdateKind:
                if lease.can_update(kind):
                    add_source(self.registry.get(kind), lease)

    async def _update(self, updater: Updater) -> KindOutcome:
        """Select the best source for one kind and apply it."""
        outcome = KindOutcome(kind=updater.kind, seqno=updater.installed_seqno)
        src = select_source(updater)

        try:
            if src is None:
                await self._restore(updater, outcome)
            elif src.seqno != updater.installed_seqno:
                await self._install(updater, src, outcome)

        except ScriptFailureError as e:
            logger.error(str(e))
            outcome.success = False
            outcome.error = str(e)

        except UnsupportedKindError as e:
            logger.error(f"{e}; disabling {updater.name} updater")
            updater.disable(str(e))
            outcome.success = False
            outcome.error = str(e)

        except Exception as e:
            logger.exception(f"Updating {updater.name} settings failed")
            outcome.success = False
            outcome.error = str(e)

        return outcome

    async def _restore(self, updater: Updater, outcome: KindOutcome) -> None:
        """Restore the backed-up settings once no source remains."""
        if not updater.have_backup:
            return
        if updater.scripts is None or updater.scripts.restore is None:
            return

        outcome.action = UpdateAction.RESTORE
        await self._run_script(updater, ScriptAction.RESTORE, updater.scripts.restore, outcome)

        updater.have_backup = False
        updater.installed_seqno = NOT_INSTALLED
        outcome.seqno = NOT_INSTALLED
        logger.info(f"Restored original {updater.name} settings")

    async def _backup(self, updater: Updater, outcome: KindOutcome) -> None:
        if updater.have_backup:
            return
        if updater.scripts is None or updater.scripts.backup is None:
            return

        await self._run_script(updater, ScriptAction.BACKUP, updater.scripts.backup, outcome)
        updater.have_backup = True

    async def _install(self, updater: Updater, src: Source, outcome: KindOutcome) -> None:
        """Back up if needed, then install the winning lease's settings."""
        outcome.action = UpdateAction.INSTALL

        # Unsupported kinds fail before any script touches the system
        artifact = self.registry.builders.build(updater.kind, src.lease)

        await self._backup(updater, outcome)
        await self._run_script(
            updater, ScriptAction.INSTALL, updater.scripts.install, outcome,
            artifact=artifact, src=src,
        )

        updater.installed_seqno = src.seqno
        outcome.seqno = src.seqno
        logger.info(
            f"Installed {updater.name} settings from {src.lease.mode.value}/"
            f"{src.lease.family.value} lease {src.seqno}"
        )

    async def _run_script(
        self,
        updater: Updater,
        action: ScriptAction,
        argv: list[str],
        outcome: KindOutcome,
        artifact: Optional[str] = None,
        src: Optional[Source] = None,
    ) -> None:
        result = await self.executor.run(
            updater.kind, action, argv,
            artifact=artifact,
            timeout=updater.scripts.timeout,
        )
        outcome.scripts_run.append(action.value)

        lease = src.lease if src is not None else None
        self._tracker(updater.kind).log_change(
            operation=action.value,
            success=result.success,
            seqno=src.seqno if src is not None else updater.installed_seqno,
            device=self._lease_devices.get(src.seqno) if src is not None else None,
            source=f"{lease.mode.value}/{lease.family.value}" if lease is not None else None,
            output=result.output,
            error=result.error,
        )

        if not result.success:
            raise ScriptFailureError(
                f"failed to {_ACTION_VERBS[action]} {updater.name} settings: {result.error}",
                result,
            )

    def _tracker(self, kind: UpdateKind) -> ChangeTracker:
        if kind not in self._trackers:
            self._trackers[kind] = ChangeTracker(kind.value)
        return self._trackers[kind]
