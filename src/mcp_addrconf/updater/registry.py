"""Registry of the per-kind updaters."""
import logging
from typing import Iterator, Mapping, Optional

from ..config.inventory import AddrconfInventory, UpdaterScripts
from ..config.schema import UpdateKind
from .builders import BuilderRegistry
from .schema import Updater

logger = logging.getLogger(__name__)


class UpdaterRegistry:
    """One Updater per update kind, configured once from static config.

    Usage:
        registry = UpdaterRegistry.from_inventory(inventory)
        engine = ReconciliationEngine(store, registry)
    """

    def __init__(
        self,
        scripts: Optional[Mapping[UpdateKind, UpdaterScripts]] = None,
        builders: Optional[BuilderRegistry] = None,
    ):
        self._scripts = dict(scripts or {})
        self.builders = builders if builders is not None else BuilderRegistry()
        self._updaters: dict[UpdateKind, Updater] = {kind: Updater(kind=kind) for kind in UpdateKind}
        self._initialized = False

    @classmethod
    def from_inventory(
        cls,
        inventory: AddrconfInventory,
        builders: Optional[BuilderRegistry] = None,
    ) -> "UpdaterRegistry":
        scripts = {}
        for kind in UpdateKind:
            found = inventory.get_updater_scripts(kind)
            if found is not None:
                scripts[kind] = found
        return cls(scripts, builders)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Configure the updaters. Only the first call has any effect."""
        if self._initialized:
            return
        self._initialized = True

        for kind, updater in self._updaters.items():
            scripts = self._scripts.get(kind)
            if scripts is None:
                continue
            exname = f"{kind.value}-updater"

            if scripts.install is None:
                logger.warning(f"extension {exname} configured, but no install script defined")
                continue

            if not scripts.has_backup_restore:
                logger.warning(f"extension {exname} configured, but no backup/restore script defined")
                scripts = UpdaterScripts(install=scripts.install, timeout=scripts.timeout)

            updater.scripts = scripts
            updater.enabled = True

            if kind not in self.builders:
                reason = f"cannot install {kind.value} settings - no artifact builder"
                logger.error(f"extension {exname}: {reason}; disabling")
                updater.disable(reason)
                continue

            logger.info(
                f"Enabled {exname} "
                f"(backup/restore={'yes' if scripts.has_backup_restore else 'no'})"
            )

    def get(self, kind: UpdateKind) -> Updater:
        self.initialize()
        return self._updaters[UpdateKind(kind)]

    def __iter__(self) -> Iterator[Updater]:
        self.initialize()
        return iter([self._updaters[kind] for kind in UpdateKind])

    def enabled(self) -> list[Updater]:
        return [updater for updater in self if updater.enabled]

    def status(self) -> list[dict]:
        return [updater.to_dict() for updater in self]
