"""Schema definitions for the updaters.

Defines the arbitration records, per-kind updater state and the results
of a reconciliation pass.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config.inventory import UpdaterScripts
from ..config.schema import Lease, UpdateKind

# installed_seqno value while nothing is installed
NOT_INSTALLED = 0


class UpdateAction(str, Enum):
    """What a reconciliation pass did for one kind."""
    NONE = "none"         # winner already installed
    INSTALL = "install"   # backup (if needed) then install
    RESTORE = "restore"   # no source left, restore backup


class ScriptAction(str, Enum):
    """External script roles."""
    BACKUP = "backup"
    RESTORE = "restore"
    INSTALL = "install"


@dataclass
class Source:
    """Candidate lease for one update kind.

    ``lease`` is cleared at the start of each pass and set again when the
    lease is still present; a source left without a lease is pruned.
    """
    seqno: int
    weight: int
    lease: Optional[Lease] = None

    @property
    def seen(self) -> bool:
        return self.lease is not None

    def to_dict(self) -> dict:
        return {
            "seqno": self.seqno,
            "weight": self.weight,
            "seen": self.seen,
            "mode": self.lease.mode.value if self.lease else None,
            "family": self.lease.family.value if self.lease else None,
        }


@dataclass
class Updater:
    """Apply state for one update kind."""
    kind: UpdateKind
    sources: list[Source] = field(default_factory=list)
    installed_seqno: int = NOT_INSTALLED
    have_backup: bool = False
    enabled: bool = False
    scripts: Optional[UpdaterScripts] = None
    # Why the kind was disabled at configuration or install time
    config_error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def is_installed(self) -> bool:
        return self.installed_seqno != NOT_INSTALLED

    def disable(self, reason: str) -> None:
        self.enabled = False
        self.config_error = reason

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "enabled": self.enabled,
            "installed_seqno": self.installed_seqno,
            "have_backup": self.have_backup,
            "backup_restore": bool(self.scripts and self.scripts.has_backup_restore),
            "sources": [src.to_dict() for src in self.sources],
            "error": self.config_error,
        }


@dataclass
class KindOutcome:
    """Result of processing one kind in a pass."""
    kind: UpdateKind
    action: UpdateAction = UpdateAction.NONE
    success: bool = True
    seqno: int = NOT_INSTALLED
    scripts_run: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "action": self.action.value,
            "success": self.success,
            "seqno": self.seqno,
            "scripts_run": self.scripts_run,
            "error": self.error,
        }


@dataclass
class ReconcileResult:
    """Aggregated per-kind outcomes of one pass."""
    outcomes: list[KindOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def scripts_run(self) -> int:
        return sum(len(outcome.scripts_run) for outcome in self.outcomes)

    def get(self, kind: UpdateKind) -> Optional[KindOutcome]:
        for outcome in self.outcomes:
            if outcome.kind == kind:
                return outcome
        return None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }
