"""Audit trail of host settings changes.

Each backup, restore and install script run lands as a single JSON line
in ``audit.log`` (``~/.addrconf`` unless ``ADDRCONF_AUDIT_DIR`` says
otherwise). The main log stays free of these records.
"""
import json
import logging
import os
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

audit_logger = logging.getLogger("addrconf.audit")

AUDIT_FILENAME = "audit.log"
AUDIT_MAX_BYTES = 5 * 1024 * 1024
AUDIT_BACKUPS = 5
MAX_OUTPUT = 1000


def audit_dir() -> Path:
    return Path(os.environ.get("ADDRCONF_AUDIT_DIR", Path.home() / ".addrconf"))


def default_audit_file() -> str:
    return str(audit_dir() / AUDIT_FILENAME)


def setup_audit_logging(log_dir: Union[str, Path, None] = None) -> Path:
    """Point the audit logger at ``<log_dir>/audit.log``.

    Replaces any handler installed by an earlier call.

    Returns:
        Path of the audit file
    """
    directory = Path(log_dir) if log_dir is not None else audit_dir()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / AUDIT_FILENAME

    for old in list(audit_logger.handlers):
        audit_logger.removeHandler(old)
        old.close()

    handler = RotatingFileHandler(path, maxBytes=AUDIT_MAX_BYTES, backupCount=AUDIT_BACKUPS, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))

    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False
    return path


@dataclass
class ChangeRecord:
    """One script run against a host setting."""
    timestamp: str
    kind: str
    operation: str  # backup, restore, install
    success: bool
    seqno: int = 0
    device: Optional[str] = None
    source: Optional[str] = None  # e.g. "dhcp/ipv4"
    output: str = ""
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, line: str) -> "ChangeRecord":
        return cls(**json.loads(line))


class ChangeTracker:
    """Writes audit records for one update kind."""

    def __init__(self, kind: str):
        self.kind = kind

    def log_change(
        self,
        operation: str,
        success: bool,
        seqno: int = 0,
        device: Optional[str] = None,
        source: Optional[str] = None,
        output: str = "",
        error: Optional[str] = None,
    ) -> ChangeRecord:
        """Record a backup, restore or install run.

        Args:
            operation: Script role that ran
            success: Whether it succeeded
            seqno: Lease the change came from (0 for none)
            device: Device owning that lease
            source: Lease protocol and family
            output: Script output, truncated
            error: Failure description

        Returns:
            The record as written
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            kind=self.kind,
            operation=operation,
            success=success,
            seqno=seqno,
            device=device,
            source=source,
            output=(output or "")[:MAX_OUTPUT],
            error=error,
        )
        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    kind: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read the newest audit records, newest first.

    Unparseable lines are skipped.
    """
    path = Path(log_file or default_audit_file())
    if not path.exists():
        return []

    newest: deque[ChangeRecord] = deque(maxlen=max(limit, 0))
    with path.open(encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue
            if kind and record.kind != kind:
                continue
            if operation and record.operation != operation:
                continue
            newest.append(record)

    return list(reversed(newest))
