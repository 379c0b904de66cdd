"""Exception hierarchy for mcp-addrconf."""
from typing import Optional


class AddrconfError(Exception):
    """Base exception for all addrconf errors."""


class AddrconfConfigError(AddrconfError):
    """Invalid or missing configuration."""


class DeviceNotFoundError(AddrconfError, KeyError):
    """Lookup of a device that is not known to the lease store."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Unknown device: {device}")

    def __str__(self) -> str:
        return f"Unknown device: {self.device}"


class InvalidArgumentError(AddrconfError):
    """Malformed caller input. Never retried."""


class NegotiationError(AddrconfError):
    """The lease negotiation could not be started."""


class OperationFailedError(AddrconfError):
    """A lease operation was rejected in the current state."""


class ScriptFailureError(AddrconfError):
    """A backup, restore or install script reported failure.

    The pass leaves the updater state untouched so the same step is
    retried on the next reconciliation pass.
    """

    def __init__(self, message: str, result=None):
        self.result = result
        super().__init__(message)


class UnsupportedKindError(AddrconfError):
    """No settings artifact builder exists for an update kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"cannot install new {kind} settings - file format not understood")


class AddrconfMethodError(AddrconfError):
    """Caller-visible failure of an RPC method.

    Carries a machine-readable error domain plus a human-readable message.
    """

    def __init__(self, domain: str, message: str, cause: Optional[Exception] = None):
        self.domain = domain
        self.message = message
        self.cause = cause
        super().__init__(f"{domain}: {message}")

    def to_dict(self) -> dict:
        return {"domain": self.domain, "message": self.message}
