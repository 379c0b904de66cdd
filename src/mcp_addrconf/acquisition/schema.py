"""Schema definitions for lease acquisition.

Acquisition requests arrive as loosely typed option mappings from remote
callers; AcquireRequest validates and normalizes them before any
negotiation starts.
"""
import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config.schema import AddressFamily, Lease, UpdateKind, update_mask
from ..exceptions import InvalidArgumentError


class AcquisitionState(str, Enum):
    """Per-device acquisition state."""
    IDLE = "idle"
    ACQUIRING = "acquiring"
    BOUND = "bound"
    RELEASING = "releasing"


class LeaseEventType(str, Enum):
    """Asynchronous notifications sent to device observers."""
    ACQUIRED = "lease-acquired"
    RELEASED = "lease-released"


def parse_uuid(value: Any) -> bytes:
    """Normalize a lease uuid given as bytes, byte list or UUID string."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, list):
        try:
            raw = bytes(value)
        except (TypeError, ValueError):
            raise ValueError("uuid byte list must hold values 0-255")
    elif isinstance(value, str):
        try:
            raw = UUID(value).bytes
        except ValueError:
            raise ValueError(f"invalid uuid string: {value!r}")
    else:
        raise ValueError(f"unsupported uuid type: {type(value).__name__}")

    if len(raw) != 16:
        raise ValueError(f"uuid must be exactly 16 bytes, got {len(raw)}")
    return raw


class AcquireRequest(BaseModel):
    """Validated addrconf request for one acquisition."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    uuid: bytes = Field(default_factory=lambda: uuid4().bytes)
    family: AddressFamily = AddressFamily.IPV4
    hostname: Optional[str] = None
    client_id: Optional[str] = None
    vendor_class: Optional[str] = None
    lease_time: Optional[int] = Field(default=None, ge=0)
    acquire_timeout: Optional[int] = Field(default=None, ge=0)
    update: list[UpdateKind] = Field(
        default_factory=lambda: [UpdateKind.HOSTNAME, UpdateKind.RESOLVER]
    )
    dns_servers: list[str] = Field(default_factory=list)
    dns_search: list[str] = Field(default_factory=list)
    domain: Optional[str] = None

    @field_validator("uuid", mode="before")
    @classmethod
    def _parse_uuid(cls, value: Any) -> bytes:
        return parse_uuid(value)

    @field_validator("hostname")
    @classmethod
    def _valid_hostname(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not value or len(value) > 253 or any(ch.isspace() for ch in value):
            raise ValueError("hostname must be a non-empty name without whitespace")
        return value

    @field_validator("update", mode="before")
    @classmethod
    def _expand_mask(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return [kind for kind in UpdateKind if value & kind.bit]
        return value

    @field_validator("dns_servers")
    @classmethod
    def _valid_servers(cls, value: list[str]) -> list[str]:
        servers = []
        for server in value:
            try:
                servers.append(str(ipaddress.ip_address(server)))
            except ValueError:
                raise ValueError(f"invalid DNS server address: {server}")
        return servers

    @property
    def update_mask(self) -> int:
        return update_mask(self.update)

    @classmethod
    def from_options(cls, options: Any) -> "AcquireRequest":
        """Build a request from a caller-supplied options mapping.

        Raises:
            InvalidArgumentError: If options are missing, empty or malformed
        """
        if options is None:
            raise InvalidArgumentError("Missing arguments: no request options given")
        if not isinstance(options, Mapping):
            raise InvalidArgumentError("Request options must be a mapping")
        if not options:
            raise InvalidArgumentError("Missing arguments: empty request options")

        try:
            return cls.model_validate(dict(options))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidArgumentError(f"Cannot extract addrconf request from options: {problems}") from e


@dataclass(frozen=True)
class AcquisitionTicket:
    """Handle for one acquire or release attempt.

    Completions carrying a ticket whose generation is no longer current
    are stray and get ignored.
    """
    device: str
    generation: int
    request: Optional[AcquireRequest] = None


@dataclass(frozen=True)
class LeaseEvent:
    """Outcome of an acquisition or release, delivered to observers."""
    device: str
    event_type: LeaseEventType
    success: bool = True
    lease: Optional[Lease] = None
    reason: Optional[str] = None
    request_uuid: Optional[bytes] = None

    @property
    def changes_leases(self) -> bool:
        """True when the device's lease set was mutated."""
        return self.success and self.lease is not None

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "event": self.event_type.value,
            "success": self.success,
            "lease": self.lease.to_dict() if self.lease else None,
            "reason": self.reason,
            "request_uuid": self.request_uuid.hex() if self.request_uuid else None,
        }
