"""Per-device method surface exposed to remote callers.

Method names match the ones remote clients already use. Every failure
crosses the boundary as an AddrconfMethodError with an error domain and
a message naming the device.
"""
import logging
from typing import Any, Optional

from ..exceptions import (
    AddrconfMethodError,
    DeviceNotFoundError,
    InvalidArgumentError,
    NegotiationError,
    OperationFailedError,
)
from .events import LeaseObserver, Subscription
from .service import LeaseAcquisitionService

logger = logging.getLogger(__name__)

ERROR_INVALID_ARGS = "org.freedesktop.DBus.Error.InvalidArgs"
ERROR_FAILED = "org.freedesktop.DBus.Error.Failed"


class AddrconfDeviceObject:
    """Remote object for one device's addrconf service."""

    def __init__(self, service: LeaseAcquisitionService, device: str):
        self.service = service
        self._device = device

    @property
    def name(self) -> str:
        return self._device

    def acquire(self, options: Any) -> bool:
        """Start lease acquisition; the result arrives as an event."""
        try:
            self.service.acquire(self._device, options)
        except InvalidArgumentError as e:
            raise AddrconfMethodError(ERROR_INVALID_ARGS, str(e), e)
        except (NegotiationError, DeviceNotFoundError) as e:
            logger.error(f"acquire on {self._device} failed: {e}")
            raise AddrconfMethodError(
                ERROR_FAILED, f"Cannot configure interface {self._device}: {e}", e
            )
        return True

    def drop(self, lease_uuid: Optional[bytes] = None) -> bool:
        """Start releasing a lease, optionally only the one with this uuid."""
        if lease_uuid is not None:
            if not isinstance(lease_uuid, (bytes, bytearray)) or len(lease_uuid) != 16:
                raise AddrconfMethodError(ERROR_INVALID_ARGS, "bad uuid argument")
            lease_uuid = bytes(lease_uuid)

        try:
            self.service.release(self._device, lease_uuid)
        except (OperationFailedError, NegotiationError, DeviceNotFoundError) as e:
            raise AddrconfMethodError(
                ERROR_FAILED, f"Unable to drop lease for interface {self._device}: {e}", e
            )
        return True

    def subscribe(self, observer: LeaseObserver) -> Subscription:
        """Receive lease-acquired/lease-released events of this device."""
        return self.service.bus.subscribe(observer, device=self._device)

    def get_properties(self) -> dict:
        session = self.service.session(self._device)
        return {
            "name": self._device,
            "mode": self.service.mode.value,
            **{k: v for k, v in session.to_dict().items() if k != "device"},
        }
