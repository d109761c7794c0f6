#!/usr/bin/env python3
"""
USB control-transfer transport for iBoot devices.

The ``ControlTransport`` ABC abstracts the raw USB I/O so that:
  • Tests can inject a mock transport (no real hardware needed).
  • ``PyUsbControlTransport`` provides real USB via pyusb (libusb backend).

Every transfer is synchronous and is attempted exactly once.  pyusb
exceptions are translated here and never reach the protocol layers:

  USBTimeoutError           → TransferTimeout
  USBError errno == EPIPE   → TransferStalled
  any other USBError        → TransferFailed

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1: ``apt install libusb-1.0-0``)
"""

import errno
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Union

import usb.core
import usb.util

from .conf import settings
from .constants import (
    APPLE_VID,
    DFU_PID,
    RECOVERY_PID,
    USB_CONFIGURATION,
    USB_INTERFACE,
)
from .errors import (
    DeviceNotFoundError,
    DeviceOpenError,
    TransferFailed,
    TransferStalled,
    TransferTimeout,
    TransportError,
)
from .models import ControlRequest, DeviceInfo

log = logging.getLogger(__name__)


# =========================================================================
# Abstract control transport
# =========================================================================

class ControlTransport(ABC):
    """Abstract USB control transport, mockable for testing."""

    @abstractmethod
    def open(self) -> None:
        """Find and claim the device.

        Raises:
            DeviceNotFoundError: No device with this VID/PID.
            DeviceOpenError: Device found but could not be claimed.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the claim.  Safe to call more than once."""

    @abstractmethod
    def transfer(self, request: ControlRequest) -> Union[int, bytes]:
        """Issue one control transfer.

        Returns bytes written for OUT requests, the data read for IN
        requests.  Raises a ``TransportError`` subclass on failure.
        """

    @abstractmethod
    def reset(self) -> None:
        """Issue a USB bus reset to the device."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    def product_name(self) -> Optional[str]:
        """Product string descriptor, if the device provides one."""
        return None

    def serial_number(self) -> Optional[str]:
        """Serial string descriptor, if the device provides one."""
        return None


def translate_usb_error(e: 'usb.core.USBError') -> TransportError:
    """Map a pyusb exception onto the transport error taxonomy."""
    if isinstance(e, usb.core.USBTimeoutError):
        return TransferTimeout(str(e))
    if getattr(e, 'errno', None) == errno.EPIPE:
        return TransferStalled(str(e))
    return TransferFailed(str(e))


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================

class PyUsbControlTransport(ControlTransport):
    """Real control transport using pyusb (libusb backend).

    Open sequence:
    1. Find device by VID/PID
    2. Detach kernel driver from interface 0 (Linux only)
    3. SetConfiguration(1)
    4. ClaimInterface(0)

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, vid: int, pid: int, timeout: Optional[int] = None):
        self._vid = vid
        self._pid = pid
        self._timeout = timeout
        self._device = None
        self._is_open = False

    @property
    def timeout(self) -> int:
        return self._timeout if self._timeout is not None else settings.timeout_ms

    def open(self) -> None:
        try:
            device = usb.core.find(idVendor=self._vid, idProduct=self._pid)
        except usb.core.NoBackendError as e:
            raise DeviceOpenError(f"No USB backend available (install libusb): {e}") from e
        if device is None:
            raise DeviceNotFoundError(
                f"USB device not found: VID={self._vid:#06x} PID={self._pid:#06x}",
                product_ids=(self._pid,),
            )

        # Detach kernel driver if active (not implemented on macOS/Windows)
        try:
            if device.is_kernel_driver_active(USB_INTERFACE):
                device.detach_kernel_driver(USB_INTERFACE)
                log.debug("Detached kernel driver from interface %d", USB_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            device.set_configuration(USB_CONFIGURATION)
            usb.util.claim_interface(device, USB_INTERFACE)
        except usb.core.USBError as e:
            usb.util.dispose_resources(device)
            raise DeviceOpenError(
                f"Couldn't claim device {self._vid:04x}:{self._pid:04x}: {e}"
            ) from e

        self._device = device
        self._is_open = True
        log.info("Opened USB device %04x:%04x", self._vid, self._pid)

    def close(self) -> None:
        if self._device is not None:
            try:
                usb.util.release_interface(self._device, USB_INTERFACE)
            except usb.core.USBError as e:
                log.debug("Release interface: %s", e)
            usb.util.dispose_resources(self._device)
            self._device = None
            log.info("Closed USB device %04x:%04x", self._vid, self._pid)
        self._is_open = False

    def transfer(self, request: ControlRequest) -> Union[int, bytes]:
        device = self._require_device()
        payload: Any = request.length if request.is_inbound else request.data
        log.debug(
            "ctrl %s type=0x%02x req=0x%02x value=%d index=%d length=%d",
            "IN" if request.is_inbound else "OUT",
            request.request_type, request.request,
            request.value, request.index, request.length,
        )
        try:
            result = device.ctrl_transfer(
                request.request_type, request.request,
                request.value, request.index, payload,
                timeout=self.timeout,
            )
        except usb.core.USBError as e:
            raise translate_usb_error(e) from e
        if request.is_inbound:
            return bytes(result)
        return int(result)

    def reset(self) -> None:
        device = self._require_device()
        try:
            device.reset()
        except usb.core.USBError as e:
            raise translate_usb_error(e) from e
        log.info("Reset USB device %04x:%04x", self._vid, self._pid)

    @property
    def is_open(self) -> bool:
        return self._is_open

    def product_name(self) -> Optional[str]:
        return self._read_string('iProduct')

    def serial_number(self) -> Optional[str]:
        return self._read_string('iSerialNumber')

    def _read_string(self, field_name: str) -> Optional[str]:
        """Read a string descriptor; None when absent or unreadable."""
        if self._device is None:
            return None
        index = getattr(self._device, field_name, 0)
        if not index:
            return None
        try:
            return usb.util.get_string(self._device, index)
        except (usb.core.USBError, ValueError, NotImplementedError) as e:
            log.debug("String descriptor %s unavailable: %s", field_name, e)
            return None

    def _require_device(self) -> Any:
        if not self._is_open or self._device is None:
            raise TransferFailed("Transport not open")
        return self._device

    @property
    def device(self) -> Any:
        """Raw pyusb device handle (for diagnostics)."""
        return self._device

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Device discovery helper
# =========================================================================

def find_devices(product_ids: Iterable[int] = (RECOVERY_PID, DFU_PID),
                 vid: int = APPLE_VID) -> List[DeviceInfo]:
    """Scan for attached devices in recovery or DFU mode.

    Does not claim anything; the serial is read when the OS allows it.
    """
    devices = []
    for pid in product_ids:
        try:
            found = usb.core.find(find_all=True, idVendor=vid, idProduct=pid)
        except usb.core.NoBackendError as e:
            raise DeviceOpenError(f"No USB backend available (install libusb): {e}") from e
        for dev in found or []:
            serial = None
            serial_idx = getattr(dev, 'iSerialNumber', 0)
            if serial_idx:
                try:
                    serial = usb.util.get_string(dev, serial_idx)
                except (usb.core.USBError, ValueError, NotImplementedError) as e:
                    log.debug("Serial of %04x:%04x unavailable: %s", vid, pid, e)
            devices.append(DeviceInfo(
                vid=vid,
                pid=pid,
                bus=getattr(dev, 'bus', None),
                address=getattr(dev, 'address', None),
                serial=serial,
            ))
    return devices
