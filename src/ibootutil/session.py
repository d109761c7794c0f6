"""
Device session: one open iBoot device and its identity.

A session is either fully open (transport claimed) or fully closed (no
transport reference kept).  ``open_session`` never returns a half-open
session: if the transport fails to open, nothing is claimed and the
error propagates.

Usage::

    from ibootutil.session import open_session

    with open_session(RECOVERY_PID) as session:
        send_command(session, "getenv build-version")
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Union

from .constants import APPLE_VID, MODE_NAMES
from .errors import (
    DeviceNotFoundError,
    DeviceOpenError,
    SessionClosedError,
    TransportError,
)
from .models import ControlRequest, EndReason, SessionEnded
from .transport import ControlTransport, PyUsbControlTransport

log = logging.getLogger(__name__)

TransportFactory = Callable[[int, int], ControlTransport]


class DeviceSession:
    """Exclusive owner of one ``ControlTransport``.

    Created by ``open_session()``/``open_first()``; ended by ``close()``
    or ``reset()``, both of which return a ``SessionEnded`` signal for the
    top-level driver.
    """

    def __init__(self, transport: ControlTransport, product_id: int,
                 vendor_id: int = APPLE_VID,
                 name: Optional[str] = None, serial: Optional[str] = None):
        self._transport: Optional[ControlTransport] = transport
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.name = name
        self.serial = serial

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    @property
    def mode(self) -> str:
        return MODE_NAMES.get(self.product_id, "unknown")

    def transfer(self, request: ControlRequest) -> Union[int, bytes]:
        """Forward one control transfer to the owned transport."""
        return self._require_transport().transfer(request)

    def close(self) -> SessionEnded:
        """Release the device.  A second close is a no-op."""
        self._release()
        return SessionEnded(EndReason.CLOSED)

    def reset(self) -> SessionEnded:
        """Bus-reset the device, then release it."""
        transport = self._require_transport()
        try:
            transport.reset()
        except TransportError as e:
            # Device frequently drops off the bus mid-reset
            log.warning("USB reset of %04x:%04x reported: %s",
                        self.vendor_id, self.product_id, e)
        finally:
            self._release()
        return SessionEnded(EndReason.RESET)

    def describe(self) -> str:
        """One-line identity for the operator."""
        parts = [f"{self.vendor_id:04x}:{self.product_id:04x} ({self.mode})"]
        if self.name:
            parts.append(self.name)
        if self.serial:
            parts.append(self.serial)
        return " ".join(parts)

    def _require_transport(self) -> ControlTransport:
        if self._transport is None:
            raise SessionClosedError("Device session is closed")
        return self._transport

    def _release(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            log.info("Session %04x:%04x closed", self.vendor_id, self.product_id)

    def __enter__(self) -> DeviceSession:
        return self

    def __exit__(self, *exc) -> None:
        self._release()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<DeviceSession {self.describe()} {state}>"


def _default_factory(vid: int, pid: int) -> ControlTransport:
    return PyUsbControlTransport(vid, pid)


def open_session(product_id: int, vendor_id: int = APPLE_VID,
                 transport_factory: TransportFactory = _default_factory) -> DeviceSession:
    """Find, claim and identify a device.

    Raises:
        DeviceNotFoundError: Nothing matches vendor_id/product_id.
        DeviceOpenError: Device present but could not be claimed.
    """
    transport = transport_factory(vendor_id, product_id)
    transport.open()

    # Descriptors are optional; a session without them is still valid
    try:
        name = transport.product_name()
        serial = transport.serial_number()
    except BaseException:
        transport.close()
        raise
    session = DeviceSession(transport, product_id, vendor_id, name=name, serial=serial)
    log.info("Opened %s", session.describe())
    return session


def open_first(product_ids: Iterable[int], vendor_id: int = APPLE_VID,
               transport_factory: TransportFactory = _default_factory) -> DeviceSession:
    """Open the first product ID that answers (e.g. recovery, then DFU).

    A device that is present but cannot be claimed is skipped like a
    missing one; if nothing opens and at least one claim failed, the
    last ``DeviceOpenError`` is raised.
    """
    tried = tuple(product_ids)
    open_error: Optional[DeviceOpenError] = None
    for pid in tried:
        try:
            return open_session(pid, vendor_id, transport_factory)
        except DeviceNotFoundError:
            log.debug("No device at %04x:%04x", vendor_id, pid)
        except DeviceOpenError as e:
            log.warning("Couldn't open %04x:%04x: %s", vendor_id, pid, e)
            open_error = e
    if open_error is not None:
        raise open_error
    raise DeviceNotFoundError(
        "Couldn't open device @ " + " or ".join(f"0x{pid:x}" for pid in tried),
        product_ids=tried,
    )
