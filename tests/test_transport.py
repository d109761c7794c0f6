"""
Tests for transport -- pyusb control transport and device discovery.

Tests cover:
- open(): find, kernel driver detach, configuration, claim
- open() failure paths (not found, claim failure, no backend)
- transfer(): ctrl_transfer arguments for OUT and IN requests
- pyusb error translation (timeout, stall, generic)
- close() / reset() / string descriptors
- find_devices() enumeration
"""

import errno
import unittest
from array import array
from unittest.mock import MagicMock, patch

import usb.core

from ibootutil.constants import APPLE_VID, DFU_PID, RECOVERY_PID, USB_CONFIGURATION
from ibootutil.errors import (
    DeviceNotFoundError,
    DeviceOpenError,
    TransferFailed,
    TransferStalled,
    TransferTimeout,
)
from ibootutil.models import ControlRequest
from ibootutil.transport import (
    PyUsbControlTransport,
    find_devices,
    translate_usb_error,
)


def _make_usb_device(product=2, serial=3) -> MagicMock:
    dev = MagicMock()
    dev.iProduct = product
    dev.iSerialNumber = serial
    dev.is_kernel_driver_active.return_value = False
    dev.bus = 1
    dev.address = 7
    return dev


class TestErrorTranslation(unittest.TestCase):
    """translate_usb_error() mapping."""

    def test_timeout(self):
        err = usb.core.USBTimeoutError("Operation timed out", errno=errno.ETIMEDOUT)
        self.assertIsInstance(translate_usb_error(err), TransferTimeout)

    def test_stall(self):
        err = usb.core.USBError("Pipe error", errno=errno.EPIPE)
        self.assertIsInstance(translate_usb_error(err), TransferStalled)

    def test_other(self):
        err = usb.core.USBError("No such device", errno=errno.ENODEV)
        self.assertIsInstance(translate_usb_error(err), TransferFailed)


@patch("ibootutil.transport.usb.util.dispose_resources")
@patch("ibootutil.transport.usb.util.release_interface")
@patch("ibootutil.transport.usb.util.claim_interface")
@patch("ibootutil.transport.usb.core.find")
class TestOpenClose(unittest.TestCase):
    """Device open/close sequence."""

    def test_open_success(self, find, claim, release, dispose):
        dev = _make_usb_device()
        find.return_value = dev
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()

        find.assert_called_once_with(idVendor=APPLE_VID, idProduct=RECOVERY_PID)
        dev.set_configuration.assert_called_once_with(USB_CONFIGURATION)
        claim.assert_called_once_with(dev, 0)
        self.assertTrue(t.is_open)
        self.assertIs(t.device, dev)

    def test_detaches_kernel_driver(self, find, claim, release, dispose):
        dev = _make_usb_device()
        dev.is_kernel_driver_active.return_value = True
        find.return_value = dev
        PyUsbControlTransport(APPLE_VID, RECOVERY_PID).open()
        dev.detach_kernel_driver.assert_called_once_with(0)

    def test_kernel_driver_check_unsupported(self, find, claim, release, dispose):
        dev = _make_usb_device()
        dev.is_kernel_driver_active.side_effect = NotImplementedError
        find.return_value = dev
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()
        self.assertTrue(t.is_open)

    def test_not_found(self, find, claim, release, dispose):
        find.return_value = None
        t = PyUsbControlTransport(APPLE_VID, DFU_PID)
        with self.assertRaises(DeviceNotFoundError) as ctx:
            t.open()
        self.assertEqual(ctx.exception.product_ids, (DFU_PID,))
        self.assertFalse(t.is_open)
        claim.assert_not_called()

    def test_claim_failure_releases(self, find, claim, release, dispose):
        dev = _make_usb_device()
        find.return_value = dev
        claim.side_effect = usb.core.USBError("Resource busy", errno=errno.EBUSY)
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        with self.assertRaises(DeviceOpenError):
            t.open()
        dispose.assert_called_once_with(dev)
        self.assertFalse(t.is_open)
        self.assertIsNone(t.device)

    def test_configuration_failure(self, find, claim, release, dispose):
        dev = _make_usb_device()
        dev.set_configuration.side_effect = usb.core.USBError("Access denied",
                                                              errno=errno.EACCES)
        find.return_value = dev
        with self.assertRaises(DeviceOpenError):
            PyUsbControlTransport(APPLE_VID, RECOVERY_PID).open()
        dispose.assert_called_once_with(dev)

    def test_no_backend(self, find, claim, release, dispose):
        find.side_effect = usb.core.NoBackendError("No backend available")
        with self.assertRaises(DeviceOpenError):
            PyUsbControlTransport(APPLE_VID, RECOVERY_PID).open()

    def test_close(self, find, claim, release, dispose):
        dev = _make_usb_device()
        find.return_value = dev
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()
        t.close()
        release.assert_called_once_with(dev, 0)
        dispose.assert_called_once_with(dev)
        self.assertFalse(t.is_open)
        self.assertIsNone(t.device)

    def test_close_twice(self, find, claim, release, dispose):
        find.return_value = _make_usb_device()
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()
        t.close()
        t.close()
        dispose.assert_called_once()

    def test_close_when_device_gone(self, find, claim, release, dispose):
        find.return_value = _make_usb_device()
        release.side_effect = usb.core.USBError("No such device", errno=errno.ENODEV)
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()
        t.close()
        dispose.assert_called_once()
        self.assertFalse(t.is_open)

    def test_context_manager(self, find, claim, release, dispose):
        find.return_value = _make_usb_device()
        with PyUsbControlTransport(APPLE_VID, RECOVERY_PID) as t:
            self.assertTrue(t.is_open)
        self.assertFalse(t.is_open)


@patch("ibootutil.transport.usb.util.dispose_resources")
@patch("ibootutil.transport.usb.util.release_interface")
@patch("ibootutil.transport.usb.util.claim_interface")
@patch("ibootutil.transport.usb.core.find")
class TestTransfer(unittest.TestCase):
    """transfer() argument mapping and error translation."""

    def _open(self, find, timeout=250):
        self.dev = _make_usb_device()
        find.return_value = self.dev
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID, timeout=timeout)
        t.open()
        return t

    def test_outbound(self, find, *_):
        t = self._open(find)
        self.dev.ctrl_transfer.return_value = 3
        n = t.transfer(ControlRequest.outbound(0x40, 0, 0, 0, b"go\x00"))
        self.assertEqual(n, 3)
        self.dev.ctrl_transfer.assert_called_once_with(
            0x40, 0, 0, 0, b"go\x00", timeout=250)

    def test_zero_length_outbound(self, find, *_):
        t = self._open(find)
        self.dev.ctrl_transfer.return_value = 0
        t.transfer(ControlRequest.outbound(0x21, 1, 3, 0, b""))
        self.dev.ctrl_transfer.assert_called_once_with(0x21, 1, 3, 0, b"", timeout=250)

    def test_inbound(self, find, *_):
        t = self._open(find)
        self.dev.ctrl_transfer.return_value = array('B', [0, 0, 0, 0, 5, 0])
        data = t.transfer(ControlRequest.inbound(0xA1, 3, 0, 0, 6))
        self.assertEqual(data, bytes([0, 0, 0, 0, 5, 0]))
        self.dev.ctrl_transfer.assert_called_once_with(0xA1, 3, 0, 0, 6, timeout=250)

    def test_default_timeout_from_settings(self, find, *_):
        self.dev = _make_usb_device()
        find.return_value = self.dev
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        t.open()
        with patch("ibootutil.transport.settings") as settings:
            settings.timeout_ms = 4321
            t.transfer(ControlRequest.inbound(0xA1, 3, 0, 0, 6))
        self.assertEqual(self.dev.ctrl_transfer.call_args.kwargs["timeout"], 4321)

    def test_stall(self, find, *_):
        t = self._open(find)
        self.dev.ctrl_transfer.side_effect = usb.core.USBError("Pipe error", errno=errno.EPIPE)
        with self.assertRaises(TransferStalled):
            t.transfer(ControlRequest.outbound(0x40, 0, data=b"reboot\x00"))

    def test_timeout(self, find, *_):
        t = self._open(find)
        self.dev.ctrl_transfer.side_effect = usb.core.USBTimeoutError(
            "Operation timed out", errno=errno.ETIMEDOUT)
        with self.assertRaises(TransferTimeout):
            t.transfer(ControlRequest.inbound(0xA1, 3, 0, 0, 6))

    def test_not_open(self, find, *_):
        t = PyUsbControlTransport(APPLE_VID, RECOVERY_PID)
        with self.assertRaises(TransferFailed):
            t.transfer(ControlRequest.inbound(0xA1, 3, 0, 0, 6))

    def test_reset(self, find, *_):
        t = self._open(find)
        t.reset()
        self.dev.reset.assert_called_once()

    def test_reset_error_translated(self, find, *_):
        t = self._open(find)
        self.dev.reset.side_effect = usb.core.USBError("No such device", errno=errno.ENODEV)
        with self.assertRaises(TransferFailed):
            t.reset()


@patch("ibootutil.transport.usb.util.get_string")
@patch("ibootutil.transport.usb.util.claim_interface")
@patch("ibootutil.transport.usb.core.find")
class TestStringDescriptors(unittest.TestCase):

    def test_product_and_serial(self, find, claim, get_string):
        dev = _make_usb_device(product=2, serial=3)
        find.return_value = dev
        get_string.side_effect = lambda d, i: {2: "Apple Mobile Device (DFU Mode)",
                                               3: "CPID:8920 ECID:1"}[i]
        t = PyUsbControlTransport(APPLE_VID, DFU_PID)
        t.open()
        self.assertEqual(t.product_name(), "Apple Mobile Device (DFU Mode)")
        self.assertEqual(t.serial_number(), "CPID:8920 ECID:1")

    def test_absent_index(self, find, claim, get_string):
        find.return_value = _make_usb_device(product=0, serial=0)
        t = PyUsbControlTransport(APPLE_VID, DFU_PID)
        t.open()
        self.assertIsNone(t.product_name())
        self.assertIsNone(t.serial_number())
        get_string.assert_not_called()

    def test_unreadable(self, find, claim, get_string):
        find.return_value = _make_usb_device()
        get_string.side_effect = ValueError("The device has no langid")
        t = PyUsbControlTransport(APPLE_VID, DFU_PID)
        t.open()
        self.assertIsNone(t.product_name())

    def test_closed(self, find, claim, get_string):
        t = PyUsbControlTransport(APPLE_VID, DFU_PID)
        self.assertIsNone(t.serial_number())


@patch("ibootutil.transport.usb.util.get_string")
@patch("ibootutil.transport.usb.core.find")
class TestFindDevices(unittest.TestCase):

    def test_lists_both_modes(self, find, get_string):
        rec = _make_usb_device()
        dfu = _make_usb_device(serial=0)
        find.side_effect = lambda **kw: {RECOVERY_PID: [rec], DFU_PID: [dfu]}[kw["idProduct"]]
        get_string.return_value = "ECID:1"

        devices = find_devices()
        self.assertEqual([d.pid for d in devices], [RECOVERY_PID, DFU_PID])
        self.assertEqual(devices[0].serial, "ECID:1")
        self.assertIsNone(devices[1].serial)
        self.assertEqual(devices[0].bus, 1)
        self.assertEqual(devices[0].address, 7)

    def test_none_attached(self, find, get_string):
        find.return_value = iter(())
        self.assertEqual(find_devices(), [])

    def test_no_backend(self, find, get_string):
        find.side_effect = usb.core.NoBackendError("No backend available")
        with self.assertRaises(DeviceOpenError):
            find_devices()

    def test_serial_unreadable(self, find, get_string):
        find.return_value = [_make_usb_device()]
        get_string.side_effect = usb.core.USBError("Access denied", errno=errno.EACCES)
        devices = find_devices((RECOVERY_PID,))
        self.assertEqual(len(devices), 1)
        self.assertIsNone(devices[0].serial)


if __name__ == '__main__':
    unittest.main()
