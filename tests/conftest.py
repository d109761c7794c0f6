"""Shared fakes for protocol tests; no USB hardware required."""

from typing import Callable, List, Optional

import pytest

from ibootutil.constants import (
    CMD_SEND_FILE,
    REQUEST_FILE,
    STATUS_FINALIZE_READY,
    STATUS_FINALIZE_VALIDATING,
    STATUS_PACKET_ACCEPTED,
)
from ibootutil.models import ControlRequest
from ibootutil.session import DeviceSession
from ibootutil.transport import ControlTransport


def status_response(flag: int) -> bytes:
    """6-byte status with *flag* at offset 4."""
    return bytes([0, 0, 0, 0, flag, 0])


class FakeBootloader(ControlTransport):
    """Records every request and answers status polls like iBoot.

    After a data packet the status flag is 5; after the terminal
    zero-length packet the next two polls return 6 then 7.  Tests can
    queue explicit status replies in ``replies`` or inject failures with
    ``fail_when(request) -> Optional[Exception]``.
    """

    def __init__(self, name: Optional[str] = "Apple Mobile Device (Recovery Mode)",
                 serial: Optional[str] = "CPID:8920 CPRV:15 ECID:000001"):
        self.requests: List[ControlRequest] = []
        self.replies: List[bytes] = []
        self.fail_when: Optional[Callable[[ControlRequest], Optional[Exception]]] = None
        self.name = name
        self.serial = serial
        self.open_calls = 0
        self.close_calls = 0
        self.reset_calls = 0
        self._open = False
        self._stage = [STATUS_PACKET_ACCEPTED]

    def open(self) -> None:
        self.open_calls += 1
        self._open = True

    def close(self) -> None:
        self.close_calls += 1
        self._open = False

    def reset(self) -> None:
        self.reset_calls += 1

    @property
    def is_open(self) -> bool:
        return self._open

    def product_name(self):
        return self.name

    def serial_number(self):
        return self.serial

    def transfer(self, request: ControlRequest):
        self.requests.append(request)
        if self.fail_when is not None:
            exc = self.fail_when(request)
            if exc is not None:
                raise exc

        if request.is_inbound:
            if self.replies:
                return self.replies.pop(0)
            flag = self._stage.pop(0) if len(self._stage) > 1 else self._stage[0]
            return status_response(flag)

        if request.request_type == REQUEST_FILE and request.request == CMD_SEND_FILE:
            if request.length:
                self._stage = [STATUS_PACKET_ACCEPTED]
            else:
                self._stage = [STATUS_FINALIZE_VALIDATING, STATUS_FINALIZE_READY]
        return request.length

    # -- helpers for assertions -------------------------------------------

    @property
    def file_requests(self) -> List[ControlRequest]:
        return [r for r in self.requests if r.request_type == REQUEST_FILE]

    @property
    def status_polls(self) -> List[ControlRequest]:
        return [r for r in self.requests if r.is_inbound]


@pytest.fixture
def bootloader() -> FakeBootloader:
    return FakeBootloader()


@pytest.fixture
def session(bootloader) -> DeviceSession:
    bootloader.open()
    return DeviceSession(bootloader, 0x1281,
                         name=bootloader.name, serial=bootloader.serial)
