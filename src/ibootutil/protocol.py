"""
iBoot command, status and file-upload protocols.

Command:
  Vendor OUT request 0x40/0x00 carrying the command text plus one NUL.
  A failed ``reboot`` is the device leaving the bus, not an error.

Status:
  Class IN request 0xA1/0x03 reading 6 bytes; resp[4] is the stage flag.

File upload:
  1. Packets of 2048 bytes as class OUT 0x21/0x01, wValue = packet index.
     Each packet must be acknowledged with status flag 5.
  2. Terminal zero-length 0x21/0x01 with wValue = packet count
     (result ignored).
  3. Status flag 6 (validating), then status flag 7 (ready).

Nothing here retries: the first failure aborts the operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple, Union

from .constants import (
    CMD_GET_STATUS,
    CMD_SEND_COMMAND,
    CMD_SEND_FILE,
    FINALIZE_FLAGS,
    MAX_CONTROL_TRANSFER,
    MAX_U16,
    PACKET_SIZE,
    REBOOT_COMMAND,
    REQUEST_COMMAND,
    REQUEST_FILE,
    REQUEST_STATUS,
    STATUS_FLAG_OFFSET,
    STATUS_PACKET_ACCEPTED,
    STATUS_RESPONSE_SIZE,
)
from .errors import (
    CommandError,
    CommandTooLong,
    FileUnreadableError,
    FinalizationFailed,
    PacketFailed,
    PacketRejected,
    StatusError,
    StatusTransferError,
    TransportError,
    UnexpectedStatusFlag,
    UploadError,
)
from .models import CommandOutcome, ControlRequest
from .session import DeviceSession

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


# =========================================================================
# Command protocol
# =========================================================================

def encode_command(command: str) -> bytes:
    """Command text as sent on the wire: UTF-8 plus a NUL terminator."""
    return command.encode('utf-8') + b'\x00'


def build_command_request(command: str) -> ControlRequest:
    return ControlRequest.outbound(
        REQUEST_COMMAND, CMD_SEND_COMMAND, 0, 0, encode_command(command),
    )


def send_command(session: DeviceSession, command: str) -> CommandOutcome:
    """Send one text command.

    Returns:
        ``CommandOutcome.SENT``, or
        ``CommandOutcome.REBOOT_ACKNOWLEDGED_BY_DISCONNECT`` when
        ``reboot`` fails to transfer because the device already left.
        The caller should close the session right away in that case.

    Raises:
        CommandTooLong: Text plus NUL exceeds one control transfer.
        CommandError: Transfer failed for any other command.
    """
    encoded = encode_command(command)
    if len(encoded) > MAX_CONTROL_TRANSFER:
        raise CommandTooLong(command, len(encoded), MAX_CONTROL_TRANSFER)
    request = build_command_request(command)
    try:
        session.transfer(request)
    except TransportError as e:
        if command == REBOOT_COMMAND:
            log.info("Device disconnected on reboot (%s)", e)
            return CommandOutcome.REBOOT_ACKNOWLEDGED_BY_DISCONNECT
        raise CommandError(command, e) from e
    log.debug("Sent command %r (%d bytes)", command, request.length)
    return CommandOutcome.SENT


# =========================================================================
# Status protocol
# =========================================================================

STATUS_REQUEST = ControlRequest.inbound(
    REQUEST_STATUS, CMD_GET_STATUS, 0, 0, STATUS_RESPONSE_SIZE,
)


def poll_status(session: DeviceSession, expected_flag: int) -> bytes:
    """Read the 6-byte status and check its flag byte.

    Returns the raw response.

    Raises:
        StatusTransferError: Transfer failed or fewer than 6 bytes came back.
        UnexpectedStatusFlag: resp[4] != expected_flag.
    """
    try:
        response = session.transfer(STATUS_REQUEST)
    except TransportError as e:
        raise StatusTransferError(f"couldn't receive status: {e}") from e

    response = bytes(response)
    if len(response) < STATUS_RESPONSE_SIZE:
        raise StatusTransferError(
            f"short status response ({len(response)} of {STATUS_RESPONSE_SIZE} bytes)"
        )

    flag = response[STATUS_FLAG_OFFSET]
    log.debug("Status %s (flag %d, expected %d)", response.hex(), flag, expected_flag)
    if flag != expected_flag:
        raise UnexpectedStatusFlag(expected_flag, flag)
    return response


# =========================================================================
# File-upload protocol
# =========================================================================

@dataclass(frozen=True)
class FileTransferPlan:
    """Packet layout for a payload of ``total_length`` bytes.

    Every packet is ``packet_size`` bytes except the last, which carries
    the remainder.  An exact multiple of the packet size yields only
    full packets; an empty payload yields none.
    """
    total_length: int
    packet_size: int = PACKET_SIZE

    def __post_init__(self):
        if self.total_length < 0:
            raise ValueError("total_length must be non-negative")
        if not 0 < self.packet_size <= MAX_CONTROL_TRANSFER:
            raise ValueError(
                f"packet_size must be in 1..{MAX_CONTROL_TRANSFER}"
            )

    @property
    def packet_count(self) -> int:
        return -(-self.total_length // self.packet_size)

    def packet_length(self, index: int) -> int:
        if not 0 <= index < self.packet_count:
            raise IndexError(f"packet {index} out of range")
        if index + 1 < self.packet_count:
            return self.packet_size
        return self.total_length - self.packet_size * index

    def packet_lengths(self) -> list:
        return [self.packet_length(i) for i in range(self.packet_count)]

    def packet_slices(self) -> Iterator[Tuple[int, slice]]:
        """Yield ``(index, slice)`` pairs in wire order."""
        for i in range(self.packet_count):
            start = i * self.packet_size
            yield i, slice(start, start + self.packet_length(i))


def build_packet_request(index: int, chunk: bytes) -> ControlRequest:
    return ControlRequest.outbound(REQUEST_FILE, CMD_SEND_FILE, index, 0, chunk)


def build_terminal_request(packet_count: int) -> ControlRequest:
    return ControlRequest.outbound(REQUEST_FILE, CMD_SEND_FILE, packet_count, 0, b'')


def send_file(session: DeviceSession, payload: Union[bytes, bytearray, memoryview],
              progress: Optional[ProgressCallback] = None) -> FileTransferPlan:
    """Upload *payload* and run the finalization handshake.

    Args:
        session: Open device session.
        payload: Raw file contents.
        progress: Optional ``progress(packets_done, packet_count)``,
            called after each acknowledged packet.

    Returns:
        The plan that was executed.

    Raises:
        PacketFailed: A data packet failed to transfer.
        PacketRejected: The device did not acknowledge a data packet.
        FinalizationFailed: Status 6 or 7 was not reached.
    """
    data = bytes(payload)
    plan = FileTransferPlan(len(data))
    total = plan.packet_count
    if total > MAX_U16:
        raise UploadError(f"payload too large: {total} packets (max {MAX_U16})")
    log.info("Uploading %d bytes in %d packets", plan.total_length, total)

    for index, span in plan.packet_slices():
        chunk = data[span]
        try:
            session.transfer(build_packet_request(index, chunk))
        except TransportError as e:
            log.error("Packet %d/%d failed: %s", index + 1, total, e)
            raise PacketFailed(index) from e

        try:
            poll_status(session, STATUS_PACKET_ACCEPTED)
        except StatusError as e:
            log.error("Packet %d/%d not acknowledged: %s", index + 1, total, e)
            raise PacketRejected(index) from e

        log.debug("Packet %d/%d acknowledged (%d bytes)", index + 1, total, len(chunk))
        if progress:
            progress(index + 1, total)

    _finalize(session, total)
    log.info("Upload complete (%d bytes)", plan.total_length)
    return plan


def _finalize(session: DeviceSession, packet_count: int) -> None:
    """Terminal packet, then wait for validating → ready."""
    try:
        session.transfer(build_terminal_request(packet_count))
    except TransportError as e:
        log.debug("Terminal packet not acknowledged: %s", e)

    for flag in FINALIZE_FLAGS:
        try:
            poll_status(session, flag)
        except StatusError as e:
            raise FinalizationFailed(flag) from e


# =========================================================================
# Payload files
# =========================================================================

def read_payload(path: Union[str, Path]) -> bytes:
    """Read a payload file.

    Raises:
        FileUnreadableError: Missing, a directory, or not readable.
    """
    p = Path(path)
    if not p.exists():
        raise FileUnreadableError(str(path), "File doesn't exist")
    if p.is_dir():
        raise FileUnreadableError(str(path), "Not a file")
    try:
        return p.read_bytes()
    except OSError as e:
        raise FileUnreadableError(str(path), f"Couldn't open file ({e.strerror})") from e


def send_file_path(session: DeviceSession, path: Union[str, Path],
                   progress: Optional[ProgressCallback] = None) -> FileTransferPlan:
    """Read *path* and upload it with ``send_file``."""
    payload = read_payload(path)
    return send_file(session, payload, progress)
