"""Exception hierarchy for ibootutil.

Transport errors come from the USB layer, the rest from the protocol
layers built on top of it.  Everything derives from ``IBootError`` so the
CLI can report any failure with a single handler.
"""

from typing import Optional


class IBootError(RuntimeError):
    """Base for all ibootutil errors."""


# =========================================================================
# Transport
# =========================================================================

class TransportError(IBootError):
    """A control transfer did not complete."""


class TransferStalled(TransportError):
    """Device stalled the control pipe (EPIPE)."""


class TransferTimeout(TransportError):
    """Control transfer timed out."""


class TransferFailed(TransportError):
    """Any other transfer failure the platform does not distinguish."""


# =========================================================================
# Session
# =========================================================================

class SessionError(IBootError):
    """Device session could not be established."""


class DeviceNotFoundError(SessionError):
    """No device matches the vendor/product ID."""

    def __init__(self, message: str, product_ids: tuple = ()):
        super().__init__(message)
        self.product_ids = product_ids


class DeviceOpenError(SessionError):
    """Device is present but could not be opened exclusively."""


class SessionClosedError(IBootError):
    """Operation attempted on a session that was already closed."""


# =========================================================================
# Protocol
# =========================================================================

class CommandError(IBootError):
    """A text command could not be delivered."""

    def __init__(self, command: str, cause: Optional[TransportError] = None,
                 message: Optional[str] = None):
        super().__init__(message or f"Error sending command: {command!r}")
        self.command = command
        self.cause = cause


class CommandTooLong(CommandError):
    """Encoded command does not fit in one control transfer."""

    def __init__(self, command: str, length: int, limit: int):
        super().__init__(command, message=f"Command too long: {length} bytes (max {limit})")
        self.length = length
        self.limit = limit


class StatusError(IBootError):
    """Status poll failed."""


class StatusTransferError(StatusError):
    """Status request failed or returned a short response."""


class UnexpectedStatusFlag(StatusError):
    """Flag byte of the status response did not match."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"invalid status response: expected flag {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class UploadError(IBootError):
    """File upload aborted."""


class PacketFailed(UploadError):
    """Transfer of a data packet failed."""

    def __init__(self, index: int):
        super().__init__(f"couldn't send packet {index}")
        self.index = index


class PacketRejected(UploadError):
    """Device did not acknowledge a data packet."""

    def __init__(self, index: int):
        super().__init__(f"device rejected packet {index}")
        self.index = index


class FinalizationFailed(UploadError):
    """End-of-transfer handshake did not reach the expected stage."""

    def __init__(self, stage_flag: int):
        super().__init__(f"finalization failed waiting for status {stage_flag}")
        self.stage_flag = stage_flag


class FileUnreadableError(IBootError):
    """Payload file is missing or cannot be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason
