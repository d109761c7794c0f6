"""
ibootutil Models - Pure data classes with no USB dependencies.

Shared by the transport, session, protocol and shell layers.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

from .constants import (
    DIRECTION_IN,
    MAX_CONTROL_TRANSFER,
    MAX_U16,
    MODE_NAMES,
)

# =============================================================================
# Control requests
# =============================================================================


@dataclass(frozen=True)
class ControlRequest:
    """One USB control transfer: setup packet plus optional OUT payload.

    ``length`` is wLength: the payload size for OUT requests, the
    maximum number of bytes to read for IN requests.
    """
    request_type: int
    request: int
    value: int = 0
    index: int = 0
    data: bytes = field(default=b"", repr=False)
    length: int = 0

    def __post_init__(self):
        for name in ("request_type", "request"):
            if not 0 <= getattr(self, name) <= 0xFF:
                raise ValueError(f"{name} must fit in one byte")
        for name in ("value", "index", "length"):
            if not 0 <= getattr(self, name) <= MAX_U16:
                raise ValueError(f"{name} must fit in 16 bits")
        if self.length > MAX_CONTROL_TRANSFER:
            raise ValueError(
                f"length {self.length} exceeds control transfer limit "
                f"({MAX_CONTROL_TRANSFER})"
            )
        if self.is_inbound:
            if self.data:
                raise ValueError("IN requests carry no payload")
        elif len(self.data) != self.length:
            raise ValueError(
                f"declared length {self.length} != payload length {len(self.data)}"
            )

    @classmethod
    def outbound(cls, request_type: int, request: int, value: int = 0,
                 index: int = 0, data: bytes = b"") -> 'ControlRequest':
        """Host -> device request; wLength follows the payload."""
        data = bytes(data)
        return cls(request_type, request, value, index, data, len(data))

    @classmethod
    def inbound(cls, request_type: int, request: int, value: int = 0,
                index: int = 0, length: int = 0) -> 'ControlRequest':
        """Device -> host request reading up to *length* bytes."""
        return cls(request_type, request, value, index, b"", length)

    @property
    def is_inbound(self) -> bool:
        return bool(self.request_type & DIRECTION_IN)


# =============================================================================
# Device identity
# =============================================================================


@dataclass
class DeviceInfo:
    """An attached device as seen during enumeration (before open)."""
    vid: int
    pid: int
    bus: Optional[int] = None
    address: Optional[int] = None
    serial: Optional[str] = None

    @property
    def mode(self) -> str:
        """'recovery', 'dfu', or 'unknown' for an overridden product ID."""
        return MODE_NAMES.get(self.pid, "unknown")

    @property
    def vid_pid(self) -> str:
        return f"{self.vid:04x}:{self.pid:04x}"


# =============================================================================
# Outcomes
# =============================================================================


class CommandOutcome(Enum):
    """Result of a delivered command."""
    SENT = auto()
    # Device dropped off the bus while handling "reboot"
    REBOOT_ACKNOWLEDGED_BY_DISCONNECT = auto()


class EndReason(Enum):
    """Why a device session ended."""
    CLOSED = auto()
    RESET = auto()
    REBOOTED = auto()


@dataclass(frozen=True)
class SessionEnded:
    """Termination signal handed back to the top-level driver.

    Only the driver decides whether this ends the process.
    """
    reason: EndReason
