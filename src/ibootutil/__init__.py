"""
ibootutil - iBoot USB communication tool

Host-side client for iBoot in recovery or DFU mode, over USB control
transfers.

Features:
- Send text commands to iBoot
- Upload files in 2048-byte packets with per-packet acknowledgment
- Interactive shell with /exit, /reset and /sendfile directives

Usage:
    # As a library
    from ibootutil import open_session, send_command, RECOVERY_PID
    with open_session(RECOVERY_PID) as session:
        send_command(session, "setenv auto-boot true")

    # Command line
    ibootutil -c "reboot"
    ibootutil -f iBSS.img3
    ibootutil -p
"""

from ibootutil.__version__ import __version__
from ibootutil.constants import APPLE_VID, DFU_PID, RECOVERY_PID
from ibootutil.errors import (
    CommandError,
    CommandTooLong,
    DeviceNotFoundError,
    DeviceOpenError,
    FileUnreadableError,
    IBootError,
    StatusError,
    TransportError,
    UploadError,
)
from ibootutil.models import CommandOutcome, ControlRequest, EndReason, SessionEnded
from ibootutil.protocol import (
    FileTransferPlan,
    poll_status,
    send_command,
    send_file,
    send_file_path,
)
from ibootutil.session import DeviceSession, open_first, open_session
from ibootutil.shell import run_interactive

__all__ = [
    # Version
    "__version__",
    # USB IDs
    "APPLE_VID",
    "RECOVERY_PID",
    "DFU_PID",
    # Session
    "DeviceSession",
    "open_session",
    "open_first",
    "SessionEnded",
    "EndReason",
    # Protocol
    "ControlRequest",
    "CommandOutcome",
    "FileTransferPlan",
    "send_command",
    "poll_status",
    "send_file",
    "send_file_path",
    "run_interactive",
    # Errors
    "IBootError",
    "TransportError",
    "DeviceNotFoundError",
    "DeviceOpenError",
    "CommandError",
    "CommandTooLong",
    "StatusError",
    "UploadError",
    "FileUnreadableError",
]
