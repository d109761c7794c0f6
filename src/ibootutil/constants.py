"""
Wire constants for the iBoot USB control-transfer protocol.

Request layout (bmRequestType / bRequest / wValue / wIndex / wLength)::

    command    0x40  0x00  0             0  strlen(cmd)+1
    file       0x21  0x01  packet index  0  <= 2048
    terminal   0x21  0x01  packet count  0  0
    status     0xA1  0x03  0             0  6   (resp[4] = flag)
"""

# =========================================================================
# USB identifiers
# =========================================================================

APPLE_VID = 0x05AC

RECOVERY_PID = 0x1281  # iBoot recovery mode
DFU_PID = 0x1227       # firmware download (DFU) mode

MODE_NAMES: dict[int, str] = {
    RECOVERY_PID: "recovery",
    DFU_PID: "dfu",
}

USB_CONFIGURATION = 1
USB_INTERFACE = 0

# =========================================================================
# Control requests
# =========================================================================

REQUEST_COMMAND = 0x40  # vendor, host -> device
REQUEST_FILE = 0x21     # class/interface, host -> device
REQUEST_STATUS = 0xA1   # class/interface, device -> host

DIRECTION_IN = 0x80

CMD_SEND_COMMAND = 0x00
CMD_SEND_FILE = 0x01
CMD_GET_STATUS = 0x03

# libusb refuses control transfers above one page on most platforms
MAX_CONTROL_TRANSFER = 4096
MAX_U16 = 0xFFFF

DEFAULT_TIMEOUT_MS = 1000

# =========================================================================
# Upload / status
# =========================================================================

PACKET_SIZE = 0x800

STATUS_RESPONSE_SIZE = 6
STATUS_FLAG_OFFSET = 4

STATUS_PACKET_ACCEPTED = 5
STATUS_FINALIZE_VALIDATING = 6
STATUS_FINALIZE_READY = 7
FINALIZE_FLAGS = (STATUS_FINALIZE_VALIDATING, STATUS_FINALIZE_READY)

REBOOT_COMMAND = "reboot"

# =========================================================================
# Interactive shell
# =========================================================================

ESCAPE_PREFIX = "/"
DIRECTIVE_EXIT = "/exit"
DIRECTIVE_RESET = "/reset"
DIRECTIVE_SENDFILE = "/sendfile"

DEFAULT_PROMPT = "iDevice$ "
