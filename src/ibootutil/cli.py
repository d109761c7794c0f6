#!/usr/bin/env python3
"""
ibootutil - Command Line Interface

Talks to iBoot over USB in recovery or DFU mode: send a single command,
upload a single file, or open an interactive shell.
"""

import argparse
import logging
import sys
from typing import Callable, Iterable, Optional

from .__version__ import __version__
from .constants import DFU_PID, RECOVERY_PID
from .errors import (
    CommandError,
    CommandTooLong,
    DeviceNotFoundError,
    FileUnreadableError,
    IBootError,
    SessionError,
    UploadError,
)
from .models import CommandOutcome, EndReason, SessionEnded
from .protocol import send_command, send_file_path
from .session import DeviceSession, open_first, open_session
from .shell import run_interactive
from .transport import find_devices

log = logging.getLogger(__name__)

SessionOpener = Callable[[Iterable[int]], DeviceSession]


def _open(product_ids: Iterable[int]) -> DeviceSession:
    ids = tuple(product_ids)
    if len(ids) == 1:
        return open_session(ids[0])
    return open_first(ids)


def _hex_product_id(text: str) -> int:
    try:
        value = int(text, 16)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid idProduct: {text!r}")
    if not 0 < value <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"idProduct out of range: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ibootutil",
        description="iPhone USB communication tool (iBoot recovery/DFU)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    ibootutil -c "getenv build-version"    Send a single command
    ibootutil -f iBEC.img3 -r              Send a file, then reset USB
    ibootutil -p                           Open a shell with iBoot
    ibootutil -a 1227 -p                   Shell against idProduct 0x1227
    ibootutil -l                           List attached devices

Shell directives: /exit, /reset, /sendfile <path>
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument(
        "-a", dest="product_id", metavar="idProduct",
        type=_hex_product_id,
        help="Specify idProduct value manually (hex)"
    )
    parser.add_argument(
        "-r", dest="reset", action="store_true",
        help="Reset the usb connection after -c or -f"
    )

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("-c", dest="command", metavar="command",
                       help="Send a single command")
    modes.add_argument("-f", dest="file", metavar="file",
                       help="Send a file")
    modes.add_argument("-s", dest="script", metavar="script",
                       help="Run script at specified path (unsupported)")
    modes.add_argument("-p", dest="shell", action="store_true",
                       help="Open a shell with iBoot")
    modes.add_argument("-l", "--list", dest="list_devices", action="store_true",
                       help="List devices in recovery or DFU mode")
    return parser


def setup_logging(verbose: int) -> None:
    """Configure root logging from the -v count."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG,
                            format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('usb').setLevel(logging.INFO)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='[%(levelname)s] %(message)s')


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.product_id is not None:
        print(f"Setting idProduct to 0x{args.product_id:x}")

    if args.command is not None:
        return command_mode(args.command, args.product_id, reset=args.reset)
    if args.file is not None:
        return file_mode(args.file, args.product_id, reset=args.reset)
    if args.script is not None:
        return script_mode(args.script)
    if args.shell:
        return shell_mode(args.product_id)
    if args.list_devices:
        return list_mode(args.product_id)

    parser.print_help()
    return 0


# =========================================================================
# Modes
# =========================================================================

def _open_or_report(opener: SessionOpener, ids: tuple) -> Optional[DeviceSession]:
    """Open a session, printing the failure for the operator."""
    try:
        session = opener(ids)
    except SessionError as e:
        print("Couldn't open device @ " + " or ".join(f"0x{pid:x}" for pid in ids))
        if not isinstance(e, DeviceNotFoundError):
            print(f"  {e}")
        return None
    print(session.describe())
    return session


def _finish(session: DeviceSession, reset: bool) -> SessionEnded:
    return session.reset() if reset else session.close()


def command_mode(command: str, product_id: Optional[int] = None,
                 reset: bool = False, opener: SessionOpener = _open) -> int:
    """-c: send one command and leave."""
    session = _open_or_report(opener, (product_id or RECOVERY_PID,))
    if session is None:
        return 1

    try:
        outcome = send_command(session, command)
        if outcome is CommandOutcome.REBOOT_ACKNOWLEDGED_BY_DISCONNECT:
            print("Rebooting device...")
            return 0
        print(f"Sent command: {command}")
        _finish(session, reset)
        return 0
    except CommandError as e:
        log.debug("Command failed: %s", e.cause)
        print("Error sending command")
        if isinstance(e, CommandTooLong):
            print(e)
        return 1
    finally:
        session.close()


def file_mode(path: str, product_id: Optional[int] = None,
              reset: bool = False, opener: SessionOpener = _open) -> int:
    """-f: upload one file; without -a try recovery, then DFU."""
    ids = (product_id,) if product_id else (RECOVERY_PID, DFU_PID)
    session = _open_or_report(opener, ids)
    if session is None:
        return 1

    try:
        send_file_path(session, path)
        print(f"Sent file {path}")
        _finish(session, reset)
        return 0
    except (FileUnreadableError, UploadError) as e:
        print(f"Error: {e}")
        print("Couldn't send file")
        return 1
    finally:
        session.close()


def script_mode(path: str) -> int:
    """-s: script execution is not implemented."""
    print(f"Couldn't run script {path}: script execution is not supported")
    return 1


def shell_mode(product_id: Optional[int] = None,
               opener: SessionOpener = _open,
               read_line: Callable[[str], str] = input) -> int:
    """-p: interactive shell until /exit, /reset, reboot or EOF."""
    session = _open_or_report(opener, (product_id or RECOVERY_PID,))
    if session is None:
        return 1

    try:
        ended = run_interactive(session, read_line=read_line)
    except KeyboardInterrupt:
        print()
        return 130
    except IBootError as e:
        print(f"Error: {e}")
        return 1
    finally:
        session.close()

    if ended.reason is EndReason.RESET:
        print("Device reset")
    return 0


def list_mode(product_id: Optional[int] = None) -> int:
    """-l: list attached devices without claiming them."""
    ids = (product_id,) if product_id else (RECOVERY_PID, DFU_PID)
    try:
        devices = find_devices(ids)
    except SessionError as e:
        print(f"Error: {e}")
        return 1
    if not devices:
        print("No device in recovery or DFU mode found.")
        return 1
    for dev in devices:
        where = f"bus {dev.bus} addr {dev.address}" if dev.bus is not None else ""
        print(f"[{dev.vid_pid}] {dev.mode:<8} {where} {dev.serial or ''}".rstrip())
    return 0


if __name__ == "__main__":
    sys.exit(main())
