"""
Interactive iBoot shell.

Every input line is either a shell directive or a device command:

    /exit             close the session and leave
    /reset            USB-reset the device and leave
    /sendfile <path>  upload a file, stay in the shell
    anything else     sent verbatim as an iBoot command

Input starting with ``/`` that is not a directive is sent to the device
as-is unless strict directive checking is on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .conf import settings
from .constants import (
    DIRECTIVE_EXIT,
    DIRECTIVE_RESET,
    DIRECTIVE_SENDFILE,
    ESCAPE_PREFIX,
)
from .errors import (
    CommandError,
    CommandTooLong,
    FileUnreadableError,
    SessionClosedError,
    UploadError,
)
from .models import CommandOutcome, EndReason, SessionEnded
from .protocol import send_command, send_file_path
from .session import DeviceSession

log = logging.getLogger(__name__)

# readline gives input() line editing and history where the platform has it
try:
    import readline  # noqa: F401
    READLINE_AVAILABLE = True
except ImportError:
    READLINE_AVAILABLE = False


# =========================================================================
# Input classification
# =========================================================================

@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class SendFile:
    path: str


@dataclass(frozen=True)
class Command:
    text: str


@dataclass(frozen=True)
class Invalid:
    message: str


Directive = Union[Exit, Reset, SendFile, Command, Invalid]


def parse_line(line: str, strict: bool = False) -> Directive:
    """Classify one line of operator input."""
    if not line.startswith(ESCAPE_PREFIX):
        return Command(line)
    if line == DIRECTIVE_EXIT:
        return Exit()
    if line == DIRECTIVE_RESET:
        return Reset()

    head, _, rest = line.partition(' ')
    if head == DIRECTIVE_SENDFILE:
        if not rest:
            return Invalid(f"usage: {DIRECTIVE_SENDFILE} <path>")
        return SendFile(rest)

    if strict:
        return Invalid(f"unknown directive: {head}")
    return Command(line)


# =========================================================================
# Shell loop
# =========================================================================

class InteractiveShell:
    """Read-dispatch loop over one open ``DeviceSession``.

    ``read_line(prompt)`` supplies input (``input`` by default) and
    raises ``EOFError`` at end of input; ``write(text)`` reports to the
    operator.  ``run()`` returns once the session has ended.
    """

    def __init__(self, session: DeviceSession,
                 read_line: Callable[[str], str] = input,
                 write: Callable[[str], None] = print,
                 prompt: Optional[str] = None,
                 strict_directives: Optional[bool] = None):
        self.session = session
        self.read_line = read_line
        self.write = write
        self.prompt = settings.prompt if prompt is None else prompt
        self.strict = (settings.strict_directives if strict_directives is None
                       else strict_directives)

    def run(self) -> SessionEnded:
        while True:
            try:
                line = self.read_line(self.prompt)
            except EOFError:
                self.write("")
                return self.session.close()

            ended = self.dispatch(parse_line(line, self.strict))
            if ended is not None:
                return ended

    def dispatch(self, directive: Directive) -> Optional[SessionEnded]:
        """Handle one directive; a ``SessionEnded`` stops the loop."""
        if isinstance(directive, Exit):
            return self.session.close()
        if isinstance(directive, Reset):
            return self.session.reset()
        if isinstance(directive, SendFile):
            self._send_file(directive.path)
            return None
        if isinstance(directive, Invalid):
            self.write(f"Error: {directive.message}")
            return None
        return self._send_command(directive.text)

    def _send_command(self, text: str) -> Optional[SessionEnded]:
        try:
            outcome = send_command(self.session, text)
        except CommandError as e:
            log.debug("Command failed: %s", e.cause)
            self.write("Error sending command")
            if isinstance(e, CommandTooLong):
                self.write(str(e))
            return None

        if outcome is CommandOutcome.REBOOT_ACKNOWLEDGED_BY_DISCONNECT:
            self.write("Rebooting device...")
            self.session.close()
            return SessionEnded(EndReason.REBOOTED)
        self.write(f"Sent command: {text}")
        return None

    def _send_file(self, path: str) -> None:
        try:
            send_file_path(self.session, path)
        except (FileUnreadableError, UploadError) as e:
            self.write(f"Error: {e}")
            self.write("Couldn't send file")
            return
        self.write(f"Sent file {path}")


def run_interactive(session: DeviceSession,
                    read_line: Callable[[str], str] = input,
                    write: Callable[[str], None] = print,
                    prompt: Optional[str] = None) -> SessionEnded:
    """Run the interactive shell until the session ends."""
    if not session.is_open:
        raise SessionClosedError("Device session is closed")
    log.debug("Interactive shell on %s (readline=%s)",
              session.describe(), READLINE_AVAILABLE)
    return InteractiveShell(session, read_line, write, prompt).run()
