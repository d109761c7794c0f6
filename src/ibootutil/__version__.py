"""ibootutil version information."""

__version__ = "1.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 1.0.0 - Single command, single file and interactive shell against iBoot
#         over USB control transfers
# 1.0.1 - Fall back to DFU product ID when no recovery-mode device answers
#         a file upload
# 1.1.0 - Exceptions instead of status codes, session context manager,
#         reset/reboot no longer exit the process, device listing (-l)
