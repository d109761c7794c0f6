"""Runtime settings for ibootutil.

Nothing is persisted: every value has a built-in default that can be
overridden from the environment.

Usage:
    from ibootutil.conf import settings

    settings.timeout_ms          # control transfer timeout
    settings.prompt              # interactive shell prompt
    settings.strict_directives   # reject unknown '/' directives

Environment:
    IBOOTUTIL_TIMEOUT_MS, IBOOTUTIL_PROMPT, IBOOTUTIL_STRICT_DIRECTIVES
"""
from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from .constants import DEFAULT_PROMPT, DEFAULT_TIMEOUT_MS

log = logging.getLogger(__name__)

ENV_TIMEOUT = 'IBOOTUTIL_TIMEOUT_MS'
ENV_PROMPT = 'IBOOTUTIL_PROMPT'
ENV_STRICT = 'IBOOTUTIL_STRICT_DIRECTIVES'

_TRUTHY = {'1', 'true', 'yes', 'on'}
_FALSY = {'0', 'false', 'no', 'off', ''}


def _parse_timeout(raw: Optional[str]) -> int:
    if raw is None:
        return DEFAULT_TIMEOUT_MS
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        log.warning("Ignoring %s=%r (expected a positive integer)", ENV_TIMEOUT, raw)
        return DEFAULT_TIMEOUT_MS
    return value


def _parse_flag(raw: Optional[str]) -> bool:
    if raw is None:
        return False
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered not in _FALSY:
        log.warning("Ignoring %s=%r (expected yes/no)", ENV_STRICT, raw)
    return False


class Settings:
    """Application-wide settings singleton.

    Components read from here instead of consulting the environment
    directly.  ``reload()`` re-reads the environment (used by tests).
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self.timeout_ms: int = DEFAULT_TIMEOUT_MS
        self.prompt: str = DEFAULT_PROMPT
        self.strict_directives: bool = False
        self.reload(environ)

    def reload(self, environ: Optional[Mapping[str, str]] = None) -> None:
        env = os.environ if environ is None else environ
        self.timeout_ms = _parse_timeout(env.get(ENV_TIMEOUT))
        self.prompt = env.get(ENV_PROMPT, DEFAULT_PROMPT)
        self.strict_directives = _parse_flag(env.get(ENV_STRICT))
        log.debug("Settings: timeout=%dms prompt=%r strict=%s",
                  self.timeout_ms, self.prompt, self.strict_directives)


# Module-level singleton, import and use directly
settings = Settings()
