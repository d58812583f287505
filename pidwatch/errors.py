"""
Errors raised by supervised process operations.

Every error carries the process kind and, when known, its pid so callers can
report which child failed.
"""

from typing import Optional


class PidwatchError(Exception):
    """Base class for pidwatch failures."""

    def __init__(self, message: str, kind: Optional[str] = None, pid: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.pid = pid


class SpawnError(PidwatchError):
    """The OS refused to launch the child."""


class ProcessNotAliveError(PidwatchError):
    """The started process could not be confirmed running."""


class StartupVerificationError(ProcessNotAliveError):
    """The child's pid file could not be read back after the start wait."""


class PostStartHookError(PidwatchError):
    """The caller-supplied post-start hook failed."""


class PersistenceError(PidwatchError):
    """Writing the data file failed."""


class CorruptStateError(PidwatchError):
    """A data or pid file on disk is unreadable or malformed."""


class QueryError(PidwatchError):
    """Inspecting the OS process table failed."""
