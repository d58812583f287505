"""
Lookup of OS processes by pid.

A thin layer over psutil so the supervisor can ask "what runs at this pid"
and get back either an entry or None.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import psutil

from .errors import QueryError

logger = logging.getLogger(__name__)


@dataclass
class ProcessEntry:
    """A process found in the OS process table."""

    pid: int
    name: str
    exe: str = ""

    def matches(self, command: str) -> bool:
        """Check whether this process looks like it was started from command."""
        if not command:
            return False
        if self.exe and command in self.exe:
            return True
        base = command.rstrip("/").rsplit("/", 1)[-1]
        return bool(base) and base in self.name


def find_process(pid: int) -> Optional[ProcessEntry]:
    """Find the process running at pid, or None if there is none.

    Zombies count as gone. Raises QueryError if the process table cannot be
    inspected.
    """
    if pid <= 0:
        return None

    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            if proc.status() == psutil.STATUS_ZOMBIE:
                return None
            name = proc.name()
            try:
                exe = proc.exe()
            except (psutil.AccessDenied, psutil.ZombieProcess):
                exe = ""
        return ProcessEntry(pid=pid, name=name, exe=exe)
    except psutil.NoSuchProcess:
        return None
    except psutil.AccessDenied as e:
        raise QueryError(f"Access denied inspecting pid {pid}", pid=pid) from e
    except psutil.Error as e:
        raise QueryError(f"Failed to inspect pid {pid}: {e}", pid=pid) from e
