"""
Process set for supervised processes.

Owns the marker and log directories, keeps every SupervisedProcess by id,
reloads them from disk after pidwatch itself restarts, and restarts children
whose pid file outlived them.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional

from .config import config
from .errors import CorruptStateError, PidwatchError
from .process import Hook, SupervisedProcess

logger = logging.getLogger(__name__)


class ProcessSet:
    """Manages supervised processes sharing one data and log directory."""

    def __init__(self, data_dir: Optional[Path] = None, log_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else config.data_dir
        self.log_dir = Path(log_dir) if log_dir is not None else config.logs_dir
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._processes: dict[str, SupervisedProcess] = {}
        self._restart_counts: dict[str, int] = {}
        self._lock = threading.Lock()
        # Serializes start/stop/restart on one process
        self._op_locks: dict[str, threading.Lock] = {}

    def create(
        self,
        command: str,
        kind: str,
        args: tuple = (),
        ctx: Optional[dict[str, str]] = None,
        post_start_hook: Optional[Hook] = None,
        stop_hook: Optional[Hook] = None,
    ) -> SupervisedProcess:
        """Register a new process. It is not started."""
        proc = SupervisedProcess.create(command, kind, data_dir=self.data_dir, log_dir=self.log_dir)
        proc.add_args(*args)
        if ctx:
            proc.ctx.update(ctx)
        proc.post_start_hook = post_start_hook
        proc.stop_hook = stop_hook

        with self._lock:
            self._processes[proc.id] = proc
        return proc

    def get(self, proc_id: str) -> Optional[SupervisedProcess]:
        with self._lock:
            return self._processes.get(proc_id)

    def list_processes(self) -> list[SupervisedProcess]:
        with self._lock:
            return list(self._processes.values())

    def start(self, proc_id: str) -> SupervisedProcess:
        """Start a registered process. Raises KeyError if unknown."""
        proc = self._require(proc_id)
        with self._op_lock(proc_id):
            proc.start()
        with self._lock:
            self._restart_counts.pop(proc_id, None)
        return proc

    def stop(self, proc_id: str):
        """Stop a process and forget it. Raises KeyError if unknown."""
        proc = self._require(proc_id)
        with self._op_lock(proc_id):
            proc.stop()
            with self._lock:
                self._processes.pop(proc_id, None)
                self._restart_counts.pop(proc_id, None)
                self._op_locks.pop(proc_id, None)

    def load_all(self) -> list[SupervisedProcess]:
        """Load every data file in the data directory."""
        loaded = []
        for data_path in sorted(self.data_dir.glob("*.dat")):
            try:
                proc = SupervisedProcess.load(data_path, data_dir=self.data_dir, log_dir=self.log_dir)
            except CorruptStateError as e:
                logger.error(f"Skipping {data_path.name}: {e}")
                continue
            except FileNotFoundError:
                continue

            if proc is None:
                continue

            with self._lock:
                self._processes[proc.id] = proc
            loaded.append(proc)
            logger.info(f"Loaded {proc.kind} {proc.id} (PID {proc.pid})")

        return loaded

    async def check_and_restart_crashed(self):
        """Restart processes whose pid file exists but which are no longer running."""
        for proc in self.list_processes():
            try:
                if proc.check_alive():
                    with self._lock:
                        self._restart_counts.pop(proc.id, None)
                    continue
            except PidwatchError as e:
                logger.error(f"Cannot check {proc.base_name}: {e}")
                continue

            if not proc.needs_restart():
                continue

            with self._lock:
                attempts = self._restart_counts.get(proc.id, 0)

            if attempts >= config.max_restart_attempts:
                logger.error(f"{proc.base_name} exceeded max restart attempts, giving up")
                proc.clear()
                with self._lock:
                    self._processes.pop(proc.id, None)
                    self._restart_counts.pop(proc.id, None)
                continue

            logger.warning(f"{proc.base_name} has crashed, attempting restart")
            with self._lock:
                self._restart_counts[proc.id] = attempts + 1

            await asyncio.sleep(config.restart_delay)

            try:
                restarted = await asyncio.to_thread(self._restart, proc)
            except PidwatchError as e:
                logger.error(f"Restart of {proc.base_name} failed: {e}")
            else:
                if restarted:
                    logger.info(f"Restarted {proc.base_name} (attempt {attempts + 1})")

    def _restart(self, proc: SupervisedProcess) -> bool:
        """Start proc again unless it was stopped or restarted meanwhile."""
        with self._op_lock(proc.id):
            if self.get(proc.id) is not proc:
                logger.info(f"{proc.base_name} was stopped, skipping restart")
                return False
            if not proc.needs_restart() or proc.check_alive():
                return False
            proc.start()
            return True

    def restart_count(self, proc_id: str) -> int:
        with self._lock:
            return self._restart_counts.get(proc_id, 0)

    def status(self, proc: SupervisedProcess) -> dict:
        """Describe a process for the API."""
        try:
            alive = proc.check_alive()
        except PidwatchError as e:
            logger.warning(f"Cannot check {proc.base_name}: {e}")
            alive = False

        return {
            "id": proc.id,
            "kind": proc.kind,
            "command": proc.command,
            "args": proc.args,
            "ctx": proc.ctx,
            "pid": proc.pid,
            "alive": alive,
            "needs_restart": proc.needs_restart(),
            "restart_count": self.restart_count(proc.id),
            "pid_path": str(proc.pid_path),
            "data_path": str(proc.data_path),
            "log_path": str(proc.log_path),
        }

    def stop_all(self):
        """Stop all processes."""
        for proc in self.list_processes():
            try:
                self.stop(proc.id)
            except PidwatchError as e:
                logger.error(f"Failed to stop {proc.base_name}: {e}")

    def _op_lock(self, proc_id: str) -> threading.Lock:
        with self._lock:
            return self._op_locks.setdefault(proc_id, threading.Lock())

    def _require(self, proc_id: str) -> SupervisedProcess:
        proc = self.get(proc_id)
        if proc is None:
            raise KeyError(proc_id)
        return proc


_process_set: Optional[ProcessSet] = None


def get_process_set() -> ProcessSet:
    """Return the shared process set, creating it on first use."""
    global _process_set
    if _process_set is None:
        _process_set = ProcessSet()
    return _process_set
