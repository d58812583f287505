"""
Supervised process lifecycle.

A SupervisedProcess launches one external command, learns its pid from the
pid file the child writes itself, checks that it is still alive, and stops it
with a bounded wait before force-killing. The data file next to the pid file
lets a restarted supervisor pick the process up again.
"""

import logging
import signal
import subprocess
import threading
import time
import uuid
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Optional

import psutil
from pydantic import ValidationError

from .config import config
from .errors import (
    CorruptStateError,
    PersistenceError,
    PostStartHookError,
    ProcessNotAliveError,
    QueryError,
    SpawnError,
    StartupVerificationError,
)
from .fileutil import file_exists, remove_file, write_file_atomic
from .models import ProcessRecord
from .procfind import find_process

logger = logging.getLogger(__name__)

Hook = Callable[["SupervisedProcess"], None]


def new_process_id() -> str:
    """Generate a fresh lowercase hex id."""
    return uuid.uuid4().hex


class SupervisedProcess:
    """One supervised child process.

    Calls on a single instance must be serialized by the caller.
    """

    def __init__(
        self,
        id: str,
        kind: str,
        command: str,
        args: Optional[list[str]] = None,
        ctx: Optional[dict[str, str]] = None,
        data_dir: Optional[Path] = None,
        log_dir: Optional[Path] = None,
        post_start_hook: Optional[Hook] = None,
        stop_hook: Optional[Hook] = None,
    ):
        self._id = id
        self._kind = kind
        self._command = command
        self._args: list[str] = list(args or [])
        self.ctx: dict[str, str] = dict(ctx or {})
        self.data_dir = Path(data_dir) if data_dir is not None else config.data_dir
        self.log_dir = Path(log_dir) if log_dir is not None else config.logs_dir

        # Never persisted, always re-read from the pid file
        self.pid: Optional[int] = None

        self.post_start_hook = post_start_hook
        self.stop_hook = stop_hook

    @property
    def id(self) -> str:
        return self._id

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def command(self) -> str:
        return self._command

    @property
    def args(self) -> list[str]:
        return list(self._args)

    def add_args(self, *args: str):
        """Append arguments to the command line."""
        self._args.extend(args)

    def __repr__(self) -> str:
        return f"<SupervisedProcess {self.base_name} pid={self.pid}>"

    # Construction

    @classmethod
    def create(
        cls,
        command: str,
        kind: str,
        data_dir: Optional[Path] = None,
        log_dir: Optional[Path] = None,
    ) -> "SupervisedProcess":
        """Create a new, not yet started process with a fresh id."""
        return cls(
            id=new_process_id(),
            kind=kind,
            command=command,
            data_dir=data_dir,
            log_dir=log_dir,
        )

    @classmethod
    def load(
        cls,
        data_path: Path,
        data_dir: Optional[Path] = None,
        log_dir: Optional[Path] = None,
    ) -> Optional["SupervisedProcess"]:
        """Rebuild a process from its data file.

        Returns None, and deletes the data file, when the pid file is gone:
        there is nothing left to track. A missing data file raises
        FileNotFoundError.
        """
        data_path = Path(data_path)
        if not file_exists(data_path):
            raise FileNotFoundError(f"Data file {data_path} does not exist")
        try:
            raw = data_path.read_bytes()
        except OSError as e:
            raise CorruptStateError(f"Cannot read data file {data_path}: {e}") from e

        try:
            record = ProcessRecord.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptStateError(f"Malformed data file {data_path}: {e}") from e

        proc = cls(
            id=record.id,
            kind=record.type,
            command=record.name,
            args=record.args,
            ctx=record.ctx,
            data_dir=data_dir if data_dir is not None else data_path.parent,
            log_dir=log_dir,
        )

        if not file_exists(proc.pid_path):
            remove_file(data_path)
            logger.info(f"Pid file {proc.pid_path} does not exist, skipping {proc.base_name}")
            return None

        try:
            proc.pid = proc.read_pid()
        except (OSError, ValueError) as e:
            raise CorruptStateError(
                f"Bad pid file {proc.pid_path}: {e}", kind=proc.kind
            ) from e

        return proc

    # Paths

    @property
    def base_name(self) -> str:
        return f"{self._kind}_{self._id}"

    @property
    def pid_path(self) -> Path:
        return self.data_dir / f"{self.base_name}.pid"

    @property
    def data_path(self) -> Path:
        return self.data_dir / f"{self.base_name}.dat"

    @property
    def log_path(self) -> Path:
        return self.log_dir / f"{self.base_name}.log"

    # Persistence

    def to_record(self) -> ProcessRecord:
        return ProcessRecord(
            id=self._id,
            type=self._kind,
            name=self._command,
            args=self._args,
            ctx=self.ctx,
        )

    def save(self):
        """Write the data file atomically. The pid file is the child's job."""
        data = self.to_record().model_dump_json().encode("utf-8")
        try:
            write_file_atomic(self.data_path, data)
        except OSError as e:
            raise PersistenceError(
                f"Failed to save {self.data_path}: {e}", kind=self._kind, pid=self.pid
            ) from e

    def read_pid(self) -> int:
        """Read the pid the child wrote into its pid file."""
        with open(self.pid_path) as f:
            pid = int(f.read().strip())
        if pid <= 0:
            raise ValueError(f"pid must be positive, got {pid}")
        return pid

    def clear(self):
        """Remove the pid and data files."""
        remove_file(self.pid_path)
        remove_file(self.data_path)

    def needs_restart(self) -> bool:
        """True if the pid file still exists.

        After a process dies unexpectedly its pid file stays behind, which is
        how a checker tells a crash apart from a clean stop.
        """
        return file_exists(self.pid_path)

    # Lifecycle

    def start(self):
        """Launch the command, verify it came up, then save the data file."""
        if not self._command:
            raise SpawnError("Empty command", kind=self._kind)

        try:
            popen = subprocess.Popen([self._command, *self._args])
        except OSError as e:
            raise SpawnError(
                f"Failed to spawn {self._command} ({self._kind}): {e}", kind=self._kind
            ) from e

        # Reap the child in the background so it does not linger as a zombie.
        # Its exit status is ignored; liveness is judged by check_alive.
        threading.Thread(
            target=popen.wait,
            name=f"reap-{self.base_name}",
            daemon=True,
        ).start()

        logger.info(f"Waiting {config.start_wait}s for {self._kind} to start")
        time.sleep(config.start_wait)

        try:
            self.pid = self.read_pid()
        except (OSError, ValueError) as e:
            raise StartupVerificationError(
                f"Cannot read pid file {self.pid_path} for {self._kind}: {e}",
                kind=self._kind,
            ) from e

        if not self.check_alive():
            raise ProcessNotAliveError(
                f"Started {self.pid} ({self._kind}) but it is not alive",
                kind=self._kind,
                pid=self.pid,
            )

        if self.post_start_hook is not None:
            try:
                self.post_start_hook(self)
            except Exception as e:
                logger.error(f"Post start {self.pid} ({self._kind}) failed: {e}")
                raise PostStartHookError(
                    f"Post start hook failed for {self.pid} ({self._kind}): {e}",
                    kind=self._kind,
                    pid=self.pid,
                ) from e

        self.save()
        logger.info(f"Started {self._kind} {self._id} with PID {self.pid}")

    def check_alive(self) -> bool:
        """Check that a process running our command exists at our pid."""
        if self.pid is None:
            return False

        try:
            entry = find_process(self.pid)
        except QueryError as e:
            e.kind = self._kind
            raise

        if entry is None:
            return False

        if entry.matches(self._command):
            return True

        logger.warning(
            f"PID {self.pid} exists, but executable is {entry.exe or entry.name}, not {self._command}"
        )
        return False

    def stop(self):
        """Stop the process and remove its marker files.

        Only the initial liveness query can raise. Once it has succeeded the
        marker files are removed no matter how termination went.
        """
        alive = self.check_alive()

        try:
            if not alive:
                return

            try:
                proc = psutil.Process(self.pid)
            except psutil.NoSuchProcess:
                return

            if self.stop_hook is not None:
                try:
                    self.stop_hook(self)
                except Exception as e:
                    logger.error(f"Stop {self.pid} ({self._kind}) failed: {e}, sending kill signal")
                    self._terminate(proc)
            else:
                self._terminate(proc)

            done = self._wait_in_background(proc)
            try:
                done.result(timeout=config.stop_timeout)
            except FutureTimeoutError:
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
                logger.error(f"Waiting for {self.pid} ({self._kind}) to stop timed out, force kill")
            except psutil.Error as e:
                logger.error(f"Error waiting for {self.pid} ({self._kind}) to stop: {e}")
            else:
                logger.info(f"Stopped {self._kind} {self._id} (PID {self.pid})")
        finally:
            self.clear()

    def _terminate(self, proc: psutil.Process):
        """Send SIGTERM, give the process term_grace seconds, then SIGKILL."""
        try:
            proc.send_signal(signal.SIGTERM)
            try:
                proc.wait(timeout=config.term_grace)
                return
            except psutil.TimeoutExpired:
                pass
            proc.send_signal(signal.SIGKILL)
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.error(f"Cannot signal {self.pid} ({self._kind}): {e}")

    def _wait_in_background(self, proc: psutil.Process) -> Future:
        """Wait for proc to exit on a thread; the returned future completes once."""
        done: Future = Future()

        def _wait():
            try:
                proc.wait()
            except psutil.NoSuchProcess:
                pass
            except psutil.Error as e:
                done.set_exception(e)
                return
            done.set_result(None)

        threading.Thread(target=_wait, name=f"stop-{self.base_name}", daemon=True).start()
        return done
