"""Shared test fixtures: temp directories, fast timings and pid-writing children."""

import os
import signal
import subprocess
import sys
import tempfile
import time

# Keep pidwatch's own home out of the user's ~ while testing
os.environ.setdefault("PIDWATCH_HOME", tempfile.mkdtemp(prefix="pidwatch-test-"))

import pytest

from pidwatch.config import config
from pidwatch.procfind import find_process

# Writes its own pid to argv[1], then idles
SLEEPER = (
    "import os, sys, time\n"
    "open(sys.argv[1], 'w').write('%d\\n' % os.getpid())\n"
    "time.sleep(600)\n"
)

# Same, but ignores SIGTERM
STUBBORN = (
    "import os, signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "open(sys.argv[1], 'w').write('%d\\n' % os.getpid())\n"
    "time.sleep(600)\n"
)


@pytest.fixture(autouse=True)
def fast_config(monkeypatch):
    monkeypatch.setattr(config, "start_wait", 1.0)
    monkeypatch.setattr(config, "stop_timeout", 5.0)
    monkeypatch.setattr(config, "term_grace", 0.5)
    monkeypatch.setattr(config, "restart_delay", 0)
    monkeypatch.setattr(config, "max_restart_attempts", 3)
    return config


@pytest.fixture
def dirs(tmp_path):
    data_dir = tmp_path / "data"
    log_dir = tmp_path / "logs"
    data_dir.mkdir()
    log_dir.mkdir()
    return data_dir, log_dir


@pytest.fixture
def python_child():
    """Spawn bare python children that do not write a pid file; killed on teardown."""
    children = []

    def _spawn(code="import time; time.sleep(600)"):
        child = subprocess.Popen([sys.executable, "-c", code])
        children.append(child)
        return child

    yield _spawn

    for child in children:
        if child.poll() is None:
            child.kill()
        child.wait()


@pytest.fixture
def reap_pids():
    """Collect pids started through pidwatch and make sure they are dead afterwards."""
    pids = []
    yield pids
    for pid in pids:
        entry = find_process(pid)
        if entry is not None and entry.matches(sys.executable):
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass


@pytest.fixture
def wait_gone():
    """Poll until no live process runs at pid."""

    def _wait(pid, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if find_process(pid) is None:
                return True
            time.sleep(0.05)
        return False

    return _wait
