"""Tests for ProcessSet."""

import asyncio
import json
import sys

import pytest

from conftest import SLEEPER
from pidwatch.errors import ProcessNotAliveError
from pidwatch.manager import ProcessSet


@pytest.fixture
def process_set(dirs):
    data_dir, log_dir = dirs
    return ProcessSet(data_dir=data_dir, log_dir=log_dir)


def write_record(data_dir, kind, proc_id, command="redis-server", pid=None):
    data_path = data_dir / f"{kind}_{proc_id}.dat"
    data_path.write_text(json.dumps({"id": proc_id, "type": kind, "name": command, "args": [], "ctx": {}}))
    if pid is not None:
        (data_dir / f"{kind}_{proc_id}.pid").write_text(f"{pid}\n")
    return data_path


def test_create_registers_without_starting(process_set):
    proc = process_set.create("redis-server", "cache", args=("--port", "6379"), ctx={"role": "master"})
    assert process_set.get(proc.id) is proc
    assert proc.args == ["--port", "6379"]
    assert proc.ctx == {"role": "master"}
    assert proc.data_dir == process_set.data_dir
    assert proc.log_dir == process_set.log_dir
    assert proc.pid is None
    assert not proc.data_path.exists()


def test_unknown_id_raises_key_error(process_set):
    with pytest.raises(KeyError):
        process_set.start("missing")
    with pytest.raises(KeyError):
        process_set.stop("missing")


def test_load_all_skips_orphans_and_corrupt_records(process_set):
    data_dir = process_set.data_dir
    write_record(data_dir, "cache", "aaa", pid=4321)
    orphan = write_record(data_dir, "proxy", "bbb")
    corrupt = data_dir / "proxy_ccc.dat"
    corrupt.write_text("{broken")

    loaded = process_set.load_all()

    assert [p.id for p in loaded] == ["aaa"]
    assert loaded[0].pid == 4321
    assert process_set.get("aaa") is loaded[0]
    assert not orphan.exists()
    assert corrupt.exists()


def test_stop_unregisters(process_set):
    proc = process_set.create("redis-server", "cache")
    process_set.stop(proc.id)
    assert process_set.get(proc.id) is None


def test_start_and_stop_live_process(process_set, reap_pids, wait_gone):
    proc = process_set.create(sys.executable, "probe")
    proc.add_args("-c", SLEEPER, str(proc.pid_path))

    process_set.start(proc.id)
    reap_pids.append(proc.pid)

    status = process_set.status(proc)
    assert status["alive"] is True
    assert status["pid"] == proc.pid
    assert status["needs_restart"] is True
    assert status["data_path"] == str(proc.data_path)

    process_set.stop(proc.id)
    assert wait_gone(proc.pid)
    assert process_set.list_processes() == []


def test_crashed_process_is_restarted(process_set, python_child, monkeypatch):
    dead = python_child("pass")
    dead.wait()

    proc = process_set.create(sys.executable, "probe")
    proc.pid = dead.pid
    proc.pid_path.write_text(str(dead.pid))

    started = []
    monkeypatch.setattr(proc, "start", lambda: started.append(proc.id))

    asyncio.run(process_set.check_and_restart_crashed())

    assert started == [proc.id]
    assert process_set.restart_count(proc.id) == 1


def test_cleanly_absent_process_is_not_restarted(process_set, monkeypatch):
    proc = process_set.create(sys.executable, "probe")
    started = []
    monkeypatch.setattr(proc, "start", lambda: started.append(proc.id))

    asyncio.run(process_set.check_and_restart_crashed())

    assert started == []
    assert process_set.get(proc.id) is proc


def test_restart_gives_up_after_max_attempts(process_set, python_child, monkeypatch, fast_config):
    fast_config.max_restart_attempts = 2
    dead = python_child("pass")
    dead.wait()

    proc = process_set.create(sys.executable, "probe")
    proc.pid = dead.pid
    proc.pid_path.write_text(str(dead.pid))
    proc.save()

    attempts = []

    def failing_start():
        attempts.append(1)
        raise ProcessNotAliveError("not alive", kind=proc.kind, pid=proc.pid)

    monkeypatch.setattr(proc, "start", failing_start)

    for _ in range(3):
        asyncio.run(process_set.check_and_restart_crashed())

    assert len(attempts) == 2
    assert process_set.get(proc.id) is None
    assert not proc.pid_path.exists()
    assert not proc.data_path.exists()


def test_stop_all(process_set):
    process_set.create("redis-server", "cache")
    process_set.create("proxy-bin", "proxy")
    process_set.stop_all()
    assert process_set.list_processes() == []


def test_bad_pid_does_not_abort_restart_round(process_set, python_child, monkeypatch):
    dead = python_child("pass")
    dead.wait()

    broken = process_set.create(sys.executable, "probe")
    broken.pid = -5
    broken.pid_path.write_text("-5")

    crashed = process_set.create(sys.executable, "probe")
    crashed.pid = dead.pid
    crashed.pid_path.write_text(str(dead.pid))

    started = []
    monkeypatch.setattr(broken, "start", lambda: started.append(broken.id))
    monkeypatch.setattr(crashed, "start", lambda: started.append(crashed.id))

    asyncio.run(process_set.check_and_restart_crashed())

    assert started == [broken.id, crashed.id]


def test_stop_during_restart_delay_prevents_restart(process_set, python_child, monkeypatch, fast_config):
    fast_config.restart_delay = 0.5
    dead = python_child("pass")
    dead.wait()

    proc = process_set.create(sys.executable, "probe")
    proc.pid = dead.pid
    proc.pid_path.write_text(str(dead.pid))
    proc.save()

    started = []
    monkeypatch.setattr(proc, "start", lambda: started.append(proc.id))

    async def scenario():
        checker = asyncio.create_task(process_set.check_and_restart_crashed())
        await asyncio.sleep(0.1)
        process_set.stop(proc.id)
        await checker

    asyncio.run(scenario())

    assert started == []
    assert process_set.get(proc.id) is None
    assert not proc.pid_path.exists()
    assert not proc.data_path.exists()
