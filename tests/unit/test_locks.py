from __future__ import annotations

import os
import subprocess
import sys
import threading

import pytest

from tablesync.services.locks import FileTableLock, LockTimeoutError, TableLock, ThreadTableLock


def test_thread_lock_times_out_while_held():
    lock = ThreadTableLock("dash")
    lock.acquire()
    result = []

    def other():
        try:
            lock.acquire(timeout=0.05)
        except LockTimeoutError as e:
            result.append(str(e))

    t = threading.Thread(target=other)
    t.start()
    t.join()
    assert "dash" in result[0]
    lock.release()
    assert not lock.locked


def test_file_lock_writes_pid_and_removes_file(tmp_path):
    path = tmp_path / "dashboard.xlsx.lock"
    lock = FileTableLock(path)
    lock.acquire(timeout=1)
    assert path.read_text(encoding="utf-8").isdigit()
    assert lock.locked
    lock.release()
    assert not path.exists()


def test_file_lock_second_holder_times_out(tmp_path):
    path = tmp_path / "t.lock"
    first = FileTableLock(path)
    first.acquire(timeout=1)
    second = FileTableLock(path, poll_interval=0.01)
    with pytest.raises(LockTimeoutError):
        second.acquire(timeout=0.05)
    first.release()
    second.acquire(timeout=0.05)
    second.release()


def test_file_lock_release_without_acquire_raises(tmp_path):
    with pytest.raises(RuntimeError):
        FileTableLock(tmp_path / "x.lock").release()


def test_locks_satisfy_protocol(tmp_path):
    assert isinstance(ThreadTableLock(), TableLock)
    assert isinstance(FileTableLock(tmp_path / "y.lock"), TableLock)


@pytest.mark.skipif(os.name != "posix", reason="owner check needs POSIX signals")
def test_file_lock_takes_over_from_dead_owner(tmp_path):
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    path = tmp_path / "dashboard.xlsx.lock"
    path.write_text(str(proc.pid), encoding="utf-8")

    lock = FileTableLock(path, poll_interval=0.01)
    lock.acquire(timeout=0.05)
    assert path.read_text(encoding="utf-8") == str(os.getpid())
    lock.release()


def test_file_lock_waits_for_live_owner(tmp_path):
    path = tmp_path / "dashboard.xlsx.lock"
    path.write_text(str(os.getppid()), encoding="utf-8")
    with pytest.raises(LockTimeoutError):
        FileTableLock(path, poll_interval=0.01).acquire(timeout=0.05)
    assert path.exists()
