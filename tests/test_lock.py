from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from snapline.lock import LOCK_FILENAME, AdvisoryLock, LockTimeout


def test_lock_acquire_release(tmp_path: Path):
    p = tmp_path / ".t.lock"
    with AdvisoryLock(p, timeout=1):
        assert p.exists()
    assert not p.exists()


def test_lock_timeout_then_force_break(tmp_path: Path):
    p = tmp_path / ".t.lock"
    l1 = AdvisoryLock(p, timeout=0, ttl=1)
    assert l1.acquire() is True
    try:
        l2 = AdvisoryLock(p, timeout=0.2, ttl=0)
        assert l2.acquire() is False
        l3 = AdvisoryLock(p, timeout=0, ttl=0, force_break=True)
        assert l3.acquire() is True
        l3.release()
    finally:
        l1.release()


def test_stale_lock_is_broken(tmp_path: Path):
    p = tmp_path / ".t.lock"
    p.write_text("pid=1 time=old\n")
    old = time.time() - 100
    os.utime(p, (old, old))
    lock = AdvisoryLock(p, timeout=0.5, ttl=10)
    assert lock.acquire() is True
    lock.release()


def test_context_manager_reports_holder(tmp_path: Path):
    holder = AdvisoryLock.for_git_dir(tmp_path, timeout=0)
    assert holder.path == tmp_path / LOCK_FILENAME
    with holder:
        info = holder.get_lock_info()
        assert info["pid"] == os.getpid()
        with pytest.raises(LockTimeout, match=f"pid={os.getpid()}"):
            with AdvisoryLock.for_git_dir(tmp_path, timeout=0):
                pass
    assert holder.get_lock_info() is None
