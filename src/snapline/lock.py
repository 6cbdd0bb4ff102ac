from __future__ import annotations

import getpass
import os
import time
from pathlib import Path

from .fs import utcnow_iso


LOCK_FILENAME = "snapline.lock"


class LockTimeout(TimeoutError):
    """Another process holds the store lock."""


class AdvisoryLock:
    """File-based advisory lock with TTL and timeout.

    Reconciliation mutates branch refs and the single working tree, so two runs
    against the same store must not overlap. The lock file lives inside the
    store's git directory, so clearing the working tree never touches it.

    Environment variables (optional):
    - SNAPLINE_LOCK_TTL: seconds before a lock is considered stale (default 6h)
    - SNAPLINE_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(self, path: Path, *, ttl: int | None = None, timeout: float | None = None, force_break: bool = False):
        self.path = Path(path)
        self.ttl = ttl if ttl is not None else int(os.getenv("SNAPLINE_LOCK_TTL", str(6 * 3600)))
        self.poll = float(os.getenv("SNAPLINE_LOCK_POLL", "0.5"))
        self.timeout = timeout
        self.force_break = force_break
        self.acquired = False

    @classmethod
    def for_git_dir(cls, git_dir: Path, **kwargs) -> "AdvisoryLock":
        return cls(Path(git_dir) / LOCK_FILENAME, **kwargs)

    def _is_stale(self) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return (time.time() - mtime) > self.ttl

    def _write_pid(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = "unknown"
        self.path.write_text(
            f"pid={os.getpid()} time={utcnow_iso()} user={user} cwd={os.getcwd()}\n",
            encoding="utf-8",
        )

    def get_lock_info(self) -> dict | None:
        """Return lock metadata (pid, time, user, cwd), or None if unlocked."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not content:
            return None
        info: dict = {}
        for part in content.split():
            if "=" in part:
                key, value = part.split("=", 1)
                info[key] = value
        if "pid" in info:
            try:
                info["pid"] = int(info["pid"])
            except ValueError:
                pass
        return info or None

    def acquire(self) -> bool:
        start = time.time()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
                self._write_pid()
                self.acquired = True
                return True
            except FileExistsError:
                if self.force_break:
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout == 0:
                    return False
                # ttl<=0 means never stale
                if self.ttl > 0 and self._is_stale():
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self):
        if not self.acquire():
            info = self.get_lock_info() or {}
            raise LockTimeout(
                f"Store is locked by pid={info.get('pid', '?')} since {info.get('time', '?')}: {self.path}"
            )
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
