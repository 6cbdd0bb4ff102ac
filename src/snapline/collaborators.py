"""Fetch and transform collaborators.

Both collaborators are external programs. Their expected failure mode is a
non-zero exit status, which is reported through :class:`CollaboratorResult`
instead of an exception; the builder decides what a failure means.

Two implementations of each capability exist: the subprocess-backed ones in
this module, and in-process fakes in :mod:`snapline.testing`.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .credentials import FetchCredentials
from .manifest import VersionDescriptor
from .observability import log_action, log_info

_REDACTED = "********"


@dataclass(frozen=True)
class CollaboratorResult:
    """Outcome of one collaborator invocation."""

    ok: bool
    output_dir: Optional[Path] = None
    exit_code: Optional[int] = None
    message: str = ""

    @classmethod
    def success(cls, output_dir: Path) -> "CollaboratorResult":
        return cls(ok=True, output_dir=Path(output_dir), exit_code=0)

    @classmethod
    def failure(cls, message: str, exit_code: Optional[int] = None) -> "CollaboratorResult":
        return cls(ok=False, exit_code=exit_code, message=message)


class Fetcher(Protocol):
    def fetch(self, descriptor: VersionDescriptor, destination: Path) -> CollaboratorResult:
        """Populate ``destination`` with the raw content of ``descriptor``."""
        ...


class Transformer(Protocol):
    def transform(self, source: Path, destination: Path) -> CollaboratorResult:
        """Write a cleaned copy of ``source`` into ``destination``."""
        ...


def _invoke(cmd: Sequence[str], tool: str, timeout: Optional[float]) -> CollaboratorResult:
    try:
        # stdio is inherited so interactive login prompts still reach the user
        completed = subprocess.run(list(cmd), timeout=timeout, check=False)
    except FileNotFoundError:
        return CollaboratorResult.failure(f"{tool} executable not found: {cmd[0]}")
    except subprocess.TimeoutExpired:
        return CollaboratorResult.failure(f"{tool} timed out after {timeout}s")
    except OSError as e:
        return CollaboratorResult.failure(f"Failed to execute {tool}: {e}")

    if completed.returncode != 0:
        return CollaboratorResult.failure(
            f"{tool} failed with exit code {completed.returncode}",
            exit_code=completed.returncode,
        )
    return CollaboratorResult(ok=True, exit_code=0)


def _run_process(
    cmd: Sequence[str],
    *,
    tool: str,
    timeout: Optional[float],
    redact: Sequence[str] = (),
) -> CollaboratorResult:
    shown = " ".join(_REDACTED if part in redact else part for part in cmd)
    log_info(f"Running {tool}", command=shown)
    start = time.perf_counter()
    result = _invoke(cmd, tool, timeout)
    log_action(
        "collaborator.run",
        outcome="ok" if result.ok else "error",
        duration_ms=(time.perf_counter() - start) * 1000.0,
        tool=tool,
        exit_code=result.exit_code,
    )
    return result


class SubprocessFetcher:
    """Runs a DepotDownloader-compatible downloader."""

    def __init__(
        self,
        executable: Path,
        *,
        app_id: str,
        depot_id: str,
        credentials: FetchCredentials,
        remember_password: bool = True,
        timeout: Optional[float] = None,
    ):
        self.executable = Path(executable)
        self.app_id = app_id
        self.depot_id = depot_id
        self.credentials = credentials
        self.remember_password = remember_password
        self.timeout = timeout

    def command(self, descriptor: VersionDescriptor, destination: Path) -> list[str]:
        cmd = [
            str(self.executable),
            "-username", self.credentials.username,
            "-password", self.credentials.password,
        ]
        if self.remember_password:
            cmd.append("-remember-password")
        cmd += [
            "-app", self.app_id,
            "-depot", self.depot_id,
            "-manifest", descriptor.manifest_ref,
            "-dir", str(destination),
        ]
        return cmd

    def fetch(self, descriptor: VersionDescriptor, destination: Path) -> CollaboratorResult:
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)
        result = _run_process(
            self.command(descriptor, destination),
            tool="downloader",
            timeout=self.timeout,
            redact=(self.credentials.password,),
        )
        if not result.ok:
            return result
        return CollaboratorResult.success(destination)


class SubprocessTransformer:
    """Runs a GenericStripper-compatible transformer."""

    def __init__(self, executable: Path, *, profile: str, timeout: Optional[float] = None):
        self.executable = Path(executable)
        self.profile = profile
        self.timeout = timeout

    def command(self, source: Path, destination: Path) -> list[str]:
        return [
            str(self.executable),
            "strip",
            "-m", self.profile,
            "-p", str(source),
            "-o", str(destination),
        ]

    def transform(self, source: Path, destination: Path) -> CollaboratorResult:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        result = _run_process(
            self.command(source, destination),
            tool="stripper",
            timeout=self.timeout,
        )
        if not result.ok:
            return result
        if not destination.is_dir():
            return CollaboratorResult.failure(f"stripper produced no output at {destination}")
        return CollaboratorResult.success(destination)


class PassthroughTransformer:
    """Used when transformation is disabled: the raw download is committed as-is."""

    def transform(self, source: Path, destination: Path) -> CollaboratorResult:
        log_info("Transformation disabled, committing download as-is", source=str(source))
        return CollaboratorResult.success(source)
