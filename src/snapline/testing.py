"""Testing utilities.

In-process stand-ins for the fetch and transform collaborators, plus helpers
for isolating configuration and environment variables.

Usage:
    from snapline.testing import FakeFetcher, FakeTransformer, mock_env_vars

    fetcher = FakeFetcher(fail_on={"1.2.0"})
    transformer = FakeTransformer()

    with mock_env_vars(SNAPLINE_LOG_LEVEL="DEBUG"):
        ...
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .collaborators import CollaboratorResult
from .config_schema import SnaplineConfig
from .manifest import VersionDescriptor


def _as_set(values: Optional[Iterable[Any]]) -> set[str]:
    return {str(v) for v in (values or ())}


class FakeFetcher:
    """Writes a small deterministic file tree for each requested version.

    Args:
        fail_on: Versions for which the fetch reports failure
        files: Optional callable ``descriptor -> {relative_path: text}``
            overriding the default content
    """

    def __init__(
        self,
        fail_on: Optional[Iterable[Any]] = None,
        files: Optional[Callable[[VersionDescriptor], Dict[str, str]]] = None,
    ):
        self.fail_on = _as_set(fail_on)
        self.files = files or self.default_files
        self.calls: List[Tuple[str, Path]] = []

    @staticmethod
    def default_files(descriptor: VersionDescriptor) -> Dict[str, str]:
        return {
            "Game.dll": f"binary {descriptor.version} {descriptor.manifest_ref}\n",
            "Data/managed.txt": f"managed {descriptor.version}\n",
            "Data/secret.bin": "not for publishing\n",
        }

    @property
    def fetched_versions(self) -> List[str]:
        return [version for version, _ in self.calls]

    def fetch(self, descriptor: VersionDescriptor, destination: Path) -> CollaboratorResult:
        version = str(descriptor.version)
        self.calls.append((version, Path(destination)))
        if version in self.fail_on:
            return CollaboratorResult.failure(f"fake fetch failure for {version}", exit_code=1)
        destination = Path(destination)
        for rel, text in self.files(descriptor).items():
            target = destination / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        return CollaboratorResult.success(destination)


class FakeTransformer:
    """Copies the source tree, dropping files whose name matches ``strip``."""

    def __init__(self, fail_on: Optional[Iterable[Any]] = None, strip: Iterable[str] = ("secret.bin",)):
        self.fail_on = _as_set(fail_on)
        self.strip = set(strip)
        self.calls: List[Tuple[Path, Path]] = []

    def transform(self, source: Path, destination: Path) -> CollaboratorResult:
        source = Path(source)
        destination = Path(destination)
        self.calls.append((source, destination))
        # The builder names download dirs after the version
        if source.name in self.fail_on:
            return CollaboratorResult.failure(f"fake transform failure for {source.name}", exit_code=2)
        for path in sorted(source.rglob("*")):
            if path.is_dir() or path.name in self.strip:
                continue
            target = destination / path.relative_to(source)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(path.read_bytes())
        destination.mkdir(parents=True, exist_ok=True)
        return CollaboratorResult.success(destination)


@contextmanager
def mock_env_vars(**env_vars):
    """Temporarily set environment variables. A value of None deletes the var."""
    old_env: Dict[str, Optional[str]] = {}

    try:
        for key, value in env_vars.items():
            old_env[key] = os.environ.get(key)
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = str(value)

        yield

    finally:
        for key, old_value in old_env.items():
            if old_value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old_value


@contextmanager
def temp_config(
    config_dict: Optional[Dict[str, Any]] = None,
    env_overrides: Optional[Dict[str, str]] = None,
):
    """Build a validated config with the cached config cleared around it.

    Yields:
        SnaplineConfig built from ``config_dict``
    """
    from .config_loader import clear_config_cache

    clear_config_cache()
    try:
        with mock_env_vars(**(env_overrides or {})):
            yield SnaplineConfig.model_validate(config_dict or {})
    finally:
        clear_config_cache()
