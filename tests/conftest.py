from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep user config, credentials, tokens and log files out of every test."""
    for key in list(os.environ):
        if key.startswith("SNAPLINE_"):
            monkeypatch.delenv(key, raising=False)
    for key in ("GITHUB_TOKEN", "GH_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("SNAPLINE_LOG_DISABLE_FILE", "1")
    monkeypatch.setenv("SNAPLINE_LOCK_POLL", "0.05")

    from snapline.config_loader import clear_config_cache
    from snapline.observability import reset_logging

    clear_config_cache()
    reset_logging()
    yield home
    clear_config_cache()
    reset_logging()


@pytest.fixture
def manifest_of():
    """Build a manifest from version strings; refs are derived from the version."""
    from snapline.manifest import parse_manifest

    def _make(*versions: str):
        return parse_manifest(
            {"versions": [{"version": v, "manifest": f"ref-{v}"} for v in versions]}
        )

    return _make


@pytest.fixture
def store(tmp_path):
    from snapline_git.store import CommitGraphStore

    return CommitGraphStore.open_or_init(tmp_path / "store")


@pytest.fixture
def bare_remote(tmp_path):
    from git import Repo

    remote = tmp_path / "remote.git"
    remote.mkdir()
    Repo.init(remote, bare=True)
    return remote


@pytest.fixture
def remote_store(tmp_path, bare_remote):
    from snapline_git.store import CommitGraphStore

    return CommitGraphStore.open_or_init(tmp_path / "store", remote_url=bare_remote.as_posix())


@pytest.fixture
def fakes():
    from snapline.testing import FakeFetcher, FakeTransformer

    return FakeFetcher(), FakeTransformer()


@pytest.fixture
def make_reconciler(tmp_path):
    """Wire a reconciler around a store with fake collaborators."""
    from snapline.testing import FakeFetcher, FakeTransformer
    from snapline_git.builder import BranchChainBuilder
    from snapline_git.mirror import RemoteMirror
    from snapline_git.reconciler import Reconciler

    def _make(store, *, fetcher=None, transformer=None, mirror=None, policy="prefer_local"):
        fetcher = fetcher or FakeFetcher()
        transformer = transformer or FakeTransformer()
        if mirror is None and store.has_remote():
            mirror = RemoteMirror(store)
        builder = BranchChainBuilder(
            store,
            fetcher,
            transformer,
            downloads_dir=tmp_path / "downloads",
            output_dir=tmp_path / "stripped",
            mirror=mirror,
        )
        reconciler = Reconciler(store, builder, mirror=mirror, divergence_policy=policy)
        return reconciler, fetcher, transformer

    return _make
