"""Top-level run wiring: config and credentials in, reconciled store out."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
from git import Actor

from snapline.collaborators import (
    Fetcher,
    PassthroughTransformer,
    SubprocessFetcher,
    SubprocessTransformer,
    Transformer,
)
from snapline.config_schema import SnaplineConfig
from snapline.credentials import Credentials, load_credentials
from snapline.errors import ConfigError, ManifestError
from snapline.fs import is_within
from snapline.lock import AdvisoryLock
from snapline.manifest import VersionManifest
from snapline.tools import ensure_tools, resolve_tools

from .builder import BranchChainBuilder
from .lineage import LATEST_BRANCH, LineageInspector
from .mirror import RemoteMirror
from snapline.observability import log_action, log_info, log_warning, timeit
from .reconciler import ReconcileOutcome, Reconciler
from .scaffold import checkout_main, ensure_main_branch, resolve_manifest
from .store import CommitGraphStore


@dataclass
class Session:
    """Everything a reconciliation pass needs, opened and locked."""

    config: SnaplineConfig
    store: CommitGraphStore
    mirror: RemoteMirror
    reconciler: Reconciler
    manifest: VersionManifest


def check_work_dirs(config: SnaplineConfig) -> None:
    """Refuse work directories inside the store, where clearing would delete them.

    Raises:
        ConfigError: If a work directory resolves inside the store
    """
    store_path = Path(config.store.path).expanduser()
    for name, path in config.work_dirs().items():
        if is_within(path, store_path):
            raise ConfigError(
                f"The {name} directory {path} is inside the store {store_path}; "
                "move it outside so snapshot commits never include it"
            )


def open_store(config: SnaplineConfig, *, create: bool = True) -> CommitGraphStore:
    kwargs: Dict[str, Any] = dict(
        author=Actor(config.git.author, config.git.email),
        main_branch=config.store.main_branch,
        remote_name=config.store.remote_name,
    )
    if create:
        return CommitGraphStore.open_or_init(
            Path(config.store.path),
            remote_url=config.store.remote_url,
            **kwargs,
        )
    return CommitGraphStore.open(Path(config.store.path).expanduser(), **kwargs)


def build_collaborators(
    config: SnaplineConfig,
    credentials: Credentials,
    *,
    fetch_tools: bool = True,
    http_client: Optional[httpx.Client] = None,
) -> Tuple[Fetcher, Transformer]:
    """Subprocess collaborators for the configured (or bootstrapped) tools."""
    fetch_credentials = credentials.require_fetch()
    if fetch_tools:
        paths = ensure_tools(config, credentials.github.token or None, client=http_client)
    else:
        paths = resolve_tools(config)

    fetcher = SubprocessFetcher(
        paths.downloader,
        app_id=config.fetch.app_id,
        depot_id=config.fetch.depot_id,
        credentials=fetch_credentials,
        remember_password=config.fetch.remember_password,
        timeout=config.fetch.timeout_seconds,
    )
    transformer: Transformer
    if config.transform.enabled and paths.stripper is not None:
        transformer = SubprocessTransformer(
            paths.stripper,
            profile=config.transform.profile,
            timeout=config.transform.timeout_seconds,
        )
    else:
        transformer = PassthroughTransformer()
    return fetcher, transformer


def _prepare(
    config: SnaplineConfig,
    store: CommitGraphStore,
    credentials: Credentials,
    fetcher: Fetcher,
    transformer: Transformer,
    manifest_path: Optional[str],
) -> Session:
    ensure_main_branch(store)
    checkout_main(store)
    manifest = resolve_manifest(store, manifest_path or config.manifest.path or None)
    if not manifest.is_sorted():
        log_info("Manifest declares versions out of semantic order; declared order is used")

    mirror = RemoteMirror(store, token=credentials.github.token or None)
    push_mirror = mirror if config.sync.push else None
    builder = BranchChainBuilder(
        store,
        fetcher,
        transformer,
        downloads_dir=Path(config.fetch.downloads_dir).expanduser(),
        output_dir=Path(config.transform.output_dir).expanduser(),
        mirror=push_mirror,
    )
    reconciler = Reconciler(
        store,
        builder,
        mirror=push_mirror,
        divergence_policy=config.sync.divergence_policy,
    )
    return Session(config, store, mirror, reconciler, manifest)


def _restore_main(store: CommitGraphStore) -> None:
    if store.has_branch(store.main_branch):
        checkout_main(store)


def _execute(
    config: SnaplineConfig,
    *,
    manifest_path: Optional[str],
    fetcher: Optional[Fetcher],
    transformer: Optional[Transformer],
    credentials: Optional[Credentials],
    fetch_tools: bool,
    http_client: Optional[httpx.Client],
    action,
) -> ReconcileOutcome:
    credentials = credentials or load_credentials()
    check_work_dirs(config)
    if fetcher is None or transformer is None:
        # Credentials and tools are checked before the store is touched
        default_fetcher, default_transformer = build_collaborators(
            config, credentials, fetch_tools=fetch_tools, http_client=http_client
        )
        fetcher = fetcher or default_fetcher
        transformer = transformer or default_transformer

    store = open_store(config)
    with AdvisoryLock.for_git_dir(store.git_dir, timeout=0):
        try:
            session = _prepare(config, store, credentials, fetcher, transformer, manifest_path)
            if config.sync.fetch:
                session.mirror.fetch_all()
            outcome = action(session)
            outcome.mirror_warnings = list(session.mirror.warnings)
            return outcome
        finally:
            _restore_main(store)


def run(
    config: SnaplineConfig,
    *,
    manifest_path: Optional[str] = None,
    cascade: Optional[bool] = None,
    fetcher: Optional[Fetcher] = None,
    transformer: Optional[Transformer] = None,
    credentials: Optional[Credentials] = None,
    fetch_tools: bool = True,
    http_client: Optional[httpx.Client] = None,
) -> ReconcileOutcome:
    """Full reconciliation pass against the configured store.

    Raises:
        ConfigError: Missing credentials, bad config or manifest
        ToolError: Tools missing and not downloadable
        ReconcileAborted: A version failed to build
        LockTimeout: Another run holds the store lock
    """
    cascade = config.sync.cascade if cascade is None else cascade

    def action(session: Session) -> ReconcileOutcome:
        index = LineageInspector(session.store).discover()
        return session.reconciler.reconcile(session.manifest, index, cascade=cascade)

    with timeit("run", store=config.store.path, cascade=cascade) as info:
        outcome = _execute(
            config,
            manifest_path=manifest_path,
            fetcher=fetcher,
            transformer=transformer,
            credentials=credentials,
            fetch_tools=fetch_tools,
            http_client=http_client,
            action=action,
        )
        info["created"] = outcome.commits_created
    return outcome


def rebuild_tail(
    config: SnaplineConfig,
    from_version: str,
    *,
    manifest_path: Optional[str] = None,
    fetcher: Optional[Fetcher] = None,
    transformer: Optional[Transformer] = None,
    credentials: Optional[Credentials] = None,
    fetch_tools: bool = True,
    http_client: Optional[httpx.Client] = None,
) -> ReconcileOutcome:
    """Explicit cascade from ``from_version``, then move ``versions/latest``."""

    def action(session: Session) -> ReconcileOutcome:
        if from_version not in session.manifest:
            raise ManifestError(f"Version {from_version} is not in the manifest")
        outcome = session.reconciler.rebuild_tail(session.manifest, from_version)
        session.reconciler.update_latest(session.manifest, outcome)
        return outcome

    with timeit("rebuild_tail", store=config.store.path, start=from_version) as info:
        outcome = _execute(
            config,
            manifest_path=manifest_path,
            fetcher=fetcher,
            transformer=transformer,
            credentials=credentials,
            fetch_tools=fetch_tools,
            http_client=http_client,
            action=action,
        )
        info["rebuilt"] = len(outcome.rebuilt)
    return outcome


def status(config: SnaplineConfig, *, manifest_path: Optional[str] = None) -> Dict[str, Any]:
    """Read-only summary of the store: branches, latest pointer and manifest."""
    store = open_store(config, create=False)
    index = LineageInspector(store).discover()

    manifest: Optional[VersionManifest] = None
    manifest_error: Optional[str] = None
    try:
        manifest = resolve_manifest(store, manifest_path or config.manifest.path or None)
    except ManifestError as e:
        manifest_error = str(e)
        log_warning(f"Manifest unavailable: {e}")

    local = sorted(index.local)
    remote = sorted(index.remote)
    summary: Dict[str, Any] = {
        "store": str(store.working_dir),
        "remote": store.remote_url(),
        "main": store.branch_commit(store.main_branch),
        "latest": store.branch_commit(LATEST_BRANCH),
        "local": {str(v): index.local[v].commit for v in local},
        "remote_only": [str(v) for v in remote if v not in index.local],
        "manifest": [str(d.version) for d in manifest] if manifest else [],
        "missing": [str(d.version) for d in manifest if d.version not in index.existing()] if manifest else [],
        "manifest_error": manifest_error,
    }
    log_action("status", local=len(local), remote=len(remote))
    return summary
