"""Scaffold ``main`` branch: bundled assets and the manifest it carries."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import snapline
from snapline.errors import ManifestError
from snapline.fs import copy_tree
from snapline.manifest import MANIFEST_FILENAME, VersionManifest, load_manifest, parse_manifest

from .builder import WorkingTree
from snapline.observability import log_info
from .store import CommitGraphStore


ASSETS_DIR = Path(snapline.__file__).parent / "assets"
SCAFFOLD_MESSAGE = "feat: initial main branch"


def ensure_main_branch(store: CommitGraphStore, assets_dir: Optional[Path] = None) -> bool:
    """Create the main branch from bundled assets if it does not exist.

    Returns True when the branch was created.
    """
    if store.has_branch(store.main_branch):
        return False

    assets_dir = Path(assets_dir) if assets_dir else ASSETS_DIR
    WorkingTree(store.working_dir).clear()
    copy_tree(assets_dir, store.working_dir)
    store.stage_all()
    sha = store.commit_index(SCAFFOLD_MESSAGE, parents=[])
    store.set_branch(store.main_branch, sha)
    store.checkout(store.main_branch)
    log_info(f"Created {store.main_branch} branch with assets at {sha[:8]}")
    return True


def checkout_main(store: CommitGraphStore) -> None:
    """Force-checkout main and remove untracked and ignored files."""
    store.checkout(store.main_branch, clean=True)


def load_manifest_from_branch(store: CommitGraphStore, branch: Optional[str] = None) -> VersionManifest:
    """Read ``versions.json`` from the tip of ``branch`` (main by default).

    Raises:
        ManifestError: If the branch or the file is missing, or the file is invalid
    """
    branch = branch or store.main_branch
    if not store.has_branch(branch):
        raise ManifestError(f"Branch {branch} does not exist in {store.working_dir}")
    raw = store.read_file(branch, MANIFEST_FILENAME)
    if raw is None:
        raise ManifestError(f"{MANIFEST_FILENAME} not found on branch {branch}")
    manifest = parse_manifest(raw)
    log_info(f"Loaded {MANIFEST_FILENAME} from {branch} with {len(manifest)} versions")
    return manifest


def resolve_manifest(store: CommitGraphStore, manifest_path: Optional[str] = None) -> VersionManifest:
    """An explicit manifest file wins over the copy on the main branch."""
    if manifest_path:
        return load_manifest(Path(manifest_path).expanduser())
    return load_manifest_from_branch(store)
