"""Branch chain builder: turns one manifest entry into one snapshot commit."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import semver

from snapline.collaborators import Fetcher, Transformer
from snapline.errors import FetchError, StoreError, TransformError
from snapline.fs import CONTROL_ENTRIES, clear_directory, copy_tree, remove_path, write_version_marker
from snapline.manifest import VersionDescriptor

from .lineage import version_branch_name
from .mirror import RemoteMirror
from snapline.observability import log_debug, log_info, timeit
from .store import CommitGraphStore


COMMIT_MESSAGE = "feat: update version to {version}"


class WorkingTree:
    """The store's single working tree.

    Contract: :meth:`replace_with` clears every top-level entry except
    ``.git`` before new content is written, so nothing from the previously
    checked-out snapshot leaks into the next one.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def clear(self) -> int:
        return clear_directory(self.root, keep=CONTROL_ENTRIES)

    def replace_with(self, content: Path, version: semver.Version) -> int:
        removed = self.clear()
        copied = copy_tree(content, self.root, skip=CONTROL_ENTRIES)
        write_version_marker(self.root, str(version))
        log_debug("Working tree replaced", removed=removed, copied=copied, version=str(version))
        return copied


class BranchChainBuilder:
    """Builds ``version/<v>`` as a single commit on top of its predecessor's branch."""

    def __init__(
        self,
        store: CommitGraphStore,
        fetcher: Fetcher,
        transformer: Transformer,
        *,
        downloads_dir: Path,
        output_dir: Path,
        mirror: Optional[RemoteMirror] = None,
        working_tree: Optional[WorkingTree] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.transformer = transformer
        self.downloads_dir = Path(downloads_dir)
        self.output_dir = Path(output_dir)
        self.mirror = mirror
        self.working_tree = working_tree or WorkingTree(store.working_dir)

    def build(self, descriptor: VersionDescriptor, prev_version: Optional[semver.Version]) -> str:
        """Fetch, transform and commit ``descriptor``; return the new commit sha.

        Raises:
            FetchError: The fetch collaborator failed
            TransformError: The transform collaborator failed
            StoreError: The predecessor branch is missing or git failed
        """
        version = descriptor.version
        branch = version_branch_name(version)

        with timeit("build.version", version=str(version), parent=str(prev_version) if prev_version else None) as info:
            parent_sha: Optional[str] = None
            if prev_version is not None:
                parent_sha = self.store.branch_commit(version_branch_name(prev_version))
                if parent_sha is None:
                    raise StoreError(
                        f"Cannot build {version}: predecessor branch {version_branch_name(prev_version)} is missing"
                    )

            download_dir = self.downloads_dir / str(version)
            fetched = self.fetcher.fetch(descriptor, download_dir)
            if not fetched.ok:
                raise FetchError(
                    f"Fetch failed for {version}: {fetched.message}",
                    exit_code=fetched.exit_code,
                )

            source = fetched.output_dir or download_dir
            destination = self.output_dir / str(version)
            remove_path(destination)
            transformed = self.transformer.transform(source, destination)
            if not transformed.ok:
                raise TransformError(
                    f"Transform failed for {version}: {transformed.message}",
                    exit_code=transformed.exit_code,
                )

            # a failed fetch or transform leaves the existing branch in place
            if self.store.delete_branch(branch):
                log_info(f"Deleted existing branch {branch}")
            self.working_tree.replace_with(transformed.output_dir or destination, version)
            self.store.stage_all()
            sha = self.store.commit_index(
                COMMIT_MESSAGE.format(version=version),
                parents=[parent_sha] if parent_sha else [],
            )
            self.store.set_branch(branch, sha)
            self.store.checkout(branch)
            info["commit"] = sha

        log_info(f"Created {branch} at {sha[:8]}")
        if self.mirror is not None:
            self.mirror.push(branch)
        return sha
