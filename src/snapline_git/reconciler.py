"""Reconciler: drives the manifest pass over the version branches.

Processing follows the manifest's declared order, never semver order. Each
entry is handled exactly one of these ways:

- ``existing``: a local branch exists and agrees with the remote (or there is
  no remote branch); nothing is built.
- ``fast_forward``: the local branch is an ancestor of the remote one and is
  moved to the remote commit without fetching anything.
- ``created_from_remote``: only the remote has the branch; a local branch is
  created at the remote commit.
- ``kept_local``: the remote branch is behind, or diverged under the
  ``prefer_local`` policy; the local branch is force-pushed.
- ``reset_to_remote``: diverged under the ``prefer_remote`` policy.
- ``built``: no branch anywhere; the builder creates a commit whose single
  parent is the branch of the entry declared immediately before.

A version built ahead of later entries that already had branches is an
out-of-order insertion. The later branches are left alone unless a cascade is
requested, in which case :meth:`Reconciler.rebuild_tail` re-creates every
later, greater version so the chain re-links through the inserted one.

Any build failure aborts the pass with :class:`ReconcileAborted`; branches for
later entries are untouched and ``versions/latest`` is not moved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import semver

from snapline.config_schema import DivergencePolicy
from snapline.errors import DivergenceError, ReconcileAborted, SnaplineError
from snapline.manifest import VersionDescriptor, VersionManifest, parse_version

from .builder import BranchChainBuilder
from .lineage import LATEST_BRANCH, LineageIndex, LineageInspector, version_branch_name
from .mirror import RemoteMirror
from snapline.observability import log_action, log_info, log_warning, timeit
from .store import CommitGraphStore


EXISTING = "existing"
FAST_FORWARD = "fast_forward"
CREATED_FROM_REMOTE = "created_from_remote"
KEPT_LOCAL = "kept_local"
RESET_TO_REMOTE = "reset_to_remote"
BUILT = "built"
REBUILT = "rebuilt"

NEW_COMMIT_ACTIONS = frozenset({BUILT, REBUILT})


@dataclass(frozen=True)
class VersionRecord:
    version: semver.Version
    action: str
    commit: str


@dataclass
class ReconcileOutcome:
    records: List[VersionRecord] = field(default_factory=list)
    insertions: List[semver.Version] = field(default_factory=list)
    rebuilt: List[semver.Version] = field(default_factory=list)
    latest: Optional[str] = None
    mirror_warnings: List[str] = field(default_factory=list)

    def record(self, version: semver.Version, action: str, commit: str) -> None:
        self.records.append(VersionRecord(version, action, commit))

    def action_for(self, version) -> Optional[str]:
        version = parse_version(version)
        for rec in reversed(self.records):
            if rec.version == version:
                return rec.action
        return None

    def versions_with(self, action: str) -> List[semver.Version]:
        return [rec.version for rec in self.records if rec.action == action]

    @property
    def commits_created(self) -> int:
        return sum(1 for rec in self.records if rec.action in NEW_COMMIT_ACTIONS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [
                {"version": str(rec.version), "action": rec.action, "commit": rec.commit}
                for rec in self.records
            ],
            "insertions": [str(v) for v in self.insertions],
            "rebuilt": [str(v) for v in self.rebuilt],
            "latest": self.latest,
            "mirror_warnings": list(self.mirror_warnings),
        }


class Reconciler:
    def __init__(
        self,
        store: CommitGraphStore,
        builder: BranchChainBuilder,
        *,
        mirror: Optional[RemoteMirror] = None,
        divergence_policy: DivergencePolicy = "prefer_local",
    ):
        self.store = store
        self.builder = builder
        self.mirror = mirror
        self.divergence_policy = divergence_policy

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _push(self, branch: str) -> None:
        if self.mirror is not None:
            self.mirror.push(branch)

    def _finish(self, outcome: ReconcileOutcome) -> ReconcileOutcome:
        if self.mirror is not None:
            outcome.mirror_warnings = list(self.mirror.warnings)
        return outcome

    def _build(
        self,
        descriptor: VersionDescriptor,
        prev: Optional[VersionDescriptor],
        outcome: ReconcileOutcome,
    ) -> str:
        try:
            return self.builder.build(descriptor, prev.version if prev else None)
        except SnaplineError as e:
            self._finish(outcome)
            log_action("reconcile.abort", outcome="error", version=str(descriptor.version), error=str(e))
            raise ReconcileAborted(descriptor.version, outcome, e) from e

    def _resolve_existing(
        self,
        version: semver.Version,
        local: str,
        remote: Optional[str],
        outcome: ReconcileOutcome,
    ) -> tuple[str, str]:
        """Decide between a local branch and its remote counterpart."""
        branch = version_branch_name(version)
        if remote is None:
            if self.mirror is not None and self.mirror.active:
                # Remote is missing the branch, e.g. after an earlier failed push
                self._push(branch)
            return EXISTING, local
        if remote == local:
            return EXISTING, local
        if self.store.is_ancestor(local, remote):
            self.store.set_branch(branch, remote)
            return FAST_FORWARD, remote
        if self.store.is_ancestor(remote, local):
            self._push(branch)
            return KEPT_LOCAL, local

        if self.divergence_policy == "fail":
            self._finish(outcome)
            error = DivergenceError(branch, local, remote)
            raise ReconcileAborted(version, outcome, error) from error
        if self.divergence_policy == "prefer_remote":
            log_warning(f"{branch} diverged from remote; resetting to remote", local=local, remote=remote)
            self.store.set_branch(branch, remote)
            return RESET_TO_REMOTE, remote
        log_warning(f"{branch} diverged from remote; keeping local", local=local, remote=remote)
        self._push(branch)
        return KEPT_LOCAL, local

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(
        self,
        manifest: VersionManifest,
        index: Optional[LineageIndex] = None,
        *,
        cascade: bool = False,
    ) -> ReconcileOutcome:
        """Bring the version branches in line with ``manifest``.

        Args:
            manifest: Ordered version descriptors
            index: Branches discovered beforehand; discovered now when omitted
            cascade: Rebuild the tail after the earliest out-of-order insertion

        Raises:
            ReconcileAborted: A version could not be built, or a divergence was
                found under the ``fail`` policy
        """
        if index is None:
            index = LineageInspector(self.store).discover()
        existing_at_start = index.existing()
        outcome = ReconcileOutcome()

        with timeit("reconcile", versions=len(manifest), cascade=cascade) as info:
            prev: Optional[VersionDescriptor] = None
            for descriptor in manifest:
                version = descriptor.version
                local = index.local_commit(version)
                remote = index.remote_commit(version)

                if local is not None:
                    action, commit = self._resolve_existing(version, local, remote, outcome)
                elif remote is not None:
                    self.store.set_branch(version_branch_name(version), remote)
                    action, commit = CREATED_FROM_REMOTE, remote
                else:
                    commit = self._build(descriptor, prev, outcome)
                    action = BUILT
                    later = manifest.tail_after(version)
                    if any(d.version in existing_at_start for d in later):
                        outcome.insertions.append(version)
                        log_warning(
                            f"Version {version} was inserted ahead of existing branches",
                            cascade=cascade,
                        )

                index.record_local(version, commit)
                outcome.record(version, action, commit)
                log_action("reconcile.version", version=str(version), result=action, commit=commit)
                prev = descriptor

            if cascade and outcome.insertions:
                self.rebuild_tail(manifest, outcome.insertions[0], outcome=outcome)

            self.update_latest(manifest, outcome)
            info["created"] = outcome.commits_created
            info["insertions"] = len(outcome.insertions)

        return self._finish(outcome)

    def rebuild_tail(
        self,
        manifest: VersionManifest,
        from_version,
        *,
        outcome: Optional[ReconcileOutcome] = None,
    ) -> ReconcileOutcome:
        """Rebuild every entry after ``from_version`` whose version is greater.

        Each entry is rebuilt on top of its manifest predecessor's current
        branch, so the chain re-links through ``from_version``. The branch of
        ``from_version`` itself is not touched and must exist.

        Raises:
            ReconcileAborted: A version in the tail could not be rebuilt
        """
        outcome = outcome if outcome is not None else ReconcileOutcome()
        pivot = parse_version(from_version)
        tail = manifest.tail_after(pivot)

        with timeit("reconcile.rebuild_tail", start=str(pivot), count=len(tail)):
            for descriptor in tail:
                prev = manifest.predecessor_of(descriptor.version)
                commit = self._build(descriptor, prev, outcome)
                outcome.rebuilt.append(descriptor.version)
                outcome.record(descriptor.version, REBUILT, commit)
                log_info(f"Rebuilt {version_branch_name(descriptor.version)} at {commit[:8]}")

        return self._finish(outcome)

    def update_latest(self, manifest: VersionManifest, outcome: Optional[ReconcileOutcome] = None) -> Optional[str]:
        """Recreate ``versions/latest`` at the branch of the last manifest entry and push it."""
        if len(manifest) == 0:
            return None
        last = manifest[len(manifest) - 1]
        commit = self.store.branch_commit(version_branch_name(last.version))
        if commit is None:
            log_warning(f"Not moving {LATEST_BRANCH}: {version_branch_name(last.version)} does not exist")
            return None

        self.store.delete_branch(LATEST_BRANCH)
        self.store.set_branch(LATEST_BRANCH, commit)
        log_action("reconcile.latest", version=str(last.version), commit=commit)
        self._push(LATEST_BRANCH)
        if outcome is not None:
            outcome.latest = commit
        return commit
