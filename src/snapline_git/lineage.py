"""Lineage inspection: which versions already have branches, locally and remotely."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Set

import semver

from snapline.manifest import parse_version

from snapline.observability import log_debug
from .store import CommitGraphStore


VERSION_BRANCH_PREFIX = "version/"
LATEST_BRANCH = "versions/latest"


def version_branch_name(version) -> str:
    return f"{VERSION_BRANCH_PREFIX}{version}"


def parse_version_branch(name: str) -> Optional[semver.Version]:
    """Return the version encoded in a ``version/<semver>`` branch name.

    Returns None for names without the prefix or with an unparsable suffix.
    """
    if not name.startswith(VERSION_BRANCH_PREFIX):
        return None
    try:
        return parse_version(name[len(VERSION_BRANCH_PREFIX):])
    except ValueError:
        return None


@dataclass(frozen=True)
class BranchRef:
    name: str
    version: semver.Version
    commit: str


@dataclass
class LineageIndex:
    """Version branches discovered at the start of a run."""

    local: Dict[semver.Version, BranchRef] = field(default_factory=dict)
    remote: Dict[semver.Version, BranchRef] = field(default_factory=dict)

    def existing(self) -> Set[semver.Version]:
        return set(self.local) | set(self.remote)

    def local_commit(self, version: semver.Version) -> Optional[str]:
        ref = self.local.get(version)
        return ref.commit if ref else None

    def remote_commit(self, version: semver.Version) -> Optional[str]:
        ref = self.remote.get(version)
        return ref.commit if ref else None

    def record_local(self, version: semver.Version, commit: str) -> None:
        self.local[version] = BranchRef(version_branch_name(version), version, commit)


class LineageInspector:
    def __init__(self, store: CommitGraphStore):
        self.store = store

    def _collect(self, branches: Dict[str, str], where: str) -> Dict[semver.Version, BranchRef]:
        found: Dict[semver.Version, BranchRef] = {}
        for name, commit in branches.items():
            version = parse_version_branch(name)
            if version is None:
                log_debug("Skipping unparsable version branch", branch=name, where=where)
                continue
            found[version] = BranchRef(name, version, commit)
        return found

    def discover(self) -> LineageIndex:
        """Build the lineage index from local heads and remote-tracking refs.

        Remote refs are whatever the last fetch left behind; fetching is the
        mirror's job.

        Raises:
            StoreError: If refs cannot be enumerated
        """
        index = LineageIndex(
            local=self._collect(self.store.local_branches(VERSION_BRANCH_PREFIX), "local"),
            remote=self._collect(self.store.remote_branches(VERSION_BRANCH_PREFIX), "remote"),
        )
        log_debug(
            "Discovered version branches",
            local=len(index.local),
            remote=len(index.remote),
        )
        return index

    def discover_existing(self) -> Set[semver.Version]:
        return self.discover().existing()
