"""Git engine for snapline: version branches, reconciliation and mirroring."""

from .builder import BranchChainBuilder, WorkingTree
from .lineage import LATEST_BRANCH, VERSION_BRANCH_PREFIX, LineageIndex, LineageInspector
from .mirror import RemoteMirror
from .reconciler import ReconcileOutcome, Reconciler
from .store import CommitGraphStore

__all__ = [
    "BranchChainBuilder",
    "CommitGraphStore",
    "LATEST_BRANCH",
    "LineageIndex",
    "LineageInspector",
    "ReconcileOutcome",
    "Reconciler",
    "RemoteMirror",
    "VERSION_BRANCH_PREFIX",
    "WorkingTree",
]
