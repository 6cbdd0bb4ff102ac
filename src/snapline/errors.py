"""Exception hierarchy for snapline.

Configuration problems are raised before the store is touched. Collaborator
and store failures are fatal for the version being built and abort the
remaining manifest pass. Mirror failures never raise; they are logged and
recorded as warnings by the mirror.
"""

from __future__ import annotations

from typing import Any, Optional


class SnaplineError(Exception):
    """Base exception for all snapline failures."""


class ConfigError(SnaplineError):
    """Configuration loading or validation error."""


class ManifestError(ConfigError):
    """The version manifest is missing, unreadable or invalid."""


class CollaboratorError(SnaplineError):
    """An external collaborator (fetch or transform) reported failure."""

    def __init__(self, message: str, *, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class FetchError(CollaboratorError):
    """The fetch collaborator exited non-zero or could not be started."""


class TransformError(CollaboratorError):
    """The transform collaborator exited non-zero or could not be started."""


class ToolError(SnaplineError):
    """Failed to download or locate an external tool binary."""


class StoreError(SnaplineError):
    """A commit-graph store operation failed."""


class ReconcileAborted(SnaplineError):
    """The manifest pass stopped at a failing version.

    Branches for versions before ``version`` may have been updated; branches
    after it are untouched and ``versions/latest`` was not moved.
    """

    def __init__(self, version: Any, outcome: Any, cause: BaseException):
        super().__init__(f"Reconciliation aborted at version {version}: {cause}")
        self.version = version
        self.outcome = outcome
        self.cause = cause


class DivergenceError(StoreError):
    """Local and remote branches for one version have unrelated histories."""

    def __init__(self, branch: str, local: str, remote: str):
        super().__init__(
            f"{branch} diverged: local {local[:8]} and remote {remote[:8]} share no ancestry"
        )
        self.branch = branch
        self.local = local
        self.remote = remote
