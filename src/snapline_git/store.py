"""Commit-graph store adapter over GitPython.

The store is an ordinary git repository with a single working tree. Every
mutation the reconciler needs is expressed here as a small method; git errors
surface as :class:`snapline.errors.StoreError`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional

from git import (
    Actor,
    Commit,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
    RemoteReference,
    Repo,
)
from git.exc import BadName

from snapline.errors import StoreError

from snapline.observability import log_debug


class CommitGraphStore:
    """Thin wrapper around a GitPython ``Repo`` used as the snapshot store."""

    def __init__(
        self,
        repo: Repo,
        *,
        author: Optional[Actor] = None,
        main_branch: str = "main",
        remote_name: str = "origin",
    ):
        self.repo = repo
        self.author = author or Actor("snapline", "snapline@localhost")
        self.main_branch = main_branch
        self.remote_name = remote_name

    @classmethod
    def open(cls, path: Path, **kwargs) -> "CommitGraphStore":
        try:
            return cls(Repo(Path(path)), **kwargs)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise StoreError(f"Not a git repository: {path}") from None

    @classmethod
    def open_or_init(
        cls,
        path: Path,
        *,
        remote_url: str = "",
        **kwargs,
    ) -> "CommitGraphStore":
        """Open the repository at ``path``, initialising it when missing.

        When ``remote_url`` is given and the named remote does not exist yet,
        it is added.
        """
        path = Path(path).expanduser()
        try:
            repo = Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            path.mkdir(parents=True, exist_ok=True)
            try:
                repo = Repo.init(path)
            except GitCommandError as e:
                raise StoreError(f"Failed to initialise store at {path}: {e}") from e
            log_debug("Initialised store", path=str(path))

        store = cls(repo, **kwargs)
        if remote_url and not store.has_remote():
            repo.create_remote(store.remote_name, remote_url)
            log_debug("Added remote", remote=store.remote_name, url=remote_url)
        return store

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_tree_dir)

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    def has_remote(self) -> bool:
        return self.remote_name in [remote.name for remote in self.repo.remotes]

    def remote_url(self) -> Optional[str]:
        if not self.has_remote():
            return None
        try:
            return self.repo.remote(self.remote_name).url
        except (ValueError, GitCommandError):
            return None

    def has_branch(self, name: str) -> bool:
        return name in self.repo.heads

    def branch_commit(self, name: str) -> Optional[str]:
        """Hex sha a local branch points at, or None when it does not exist."""
        if name not in self.repo.heads:
            return None
        return self.repo.heads[name].commit.hexsha

    def current_branch(self) -> Optional[str]:
        """Checked-out branch name, or None for a detached or unborn HEAD."""
        if self.repo.head.is_detached:
            return None
        try:
            return self.repo.active_branch.name
        except TypeError:
            return None

    def head_commit(self) -> Optional[str]:
        try:
            return self.repo.head.commit.hexsha
        except ValueError:
            return None

    def local_branches(self, prefix: str = "") -> Dict[str, str]:
        """Map local branch names starting with ``prefix`` to commit shas."""
        try:
            return {
                head.name: head.commit.hexsha
                for head in self.repo.heads
                if head.name.startswith(prefix)
            }
        except (GitCommandError, ValueError) as e:
            raise StoreError(f"Failed to enumerate local branches: {e}") from e

    def remote_branches(self, prefix: str = "") -> Dict[str, str]:
        """Map remote-tracking branch names (without the remote) to commit shas."""
        if not self.has_remote():
            return {}
        try:
            refs = list(RemoteReference.list_items(self.repo, remote=self.remote_name))
        except (GitCommandError, ValueError) as e:
            raise StoreError(f"Failed to enumerate remote branches: {e}") from e
        branches: Dict[str, str] = {}
        for ref in refs:
            name = ref.remote_head
            if name == "HEAD" or not name.startswith(prefix):
                continue
            branches[name] = ref.commit.hexsha
        return branches

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        try:
            return self.repo.is_ancestor(ancestor, descendant)
        except GitCommandError as e:
            raise StoreError(f"Failed to compare {ancestor[:8]} and {descendant[:8]}: {e}") from e

    def parents_of(self, sha: str) -> list[str]:
        return [parent.hexsha for parent in self.repo.commit(sha).parents]

    def read_file(self, ref: str, path: str) -> Optional[bytes]:
        """Contents of ``path`` in the tree of ``ref``, or None if absent."""
        try:
            tree = self.repo.commit(ref).tree
        except (BadName, GitCommandError, ValueError, IndexError):
            return None
        try:
            blob = tree / path
        except KeyError:
            return None
        return blob.data_stream.read()

    def list_files(self, ref: str) -> list[str]:
        """Paths of all blobs in the tree of ``ref``."""
        tree = self.repo.commit(ref).tree
        return sorted(item.path for item in tree.traverse() if item.type == "blob")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def detach_head(self) -> None:
        try:
            self.repo.git.checkout("--detach")
        except GitCommandError as e:
            raise StoreError(f"Failed to detach HEAD: {e}") from e

    def delete_branch(self, name: str) -> bool:
        """Delete a local branch, switching away first if it is checked out.

        Returns False when the branch did not exist.
        """
        if name not in self.repo.heads:
            return False
        if self.current_branch() == name:
            if self.has_branch(self.main_branch) and name != self.main_branch:
                self.checkout(self.main_branch)
            else:
                self.detach_head()
        try:
            self.repo.git.branch("-D", name)
        except GitCommandError as e:
            raise StoreError(f"Failed to delete branch {name}: {e}") from e
        log_debug("Deleted branch", branch=name)
        return True

    def set_branch(self, name: str, sha: str) -> None:
        """Create ``name`` at ``sha``, or move it there if it exists."""
        if self.current_branch() == name:
            self.detach_head()
        try:
            self.repo.git.branch("-f", name, sha)
        except GitCommandError as e:
            raise StoreError(f"Failed to point {name} at {sha[:8]}: {e}") from e

    def checkout(self, name: str, *, clean: bool = False) -> None:
        """Force-checkout ``name``; with ``clean`` also drop untracked and ignored files."""
        try:
            self.repo.git.checkout("-f", name)
            if clean:
                self.repo.git.clean("-f", "-d", "-x")
        except GitCommandError as e:
            raise StoreError(f"Failed to check out {name}: {e}") from e

    def stage_all(self) -> None:
        """Stage the whole working tree, including deletions and ignored files."""
        try:
            self.repo.git.add("--all", "--force", ".")
        except GitCommandError as e:
            raise StoreError(f"Failed to stage working tree: {e}") from e

    def commit_index(self, message: str, parents: Iterable[str] = ()) -> str:
        """Write the index as a tree and commit it with exactly ``parents``.

        HEAD and branches are not moved. Returns the new commit sha.
        """
        try:
            tree = self.repo.index.write_tree()
            commit = Commit.create_from_tree(
                self.repo,
                tree,
                message,
                parent_commits=[self.repo.commit(sha) for sha in parents],
                head=False,
                author=self.author,
                committer=self.author,
            )
        except (BadName, GitCommandError, ValueError) as e:
            raise StoreError(f"Failed to create commit: {e}") from e
        return commit.hexsha
