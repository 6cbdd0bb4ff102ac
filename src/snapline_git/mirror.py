"""Best-effort mirroring of version branches to a remote.

Nothing here raises on network or auth problems: failures are logged as
warnings and collected in :attr:`RemoteMirror.warnings`, and the local store
stays authoritative.
"""

from __future__ import annotations

import os
import sys
from typing import Dict, List, Optional

from git import GitCommandError

from snapline.observability import log_action, log_debug, log_warning
from .store import CommitGraphStore


ASKPASS_TOKEN_ENV = "SNAPLINE_ASKPASS_TOKEN"

NETWORK_ERROR_TOKENS = (
    "could not read from remote repository",
    "could not resolve hostname",
    "permission denied",
    "authentication failed",
    "network is unreachable",
    "failed to connect to",
    "repository not found",
)


def build_git_env(remote_url: Optional[str], token: Optional[str]) -> Dict[str, str]:
    """Environment for git network operations that never prompts."""
    env = os.environ.copy()
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    env.setdefault("GCM_INTERACTIVE", "never")
    env.setdefault("GIT_HTTP_LOW_SPEED_LIMIT", "1")
    env.setdefault("GIT_HTTP_LOW_SPEED_TIME", "30")

    if token and remote_url and remote_url.startswith("https://"):
        # git asks for "Username for ..." then "Password for ..."
        env[ASKPASS_TOKEN_ENV] = token
        env["GIT_ASKPASS"] = (
            f'"{sys.executable}" -c "import os, sys; '
            f"print('x-access-token' if 'Username' in sys.argv[1] "
            f"else os.environ['{ASKPASS_TOKEN_ENV}'])\""
        )
    else:
        env.setdefault("GIT_ASKPASS", "echo")

    if remote_url and (remote_url.startswith("git@") or remote_url.startswith("ssh://")):
        env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    return env


def _describe_error(error: GitCommandError) -> str:
    text = (getattr(error, "stderr", "") or str(error)).strip()
    lowered = text.lower()
    if any(token in lowered for token in NETWORK_ERROR_TOKENS):
        return f"remote unreachable or access denied: {text}"
    return text or "git command failed"


class RemoteMirror:
    """Fetches and force-pushes branches for one remote of the store."""

    def __init__(self, store: CommitGraphStore, *, token: Optional[str] = None, enabled: bool = True):
        self.store = store
        self.enabled = enabled
        self.warnings: List[str] = []
        self._env = build_git_env(store.remote_url(), token)

    @property
    def active(self) -> bool:
        return self.enabled and self.store.has_remote()

    def _warn(self, message: str, **fields) -> None:
        self.warnings.append(message)
        log_warning(message, **fields)

    def fetch_all(self) -> bool:
        """Fetch and prune remote-tracking refs. No remote is a successful no-op."""
        if not self.active:
            return True
        repo = self.store.repo
        try:
            with repo.git.custom_environment(**self._env):
                repo.git.fetch(self.store.remote_name, "--prune")
        except GitCommandError as e:
            self._warn(f"Fetch from {self.store.remote_name} failed: {_describe_error(e)}")
            return False
        log_debug("Fetched remote refs", remote=self.store.remote_name)
        return True

    def push(self, branch: str) -> bool:
        """Force-push ``branch`` to the same name on the remote."""
        if not self.active:
            return True
        repo = self.store.repo
        refspec = f"+refs/heads/{branch}:refs/heads/{branch}"
        try:
            with repo.git.custom_environment(**self._env):
                repo.git.push(self.store.remote_name, refspec)
        except GitCommandError as e:
            self._warn(
                f"Push of {branch} to {self.store.remote_name} failed: {_describe_error(e)}",
                branch=branch,
            )
            log_action("mirror.push", outcome="error", branch=branch)
            return False
        log_action("mirror.push", branch=branch, remote=self.store.remote_name)
        return True
