"""Credentials management for snapline.

Two credentials matter: the account the fetch collaborator logs in with, and
a GitHub token used both for the release API (tool bootstrap) and for HTTPS
pushes to the mirror remote.

Priority is always: environment > ~/.snapline/credentials.toml.
"""

from __future__ import annotations

import os
import stat
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomlkit
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


CREDENTIALS_FILENAME = "credentials.toml"
USER_CONFIG_DIR = ".snapline"

ENV_FETCH_USERNAME = "SNAPLINE_FETCH_USERNAME"
ENV_FETCH_PASSWORD = "SNAPLINE_FETCH_PASSWORD"
# Priority: SNAPLINE_GITHUB_TOKEN > GITHUB_TOKEN > GH_TOKEN
GITHUB_TOKEN_ENVS = ("SNAPLINE_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")


class FetchCredentials(BaseModel):
    """Account used by the fetch collaborator."""

    username: str = Field(default="", description="Downloader account name")
    password: str = Field(default="", description="Downloader account password")

    @property
    def complete(self) -> bool:
        return bool(self.username and self.password)


class GitHubCredentials(BaseModel):
    """GitHub authentication credentials."""

    token: str = Field(default="", description="GitHub personal access token")


class Credentials(BaseModel):
    """All snapline credentials."""

    fetch: FetchCredentials = Field(default_factory=FetchCredentials)
    github: GitHubCredentials = Field(default_factory=GitHubCredentials)

    def require_fetch(self) -> FetchCredentials:
        """Return fetch credentials or raise before anything is mutated.

        Raises:
            ConfigError: If username or password is missing
        """
        if not self.fetch.complete:
            missing = [
                env for env, value in (
                    (ENV_FETCH_USERNAME, self.fetch.username),
                    (ENV_FETCH_PASSWORD, self.fetch.password),
                )
                if not value
            ]
            raise ConfigError(
                "Missing fetch credentials: set "
                + ", ".join(missing)
                + f" or add a [fetch] section to ~/{USER_CONFIG_DIR}/{CREDENTIALS_FILENAME}"
            )
        return self.fetch


def _get_user_credentials_path() -> Path:
    """Get path to user credentials file."""
    return Path.home() / USER_CONFIG_DIR / CREDENTIALS_FILENAME


def _secure_file_permissions(path: Path) -> None:
    """Set owner read/write only. No-op on Windows."""
    if os.name == "posix":
        try:
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        except OSError as e:
            warnings.warn(
                f"Could not set secure permissions on {path}: {e}. "
                "Credentials file may be readable by other users.",
                UserWarning,
            )


def _load_toml_credentials(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_credentials(path: Optional[Path] = None, *, skip_env: bool = False) -> Credentials:
    """Load credentials from the TOML file, then overlay environment variables.

    A broken credentials file is reported as a warning and treated as empty.
    """
    toml_path = path or _get_user_credentials_path()
    creds = Credentials()

    if toml_path.exists():
        try:
            creds = Credentials.model_validate(_load_toml_credentials(toml_path))
        except (OSError, tomllib.TOMLDecodeError, ValidationError) as e:
            warnings.warn(f"Error loading credentials from {toml_path}: {e}", UserWarning)

    if skip_env:
        return creds

    username = os.getenv(ENV_FETCH_USERNAME)
    password = os.getenv(ENV_FETCH_PASSWORD)
    token = next((os.environ[name] for name in GITHUB_TOKEN_ENVS if os.getenv(name)), None)

    return creds.model_copy(
        update={
            "fetch": FetchCredentials(
                username=username or creds.fetch.username,
                password=password or creds.fetch.password,
            ),
            "github": GitHubCredentials(token=token or creds.github.token),
        }
    )


def save_credentials(creds: Credentials, path: Optional[Path] = None) -> Path:
    """Save credentials to the TOML file with owner-only permissions."""
    toml_path = path or _get_user_credentials_path()
    toml_path.parent.mkdir(parents=True, exist_ok=True)

    doc = tomlkit.document()
    doc.add(tomlkit.comment(" snapline credentials"))
    doc.add(tomlkit.comment(" Keep this file secure - do not commit to version control"))
    doc.add(tomlkit.nl())

    if creds.fetch.username or creds.fetch.password:
        fetch = tomlkit.table()
        if creds.fetch.username:
            fetch.add("username", creds.fetch.username)
        if creds.fetch.password:
            fetch.add("password", creds.fetch.password)
        doc.add("fetch", fetch)

    if creds.github.token:
        github = tomlkit.table()
        github.add("token", creds.github.token)
        doc.add("github", github)

    with open(toml_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(doc))

    _secure_file_permissions(toml_path)
    return toml_path


def get_github_token() -> Optional[str]:
    """Get GitHub token from environment or credentials file."""
    return load_credentials().github.token or None
