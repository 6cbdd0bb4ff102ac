"""Configuration schema for snapline.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


DivergencePolicy = Literal["prefer_local", "prefer_remote", "fail"]


class StoreConfig(BaseModel):
    """Location and branch layout of the commit-graph store."""

    path: str = Field(
        default="./versions",
        description="Path of the git repository holding version branches",
    )
    main_branch: str = Field(
        default="main",
        description="Scaffold branch carrying versions.json and bundled assets",
    )
    remote_name: str = Field(
        default="origin",
        description="Name of the mirror remote",
    )
    remote_url: str = Field(
        default="",
        description="Mirror URL; added as remote_name when the remote is missing (empty = leave as-is)",
    )

    @field_validator("main_branch", "remote_name")
    @classmethod
    def validate_ref_component(cls, v: str) -> str:
        if not v or any(ch.isspace() for ch in v) or v.startswith("-"):
            raise ValueError(f"invalid git name: {v!r}")
        return v


class ManifestConfig(BaseModel):
    """Where the version manifest is read from."""

    path: str = Field(
        default="",
        description="Manifest JSON file (empty = versions.json on the main branch)",
    )


class GitConfig(BaseModel):
    """Commit identity."""

    author: str = Field(default="snapline", description="Commit author and committer name")
    email: str = Field(default="snapline@localhost", description="Commit author and committer email")


class FetchConfig(BaseModel):
    """Fetch collaborator (external downloader) invocation."""

    executable: str = Field(
        default="",
        description="Downloader executable (empty = bootstrapped copy under tools.bin_dir)",
    )
    app_id: str = Field(default="620980", description="Application id passed as -app")
    depot_id: str = Field(default="620981", description="Depot id passed as -depot")
    downloads_dir: str = Field(default="./downloads", description="Raw download root")
    remember_password: bool = Field(default=True, description="Pass -remember-password")
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Kill the downloader after this many seconds (empty = no limit)",
    )


class TransformConfig(BaseModel):
    """Transform collaborator (external stripper) invocation."""

    enabled: bool = Field(
        default=True,
        description="Run the stripper; when false raw downloads are committed as-is",
    )
    executable: str = Field(
        default="",
        description="Stripper executable (empty = bootstrapped copy under tools.bin_dir)",
    )
    profile: str = Field(default="beatsaber", description="Stripper module passed as -m")
    output_dir: str = Field(default="./stripped", description="Transformed output root")
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class ToolsConfig(BaseModel):
    """Bootstrap of external tool binaries from GitHub releases."""

    auto_download: bool = Field(default=True, description="Download missing tools before a run")
    bin_dir: str = Field(default="./bin", description="Directory holding extracted tools")
    api_base: str = Field(default="https://api.github.com", description="GitHub API base URL")
    timeout_seconds: float = Field(default=60.0, gt=0)
    downloader_repo: str = Field(default="SteamRE/DepotDownloader")
    downloader_name: str = Field(default="DepotDownloader")
    downloader_asset: str = Field(
        default="",
        description="Substring the release asset name must contain (empty = first .zip)",
    )
    stripper_repo: str = Field(default="beat-forge/GenericStripper")
    stripper_name: str = Field(default="GenericStripper")
    stripper_asset: str = Field(default="")

    @field_validator("downloader_repo", "stripper_repo")
    @classmethod
    def validate_repo_slug(cls, v: str) -> str:
        parts = v.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"expected owner/name, got {v!r}")
        return v


class SyncConfig(BaseModel):
    """Reconciliation and mirror behaviour."""

    fetch: bool = Field(default=True, description="Fetch remote refs before reconciling")
    push: bool = Field(default=True, description="Push branches after updating them")
    cascade: bool = Field(
        default=False,
        description="Rebuild the manifest tail after an out-of-order insertion",
    )
    divergence_policy: DivergencePolicy = Field(
        default="prefer_local",
        description="What to do when local and remote branches for a version truly diverge",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.snapline/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but is not a directory (it is created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class SnaplineConfig(BaseModel):
    """Root configuration."""

    version: int = Field(default=1, description="Config schema version")
    store: StoreConfig = Field(default_factory=StoreConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    transform: TransformConfig = Field(default_factory=TransformConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def work_dirs(self) -> dict[str, Path]:
        """Directories snapline writes outside the store."""
        return {
            "downloads": Path(self.fetch.downloads_dir).expanduser(),
            "stripped": Path(self.transform.output_dir).expanduser(),
            "bin": Path(self.tools.bin_dir).expanduser(),
        }
