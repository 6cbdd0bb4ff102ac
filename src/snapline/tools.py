"""Bootstrap of the external downloader and stripper binaries.

Each tool is fetched from the latest GitHub release of its repository: the
first ``.zip`` asset (optionally filtered by a name substring) is extracted
into ``<bin_dir>/<name>/``. A tool whose executable already exists is left
alone.
"""

from __future__ import annotations

import io
import os
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .config_schema import SnaplineConfig
from .errors import ToolError
from .fs import is_within, remove_path
from .observability import log_action, log_debug, log_info, log_warning


@dataclass(frozen=True)
class ToolSpec:
    name: str
    repo: str
    asset_filter: str = ""


@dataclass(frozen=True)
class ToolPaths:
    downloader: Path
    stripper: Optional[Path]


def executable_path(bin_dir: Path, name: str) -> Path:
    suffix = ".exe" if os.name == "nt" else ""
    return Path(bin_dir) / name / f"{name}{suffix}"


def _auth_headers(token: Optional[str]) -> dict[str, str]:
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def select_asset(release: dict, asset_filter: str = "") -> dict:
    """Pick the first ``.zip`` asset whose name contains ``asset_filter``.

    Raises:
        ToolError: If the release has no matching asset
    """
    for asset in release.get("assets") or []:
        name = asset.get("name", "")
        if name.endswith(".zip") and asset_filter in name:
            return asset
    tag = release.get("tag_name", "?")
    wanted = f" containing {asset_filter!r}" if asset_filter else ""
    raise ToolError(f"Release {tag} has no .zip asset{wanted}")


def extract_zip(payload: bytes, target_dir: Path) -> int:
    """Extract a zip archive into ``target_dir``. Returns the number of files.

    Members that would land outside ``target_dir`` are skipped.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    count = 0
    try:
        archive = zipfile.ZipFile(io.BytesIO(payload))
    except zipfile.BadZipFile as e:
        raise ToolError(f"Downloaded asset is not a zip archive: {e}") from e
    with archive:
        for member in archive.infolist():
            destination = target_dir / member.filename
            if not is_within(destination, target_dir):
                log_warning("Skipping zip member outside target", member=member.filename)
                continue
            archive.extract(member, target_dir)
            if not member.is_dir():
                count += 1
    return count


def _mark_executable(path: Path) -> None:
    if os.name == "posix" and path.exists():
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def download_tool(
    spec: ToolSpec,
    bin_dir: Path,
    *,
    client: httpx.Client,
    api_base: str = "https://api.github.com",
) -> Path:
    """Download and extract the latest release of ``spec``.

    Returns:
        Path of the tool's executable

    Raises:
        ToolError: On HTTP failure, a missing asset or a bad archive
    """
    url = f"{api_base.rstrip('/')}/repos/{spec.repo}/releases/latest"
    log_debug("Fetching latest release info", tool=spec.name, url=url)
    try:
        response = client.get(url)
        response.raise_for_status()
        release = response.json()
        asset = select_asset(release, spec.asset_filter)
        log_info(f"Downloading {asset['name']}", tool=spec.name, tag=release.get("tag_name", "?"))
        download = client.get(asset["browser_download_url"], follow_redirects=True)
        download.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ToolError(
            f"Failed to download {spec.name}: HTTP {e.response.status_code} for {e.request.url}"
        ) from e
    except httpx.RequestError as e:
        raise ToolError(f"Failed to download {spec.name}: {e}") from e
    except (KeyError, ValueError) as e:
        raise ToolError(f"Unexpected release metadata for {spec.repo}: {e}") from e

    target_dir = Path(bin_dir) / spec.name
    extracted = extract_zip(download.content, target_dir)
    exe = executable_path(bin_dir, spec.name)
    _mark_executable(exe)
    log_action("tools.download", tool=spec.name, repo=spec.repo, files=extracted, path=str(target_dir))
    return exe


def _tool_specs(config: SnaplineConfig) -> tuple[ToolSpec, ToolSpec]:
    tools = config.tools
    return (
        ToolSpec(tools.downloader_name, tools.downloader_repo, tools.downloader_asset),
        ToolSpec(tools.stripper_name, tools.stripper_repo, tools.stripper_asset),
    )


def resolve_tools(config: SnaplineConfig) -> ToolPaths:
    """Where the tools are expected, honouring explicit executables in config."""
    bin_dir = Path(config.tools.bin_dir).expanduser()
    downloader_spec, stripper_spec = _tool_specs(config)
    downloader = (
        Path(config.fetch.executable).expanduser()
        if config.fetch.executable
        else executable_path(bin_dir, downloader_spec.name)
    )
    stripper: Optional[Path] = None
    if config.transform.enabled:
        stripper = (
            Path(config.transform.executable).expanduser()
            if config.transform.executable
            else executable_path(bin_dir, stripper_spec.name)
        )
    return ToolPaths(downloader=downloader, stripper=stripper)


def ensure_tools(
    config: SnaplineConfig,
    token: Optional[str] = None,
    *,
    client: Optional[httpx.Client] = None,
) -> ToolPaths:
    """Make sure the downloader (and stripper, when enabled) exist locally.

    Explicitly configured executables are never downloaded.

    Raises:
        ToolError: If a tool is missing and cannot be downloaded
    """
    paths = resolve_tools(config)
    bin_dir = Path(config.tools.bin_dir).expanduser()
    downloader_spec, stripper_spec = _tool_specs(config)

    wanted = []
    if not paths.downloader.exists():
        if config.fetch.executable:
            raise ToolError(f"Configured downloader not found: {paths.downloader}")
        wanted.append(downloader_spec)
    if paths.stripper is not None and not paths.stripper.exists():
        if config.transform.executable:
            raise ToolError(f"Configured stripper not found: {paths.stripper}")
        wanted.append(stripper_spec)

    if not wanted:
        log_debug("All tools present", bin_dir=str(bin_dir))
        return paths

    if not config.tools.auto_download:
        missing = ", ".join(spec.name for spec in wanted)
        raise ToolError(f"Missing tools ({missing}) and tools.auto_download is disabled")

    owns_client = client is None
    if client is None:
        client = httpx.Client(
            timeout=config.tools.timeout_seconds,
            headers=_auth_headers(token),
        )
    try:
        for spec in wanted:
            download_tool(spec, bin_dir, client=client, api_base=config.tools.api_base)
    finally:
        if owns_client:
            client.close()

    return paths


def reset_workspace(config: SnaplineConfig) -> list[Path]:
    """Delete the downloads, stripped-output and tool directories.

    Returns the directories that existed and were removed.
    """
    removed = []
    for path in config.work_dirs().values():
        if path.exists():
            remove_path(path)
            removed.append(path)
            log_info("Removed work directory", path=str(path))
    return removed
