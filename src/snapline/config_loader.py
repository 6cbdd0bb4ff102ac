"""Configuration loading and merging for snapline.

Handles TOML loading, config discovery, deep merging, and environment overlay.

Discovery order (later sources override earlier):
1. Built-in defaults
2. User config (~/.snapline/config.toml)
3. Project config (.snapline/config.toml, searched upward from the project path)
4. Environment variables (a ``.env`` file in the working directory is loaded first)
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv
from pydantic import ValidationError

from .config_schema import SnaplineConfig
from .errors import ConfigError


CONFIG_FILENAME = "config.toml"
CREDENTIALS_FILENAME = "credentials.toml"

USER_CONFIG_DIR = ".snapline"
PROJECT_CONFIG_DIR = ".snapline"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Store
    "SNAPLINE_REPO_PATH": (["store"], "path"),
    "SNAPLINE_MAIN_BRANCH": (["store"], "main_branch"),
    "SNAPLINE_REMOTE_NAME": (["store"], "remote_name"),
    "SNAPLINE_REMOTE_URL": (["store"], "remote_url"),
    # Manifest
    "SNAPLINE_MANIFEST": (["manifest"], "path"),
    # Git identity
    "SNAPLINE_GIT_AUTHOR": (["git"], "author"),
    "SNAPLINE_GIT_EMAIL": (["git"], "email"),
    # Fetch collaborator
    "SNAPLINE_FETCH_EXECUTABLE": (["fetch"], "executable"),
    "SNAPLINE_FETCH_APP_ID": (["fetch"], "app_id"),
    "SNAPLINE_FETCH_DEPOT_ID": (["fetch"], "depot_id"),
    "SNAPLINE_DOWNLOADS_DIR": (["fetch"], "downloads_dir"),
    # Transform collaborator
    "SNAPLINE_TRANSFORM_ENABLED": (["transform"], "enabled"),
    "SNAPLINE_TRANSFORM_EXECUTABLE": (["transform"], "executable"),
    "SNAPLINE_TRANSFORM_PROFILE": (["transform"], "profile"),
    "SNAPLINE_STRIPPED_DIR": (["transform"], "output_dir"),
    # Tools
    "SNAPLINE_TOOLS_DIR": (["tools"], "bin_dir"),
    "SNAPLINE_TOOLS_AUTO_DOWNLOAD": (["tools"], "auto_download"),
    # Sync
    "SNAPLINE_SYNC_FETCH": (["sync"], "fetch"),
    "SNAPLINE_SYNC_PUSH": (["sync"], "push"),
    "SNAPLINE_CASCADE": (["sync"], "cascade"),
    "SNAPLINE_DIVERGENCE_POLICY": (["sync"], "divergence_policy"),
    # Logging
    "SNAPLINE_LOG_LEVEL": (["logging"], "level"),
    "SNAPLINE_LOG_DIR": (["logging"], "dir"),
    "SNAPLINE_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "SNAPLINE_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "SNAPLINE_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.snapline/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Get project-level config directory (.snapline/).

    Searches upward from project_path to find a .snapline/ directory.
    The user-level directory is never returned as a project directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    user_dir = _get_user_config_dir()
    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir() and config_dir != user_dir:
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _env_to_config_key(env_var: str) -> tuple[list[str], str]:
    """Map environment variable to config path.

    Returns tuple of (section_path, key_name).

    Examples:
        SNAPLINE_REPO_PATH -> (["store"], "path")
        SNAPLINE_DIVERGENCE_POLICY -> (["sync"], "divergence_policy")
    """
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict."""
    result = _deep_merge({}, config_dict)

    for env_var in ENV_MAPPING:
        value = os.getenv(env_var)
        if value is None:
            continue

        section_path, key_name = _env_to_config_key(env_var)
        if not section_path:
            continue

        current = result
        for section in section_path:
            if not isinstance(current.get(section), dict):
                current[section] = {}
            current = current[section]

        # Type conversion happens during Pydantic validation
        current[key_name] = value

    return result


def load_dotenv_file(path: Optional[Path] = None) -> bool:
    """Load a ``.env`` file into the process environment without overriding it."""
    dotenv_path = path or (Path.cwd() / ".env")
    if not dotenv_path.is_file():
        return False
    return load_dotenv(dotenv_path, override=False)


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> SnaplineConfig:
    """Load and merge snapline configuration.

    Args:
        project_path: Project directory for config discovery
        skip_env: Skip .env loading and environment variable overlay

    Returns:
        Merged SnaplineConfig

    Raises:
        ConfigError: If config files are invalid
    """
    config_dict: Dict[str, Any] = {}

    # 1. User config
    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            user_config = _load_toml(user_config_path)
            config_dict = _deep_merge(config_dict, user_config)
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    # 2. Project config
    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                project_config = _load_toml(project_config_path)
                config_dict = _deep_merge(config_dict, project_config)
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    # 3. Environment overlay
    if not skip_env:
        load_dotenv_file()
        config_dict = _apply_env_overlay(config_dict)

    # 4. Validate
    try:
        return SnaplineConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get paths to all config files.

    Returns dict with keys: user_config, project_config, user_credentials
    """
    user_dir = _get_user_config_dir()
    project_dir = _get_project_config_dir(project_path)

    return {
        "user_config": user_dir / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
        "user_credentials": user_dir / CREDENTIALS_FILENAME,
    }


# Global cached config (thread-safe)
_cached_config: Optional[SnaplineConfig] = None
_cached_project_path: Optional[Path] = None
_config_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> SnaplineConfig:
    """Get cached config, loading if necessary."""
    global _cached_config, _cached_project_path

    if project_path and str(project_path):
        normalized_path = project_path.resolve()
    else:
        normalized_path = None

    with _config_lock:
        if (
            force_reload
            or _cached_config is None
            or _cached_project_path != normalized_path
        ):
            _cached_config = load_config(project_path)
            _cached_project_path = normalized_path

        return _cached_config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config, _cached_project_path
    with _config_lock:
        _cached_config = None
        _cached_project_path = None
