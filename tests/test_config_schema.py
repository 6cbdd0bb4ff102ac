"""Tests for config_schema module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from snapline.config_schema import (
    FetchConfig,
    LoggingConfig,
    SnaplineConfig,
    StoreConfig,
    SyncConfig,
    ToolsConfig,
    TransformConfig,
)


class TestStoreConfig:
    """Tests for StoreConfig model."""

    def test_defaults(self):
        config = StoreConfig()
        assert config.path == "./versions"
        assert config.main_branch == "main"
        assert config.remote_name == "origin"
        assert config.remote_url == ""

    def test_rejects_bad_branch_names(self):
        with pytest.raises(ValidationError):
            StoreConfig(main_branch="has space")
        with pytest.raises(ValidationError):
            StoreConfig(remote_name="-x")


class TestFetchConfig:
    def test_defaults(self):
        config = FetchConfig()
        assert config.app_id == "620980"
        assert config.depot_id == "620981"
        assert config.remember_password is True
        assert config.timeout_seconds is None

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            FetchConfig(timeout_seconds=0)


class TestTransformConfig:
    def test_defaults(self):
        config = TransformConfig()
        assert config.enabled is True
        assert config.profile == "beatsaber"
        assert config.output_dir == "./stripped"


class TestToolsConfig:
    def test_defaults(self):
        config = ToolsConfig()
        assert config.auto_download is True
        assert config.downloader_repo == "SteamRE/DepotDownloader"
        assert config.stripper_repo == "beat-forge/GenericStripper"

    def test_repo_slug_validated(self):
        with pytest.raises(ValidationError, match="owner/name"):
            ToolsConfig(downloader_repo="just-a-name")


class TestSyncConfig:
    def test_defaults(self):
        config = SyncConfig()
        assert config.fetch is True
        assert config.push is True
        assert config.cascade is False
        assert config.divergence_policy == "prefer_local"

    def test_invalid_policy(self):
        with pytest.raises(ValidationError):
            SyncConfig(divergence_policy="merge")


class TestLoggingConfig:
    def test_invalid_level(self):
        with pytest.raises(ValidationError):
            LoggingConfig(level="TRACE")

    def test_warns_when_dir_is_a_file(self, tmp_path):
        path = tmp_path / "not-a-dir"
        path.write_text("x")
        with pytest.warns(UserWarning, match="not a directory"):
            LoggingConfig(dir=str(path))


class TestSnaplineConfig:
    def test_full_defaults(self):
        config = SnaplineConfig()
        assert config.version == 1
        assert config.store.path == "./versions"
        assert config.git.author == "snapline"

    def test_work_dirs(self, tmp_path):
        config = SnaplineConfig.model_validate(
            {
                "fetch": {"downloads_dir": str(tmp_path / "dl")},
                "transform": {"output_dir": "~/stripped"},
            }
        )
        dirs = config.work_dirs()
        assert dirs["downloads"] == tmp_path / "dl"
        assert dirs["stripped"] == Path.home() / "stripped"
        assert dirs["bin"] == Path("./bin")

    def test_nested_dict_validation(self):
        config = SnaplineConfig.model_validate({"sync": {"cascade": True}, "store": {"remote_url": "git@x:y.git"}})
        assert config.sync.cascade is True
        assert config.store.remote_url == "git@x:y.git"
