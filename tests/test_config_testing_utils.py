"""Tests for snapline.testing module (testing utilities)."""

from __future__ import annotations

import os

from snapline.manifest import VersionDescriptor
from snapline.testing import FakeFetcher, FakeTransformer, mock_env_vars, temp_config


class TestMockEnvVars:
    """Tests for mock_env_vars context manager."""

    def test_mock_env_vars_sets_vars(self):
        """Test mock_env_vars sets environment variables."""
        with mock_env_vars(TEST_VAR="test_value"):
            assert os.getenv("TEST_VAR") == "test_value"

    def test_mock_env_vars_restores_original(self, monkeypatch):
        """Test mock_env_vars restores original values."""
        monkeypatch.setenv("TEST_VAR_RESTORE", "original")

        with mock_env_vars(TEST_VAR_RESTORE="modified"):
            assert os.getenv("TEST_VAR_RESTORE") == "modified"

        assert os.getenv("TEST_VAR_RESTORE") == "original"

    def test_mock_env_vars_removes_on_exit(self, monkeypatch):
        """Test mock_env_vars removes vars that didn't exist before."""
        monkeypatch.delenv("NEW_TEST_VAR", raising=False)

        with mock_env_vars(NEW_TEST_VAR="temporary"):
            assert os.getenv("NEW_TEST_VAR") == "temporary"

        assert os.getenv("NEW_TEST_VAR") is None

    def test_mock_env_vars_none_deletes_var(self, monkeypatch):
        """Test setting var to None deletes it."""
        monkeypatch.setenv("DELETE_ME", "value")

        with mock_env_vars(DELETE_ME=None):
            assert os.getenv("DELETE_ME") is None

        # Should be restored after exit
        assert os.getenv("DELETE_ME") == "value"


class TestTempConfig:
    def test_builds_validated_config(self):
        with temp_config({"sync": {"cascade": True}}) as config:
            assert config.sync.cascade is True
            assert config.store.path == "./versions"

    def test_env_overrides_are_scoped(self):
        with temp_config(env_overrides={"SNAPLINE_LOG_LEVEL": "DEBUG"}):
            assert os.getenv("SNAPLINE_LOG_LEVEL") == "DEBUG"
        assert os.getenv("SNAPLINE_LOG_LEVEL") is None


class TestFakes:
    def test_fake_fetcher_writes_files_and_records_calls(self, tmp_path):
        fetcher = FakeFetcher()
        result = fetcher.fetch(VersionDescriptor(version="1.0.0", manifest_ref="abc"), tmp_path / "1.0.0")
        assert result.ok
        assert (tmp_path / "1.0.0" / "Game.dll").read_text() == "binary 1.0.0 abc\n"
        assert fetcher.fetched_versions == ["1.0.0"]

    def test_fake_fetcher_failure(self, tmp_path):
        fetcher = FakeFetcher(fail_on=["2.0.0"])
        result = fetcher.fetch(VersionDescriptor(version="2.0.0", manifest_ref="x"), tmp_path / "2.0.0")
        assert not result.ok
        assert not (tmp_path / "2.0.0").exists()

    def test_fake_transformer_strips_files(self, tmp_path):
        FakeFetcher().fetch(VersionDescriptor(version="1.0.0", manifest_ref="abc"), tmp_path / "1.0.0")
        result = FakeTransformer().transform(tmp_path / "1.0.0", tmp_path / "out")
        assert result.ok
        assert (tmp_path / "out" / "Data" / "managed.txt").exists()
        assert not (tmp_path / "out" / "Data" / "secret.bin").exists()

    def test_fake_transformer_failure_by_version_dir(self, tmp_path):
        (tmp_path / "1.1.0").mkdir()
        result = FakeTransformer(fail_on={"1.1.0"}).transform(tmp_path / "1.1.0", tmp_path / "out")
        assert not result.ok
        assert result.exit_code == 2
