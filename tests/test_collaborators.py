from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

import pytest

from snapline.collaborators import (
    CollaboratorResult,
    PassthroughTransformer,
    SubprocessFetcher,
    SubprocessTransformer,
)
from snapline.credentials import FetchCredentials
from snapline.manifest import VersionDescriptor
from snapline.observability import LOGGER_NAME


@pytest.fixture
def descriptor():
    return VersionDescriptor(version="1.29.1", manifest_ref="8648157485416231210")


@pytest.fixture
def fetcher():
    return SubprocessFetcher(
        Path("/opt/bin/DepotDownloader"),
        app_id="620980",
        depot_id="620981",
        credentials=FetchCredentials(username="alice", password="hunter2"),
    )


def test_fetch_command_line(fetcher, descriptor, tmp_path):
    cmd = fetcher.command(descriptor, tmp_path / "dl")
    assert cmd == [
        "/opt/bin/DepotDownloader",
        "-username", "alice",
        "-password", "hunter2",
        "-remember-password",
        "-app", "620980",
        "-depot", "620981",
        "-manifest", "8648157485416231210",
        "-dir", str(tmp_path / "dl"),
    ]


def test_fetch_without_remember_password(descriptor, tmp_path):
    f = SubprocessFetcher(
        Path("dd"), app_id="1", depot_id="2",
        credentials=FetchCredentials(username="u", password="p"),
        remember_password=False,
    )
    assert "-remember-password" not in f.command(descriptor, tmp_path)


def test_transform_command_line(tmp_path):
    t = SubprocessTransformer(Path("/opt/bin/GenericStripper"), profile="beatsaber")
    assert t.command(tmp_path / "in", tmp_path / "out") == [
        "/opt/bin/GenericStripper", "strip",
        "-m", "beatsaber",
        "-p", str(tmp_path / "in"),
        "-o", str(tmp_path / "out"),
    ]


def test_fetch_success_and_password_redacted(monkeypatch, fetcher, descriptor, tmp_path, caplog):
    calls = []

    def fake_run(cmd, timeout=None, check=False):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)

    result = fetcher.fetch(descriptor, tmp_path / "dl")
    assert result.ok
    assert result.output_dir == tmp_path / "dl"
    assert (tmp_path / "dl").is_dir()
    assert calls and "hunter2" in calls[0]
    assert "hunter2" not in caplog.text
    assert "********" in caplog.text


def test_non_zero_exit_is_a_failure_result(monkeypatch, fetcher, descriptor, tmp_path, caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, timeout=None, check=False: subprocess.CompletedProcess(cmd, 5)
    )
    result = fetcher.fetch(descriptor, tmp_path / "dl")
    assert not result.ok
    assert result.exit_code == 5
    assert "exit code 5" in result.message

    runs = [json.loads(r.message) for r in caplog.records if r.message.startswith("{")]
    assert runs[-1]["action"] == "collaborator.run"
    assert runs[-1]["tool"] == "downloader"
    assert runs[-1]["outcome"] == "error"
    assert runs[-1]["exit_code"] == 5


def test_missing_executable_is_a_failure_result(descriptor, tmp_path):
    f = SubprocessFetcher(
        tmp_path / "does-not-exist", app_id="1", depot_id="2",
        credentials=FetchCredentials(username="u", password="p"),
    )
    result = f.fetch(descriptor, tmp_path / "dl")
    assert not result.ok
    assert "not found" in result.message


def test_timeout_is_a_failure_result(monkeypatch, tmp_path):
    def slow(cmd, timeout=None, check=False):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(subprocess, "run", slow)
    t = SubprocessTransformer(Path("strip"), profile="p", timeout=3)
    result = t.transform(tmp_path / "in", tmp_path / "out")
    assert not result.ok
    assert "timed out after 3s" in result.message


def test_transform_without_output_is_a_failure(monkeypatch, tmp_path):
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, timeout=None, check=False: subprocess.CompletedProcess(cmd, 0)
    )
    t = SubprocessTransformer(Path("strip"), profile="p")
    result = t.transform(tmp_path / "in", tmp_path / "out")
    assert not result.ok
    assert "no output" in result.message


def test_passthrough_returns_source(tmp_path):
    result = PassthroughTransformer().transform(tmp_path / "raw", tmp_path / "ignored")
    assert result == CollaboratorResult.success(tmp_path / "raw")
