from __future__ import annotations

import io
import json
import logging
import os
import zipfile

import httpx
import pytest

from snapline.config_schema import SnaplineConfig
from snapline.errors import ToolError
from snapline.observability import LOGGER_NAME
from snapline.tools import (
    ToolSpec,
    download_tool,
    ensure_tools,
    executable_path,
    extract_zip,
    reset_workspace,
    resolve_tools,
    select_asset,
)


def _zip_bytes(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in files.items():
            zf.writestr(name, text)
    return buf.getvalue()


def _release_transport(releases: dict[str, dict], assets: dict[str, bytes], seen: list):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        for repo, release in releases.items():
            if path == f"/repos/{repo}/releases/latest":
                return httpx.Response(200, json=release)
        if path in assets:
            return httpx.Response(200, content=assets[path])
        return httpx.Response(404, json={"message": "Not Found"})

    return httpx.MockTransport(handler)


def _config(tmp_path, **tools) -> SnaplineConfig:
    return SnaplineConfig.model_validate(
        {
            "fetch": {"downloads_dir": str(tmp_path / "downloads")},
            "transform": {"output_dir": str(tmp_path / "stripped")},
            "tools": {"bin_dir": str(tmp_path / "bin"), **tools},
        }
    )


def _release(name: str) -> dict:
    return {
        "tag_name": "v1",
        "assets": [
            {"name": f"{name}-src.tar.gz", "browser_download_url": f"https://dl.example/{name}.tar.gz"},
            {"name": f"{name}-linux-x64.zip", "browser_download_url": f"https://dl.example/{name}-linux.zip"},
            {"name": f"{name}-windows-x64.zip", "browser_download_url": f"https://dl.example/{name}-win.zip"},
        ],
    }


def test_select_asset_first_zip_and_filter():
    release = _release("DepotDownloader")
    assert select_asset(release)["name"] == "DepotDownloader-linux-x64.zip"
    assert select_asset(release, "windows")["name"] == "DepotDownloader-windows-x64.zip"
    with pytest.raises(ToolError, match="no .zip asset containing 'arm64'"):
        select_asset(release, "arm64")


def test_extract_zip_skips_members_outside_target(tmp_path):
    payload = _zip_bytes({"ok/file.txt": "fine", "../escape.txt": "nope"})
    count = extract_zip(payload, tmp_path / "target")
    assert count == 1
    assert (tmp_path / "target" / "ok" / "file.txt").read_text() == "fine"
    assert not (tmp_path / "escape.txt").exists()


def test_extract_zip_rejects_garbage(tmp_path):
    with pytest.raises(ToolError, match="not a zip"):
        extract_zip(b"definitely not a zip", tmp_path)


def test_download_tool_extracts_and_marks_executable(tmp_path, caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    seen: list = []
    name = "DepotDownloader"
    transport = _release_transport(
        {"SteamRE/DepotDownloader": _release(name)},
        {f"/{name}-linux.zip": _zip_bytes({name: "#!/bin/sh\n", "README": "x"})},
        seen,
    )
    with httpx.Client(transport=transport) as client:
        exe = download_tool(ToolSpec(name, "SteamRE/DepotDownloader"), tmp_path / "bin", client=client)

    assert exe == executable_path(tmp_path / "bin", name)
    if os.name == "posix":
        assert exe.exists()
        assert os.access(exe, os.X_OK)
    assert [r.url.path for r in seen] == ["/repos/SteamRE/DepotDownloader/releases/latest", f"/{name}-linux.zip"]

    actions = [json.loads(r.message) for r in caplog.records if r.message.startswith("{")]
    assert actions[-1]["action"] == "tools.download"
    assert actions[-1]["tool"] == name
    assert actions[-1]["files"] == 2


def test_download_tool_http_error_is_tool_error(tmp_path):
    transport = _release_transport({}, {}, [])
    with httpx.Client(transport=transport) as client:
        with pytest.raises(ToolError, match="HTTP 404"):
            download_tool(ToolSpec("X", "owner/missing"), tmp_path, client=client)


def test_ensure_tools_downloads_only_missing(tmp_path):
    config = _config(tmp_path)
    stripper = executable_path(tmp_path / "bin", "GenericStripper")
    stripper.parent.mkdir(parents=True)
    stripper.write_text("present")

    seen: list = []
    name = "DepotDownloader"
    transport = _release_transport(
        {"SteamRE/DepotDownloader": _release(name)},
        {f"/{name}-linux.zip": _zip_bytes({name: "bin", f"{name}.exe": "bin"})},
        seen,
    )
    with httpx.Client(transport=transport) as client:
        paths = ensure_tools(config, client=client)

    assert paths.downloader.exists()
    assert paths.stripper == stripper
    assert all("GenericStripper" not in str(r.url) for r in seen)


def test_ensure_tools_noop_when_present(tmp_path):
    config = _config(tmp_path)
    for path in (resolve_tools(config).downloader, resolve_tools(config).stripper):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("present")

    def explode(request):
        raise AssertionError("no network expected")

    with httpx.Client(transport=httpx.MockTransport(explode)) as client:
        ensure_tools(config, client=client)


def test_ensure_tools_respects_auto_download_flag(tmp_path):
    config = _config(tmp_path, auto_download=False)
    with pytest.raises(ToolError, match="auto_download is disabled"):
        ensure_tools(config)


def test_configured_executable_is_never_downloaded(tmp_path):
    config = SnaplineConfig.model_validate(
        {"fetch": {"executable": str(tmp_path / "custom-dd")}, "transform": {"enabled": False}}
    )
    assert resolve_tools(config).stripper is None
    with pytest.raises(ToolError, match="Configured downloader not found"):
        ensure_tools(config)


def test_reset_workspace_removes_work_dirs(tmp_path):
    config = _config(tmp_path)
    (tmp_path / "downloads" / "1.0.0").mkdir(parents=True)
    (tmp_path / "bin").mkdir()
    removed = reset_workspace(config)
    assert sorted(p.name for p in removed) == ["bin", "downloads"]
    assert not (tmp_path / "downloads").exists()
    assert reset_workspace(config) == []
