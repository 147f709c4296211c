from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from mcp_servers.web_browser.native_host_installer import (
    HOST_NAME,
    OFFICIAL_EXTENSION_ID,
    _write_manifest,
    install_native_host,
    manifest_for,
    uninstall_native_host,
    validate_extension_id,
)


def test_validate_extension_id() -> None:
    assert validate_extension_id("  " + "A" * 32 + " ") == "a" * 32
    with pytest.raises(ValueError):
        validate_extension_id("z" * 32)
    with pytest.raises(ValueError):
        validate_extension_id("a" * 31)


def test_manifest_shape(tmp_path: Path) -> None:
    wrapper = tmp_path / "web-browser-bridge"
    manifest = manifest_for(wrapper, ["a" * 32, "b" * 32])
    assert manifest["name"] == HOST_NAME
    assert manifest["type"] == "stdio"
    assert manifest["path"] == str(wrapper)
    assert manifest["allowed_origins"] == [f"chrome-extension://{'a' * 32}/", f"chrome-extension://{'b' * 32}/"]


def test_install_linux_writes_wrapper_and_manifests(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WEB_BROWSER_EXTENSION_IDS", raising=False)
    home = tmp_path / "home"
    report = install_native_host(platform="linux", home=home, python_exe="/usr/bin/python3")
    assert report.ok, report.errors

    wrapper = home / ".web-browser" / "web-browser-bridge"
    assert report.manifest_path == str(wrapper)
    script = wrapper.read_text(encoding="utf-8")
    assert '"/usr/bin/python3" -m mcp_servers.web_browser.native_host' in script
    if os.name != "nt":
        assert wrapper.stat().st_mode & 0o111

    chrome_manifest = home / ".config" / "google-chrome" / "NativeMessagingHosts" / f"{HOST_NAME}.json"
    data = json.loads(chrome_manifest.read_text(encoding="utf-8"))
    assert data["path"] == str(wrapper)
    assert data["allowed_origins"] == [f"chrome-extension://{OFFICIAL_EXTENSION_ID}/"]
    assert any(entry.startswith("chrome:") for entry in report.wrote)


def test_install_merges_env_ids_and_dedupes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WEB_BROWSER_EXTENSION_IDS", f"{'b' * 32}, {'a' * 32}")
    home = tmp_path / "home"
    report = install_native_host(extension_ids=["a" * 32], platform="darwin", home=home, python_exe="python3")
    assert report.ok
    manifest = (
        home / "Library" / "Application Support" / "Google" / "Chrome" / "NativeMessagingHosts" / f"{HOST_NAME}.json"
    )
    origins = json.loads(manifest.read_text(encoding="utf-8"))["allowed_origins"]
    assert origins == [f"chrome-extension://{'a' * 32}/", f"chrome-extension://{'b' * 32}/"]


def test_install_rejects_bad_extension_id(tmp_path: Path) -> None:
    report = install_native_host(extension_ids=["not-an-id"], platform="linux", home=tmp_path)
    assert not report.ok
    assert "Invalid extension id" in report.errors[0]
    assert report.wrote == []


def test_install_unsupported_platform(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WEB_BROWSER_EXTENSION_IDS", raising=False)
    report = install_native_host(platform="sunos5", home=tmp_path, python_exe="python3")
    assert not report.ok
    assert "unsupported platform" in report.errors[0]


def test_uninstall_removes_what_install_wrote(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WEB_BROWSER_EXTENSION_IDS", raising=False)
    home = tmp_path / "home"
    assert install_native_host(platform="linux", home=home, python_exe="python3").ok

    report = uninstall_native_host(platform="linux", home=home)
    assert report.ok
    assert str(home / ".web-browser" / "web-browser-bridge") in report.removed
    assert not (home / ".config" / "google-chrome" / "NativeMessagingHosts" / f"{HOST_NAME}.json").exists()
    assert not (home / ".web-browser").exists()

    again = uninstall_native_host(platform="linux", home=home)
    assert again.ok
    assert again.removed == []


def test_write_manifest_permissions(tmp_path: Path) -> None:
    if os.name == "nt":
        return

    manifest_path = tmp_path / "host.json"
    _write_manifest(manifest_path, {"name": "test", "type": "stdio"})
    mode = manifest_path.stat().st_mode & 0o777
    assert mode == 0o644
