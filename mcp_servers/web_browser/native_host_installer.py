"""Register the bridge as a Chrome native messaging host.

Chrome finds native hosts through a JSON manifest: a per-browser directory on
macOS and Linux, a registry key under HKCU on Windows. The manifest points at a
small wrapper script that starts `mcp_servers.web_browser.native_host` with the
interpreter that ran the installer.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

HOST_NAME = "com.web_browser.native_host"
OFFICIAL_EXTENSION_ID = "albcpcahedbojeaacnmihmkbljhndglk"
EXTENSION_IDS_ENV = "WEB_BROWSER_EXTENSION_IDS"

_LOGGER = logging.getLogger("mcp.web_browser.native_host_installer")
_EXT_ID_RE = re.compile(r"^[a-p]{32}$")
_WRAPPER_NAME = "web-browser-bridge"
_HOSTS_DIR = "NativeMessagingHosts"

# Browser profile roots relative to ~/Library/Application Support (macOS) or ~/.config (Linux).
_BROWSER_ROOTS: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "darwin": (
        ("chrome", ("Google", "Chrome")),
        ("chrome-beta", ("Google", "Chrome Beta")),
        ("chrome-canary", ("Google", "Chrome Canary")),
        ("chromium", ("Chromium",)),
        ("brave", ("BraveSoftware", "Brave-Browser")),
        ("edge", ("Microsoft Edge",)),
    ),
    "linux": (
        ("chrome", ("google-chrome",)),
        ("chrome-beta", ("google-chrome-beta",)),
        ("chromium", ("chromium",)),
        ("brave", ("BraveSoftware", "Brave-Browser")),
        ("edge", ("microsoft-edge",)),
    ),
}

_REGISTRY_ROOTS: tuple[tuple[str, str], ...] = (
    ("chrome", r"Software\Google\Chrome"),
    ("chromium", r"Software\Chromium"),
    ("brave", r"Software\BraveSoftware\Brave-Browser"),
    ("edge", r"Software\Microsoft\Edge"),
)


@dataclass(frozen=True, slots=True)
class InstallTarget:
    label: str
    path: Path

    @property
    def manifest(self) -> Path:
        return self.path / f"{HOST_NAME}.json"


@dataclass(slots=True)
class InstallReport:
    ok: bool = False
    wrote: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    manifest_path: str | None = None


def validate_extension_id(ext_id: str) -> str:
    candidate = str(ext_id or "").strip().lower()
    if not _EXT_ID_RE.match(candidate):
        raise ValueError(f'Invalid extension id "{ext_id}". Expected 32 chars [a-p].')
    return candidate


def default_install_dir(home: Path | None = None) -> Path:
    return (home or Path.home()) / ".web-browser"


def manifest_targets(platform: str, home: Path) -> list[InstallTarget]:
    if platform == "darwin":
        base = home / "Library" / "Application Support"
        roots = _BROWSER_ROOTS["darwin"]
    elif platform.startswith("linux"):
        base = home / ".config"
        roots = _BROWSER_ROOTS["linux"]
    else:
        return []
    return [InstallTarget(label, base.joinpath(*parts, _HOSTS_DIR)) for label, parts in roots]


def _registry_keys() -> list[tuple[str, str]]:
    return [(label, f"{root}\\{_HOSTS_DIR}\\{HOST_NAME}") for label, root in _REGISTRY_ROOTS]


def _wrapper_path(install_dir: Path, *, platform: str) -> Path:
    return install_dir / (f"{_WRAPPER_NAME}.cmd" if platform == "win32" else _WRAPPER_NAME)


def _wrapper_script(python_exe: str, *, platform: str) -> str:
    command = f'"{python_exe}" -m mcp_servers.web_browser.native_host'
    if platform == "win32":
        return f"@echo off\r\n{command}\r\n"
    # Chrome launches hosts with a minimal environment; the interpreter path must be absolute.
    return f"#!/bin/sh\nexec {command}\n"


def _write_wrapper(path: Path, *, python_exe: str, platform: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_wrapper_script(python_exe, platform=platform), encoding="utf-8", newline="")
    if platform != "win32":
        path.chmod(0o755)


def manifest_for(wrapper: Path, extension_ids: list[str]) -> dict[str, object]:
    return {
        "name": HOST_NAME,
        "description": "Web Browser MCP native messaging bridge",
        "path": str(wrapper),
        "type": "stdio",
        "allowed_origins": [f"chrome-extension://{ext_id}/" for ext_id in extension_ids],
    }


def _write_manifest(path: Path, manifest: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    if os.name != "nt":
        with contextlib.suppress(OSError):
            path.chmod(0o644)


def _resolve_extension_ids(extension_ids: list[str] | None) -> list[str]:
    """Explicit ids plus the comma-separated env list, deduplicated; the store id when both are empty."""
    raw_ids = [*(extension_ids or []), *(os.environ.get(EXTENSION_IDS_ENV) or "").split(",")]
    raw_ids = [raw for raw in raw_ids if raw.strip()] or [OFFICIAL_EXTENSION_ID]
    return list(dict.fromkeys(validate_extension_id(raw) for raw in raw_ids))


def _install_into_registry(report: InstallReport, manifest_file: Path) -> None:
    try:
        import winreg  # type: ignore[import-not-found]
    except ImportError as exc:
        report.errors.append(f"winreg unavailable: {exc}")
        return
    for label, key in _registry_keys():
        try:
            with winreg.CreateKey(winreg.HKEY_CURRENT_USER, key) as handle:
                winreg.SetValueEx(handle, "", 0, winreg.REG_SZ, str(manifest_file))
        except OSError as exc:
            report.errors.append(f"{label}: cannot write HKCU\\{key}: {exc}")
        else:
            report.wrote.append(f"{label}:HKCU\\{key}")


def _install_into_dirs(report: InstallReport, targets: list[InstallTarget], manifest: dict[str, object]) -> None:
    for target in targets:
        try:
            _write_manifest(target.manifest, manifest)
        except OSError as exc:
            report.errors.append(f"{target.label}: cannot write {target.manifest}: {exc}")
        else:
            report.wrote.append(f"{target.label}:{target.manifest}")


def install_native_host(
    *,
    extension_ids: list[str] | None = None,
    install_dir: Path | None = None,
    python_exe: str | None = None,
    platform: str | None = None,
    home: Path | None = None,
) -> InstallReport:
    """Write the wrapper script and register the host manifest for every known browser.

    Failures are collected in the report; `ok` is set when at least one browser
    was registered.
    """
    platform = platform or sys.platform
    home = home or Path.home()
    install_dir = install_dir or default_install_dir(home)
    report = InstallReport()

    try:
        ids = _resolve_extension_ids(extension_ids)
    except ValueError as exc:
        report.errors.append(str(exc))
        return report

    targets = manifest_targets(platform, home)
    if platform != "win32" and not targets:
        report.errors.append(f"unsupported platform for installer: {platform}")
        return report

    wrapper = _wrapper_path(install_dir, platform=platform)
    try:
        _write_wrapper(wrapper, python_exe=python_exe or sys.executable, platform=platform)
    except OSError as exc:
        report.errors.append(f"cannot write bridge wrapper {wrapper}: {exc}")
        return report
    manifest = manifest_for(wrapper, ids)

    if platform == "win32":
        # The registry points at a manifest file kept next to the wrapper.
        manifest_file = install_dir / f"{HOST_NAME}.json"
        try:
            _write_manifest(manifest_file, manifest)
        except OSError as exc:
            report.errors.append(f"cannot write {manifest_file}: {exc}")
            return report
        report.manifest_path = str(manifest_file)
        _install_into_registry(report, manifest_file)
    else:
        report.manifest_path = str(wrapper)
        _install_into_dirs(report, targets, manifest)

    report.ok = bool(report.wrote)
    if report.ok:
        _LOGGER.info("native host registered for %d browser(s)", len(report.wrote))
    else:
        _LOGGER.warning("native host registration failed: %s", "; ".join(report.errors))
    return report


def uninstall_native_host(
    *,
    install_dir: Path | None = None,
    platform: str | None = None,
    home: Path | None = None,
) -> InstallReport:
    """Remove manifests, registry keys and the wrapper. Missing pieces are not errors."""
    platform = platform or sys.platform
    home = home or Path.home()
    install_dir = install_dir or default_install_dir(home)
    report = InstallReport()

    paths = [t.manifest for t in manifest_targets(platform, home)]
    paths += [install_dir / f"{HOST_NAME}.json", _wrapper_path(install_dir, platform=platform)]
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            report.errors.append(f"cannot remove {path}: {exc}")
        else:
            report.removed.append(str(path))

    if platform == "win32":
        try:
            import winreg  # type: ignore[import-not-found]
        except ImportError as exc:
            report.errors.append(f"winreg unavailable: {exc}")
        else:
            for _label, key in _registry_keys():
                with contextlib.suppress(OSError):
                    winreg.DeleteKey(winreg.HKEY_CURRENT_USER, key)
                    report.removed.append(f"HKCU\\{key}")

    with contextlib.suppress(OSError):
        install_dir.rmdir()  # only succeeds when empty

    report.ok = not report.errors
    return report


__all__ = [
    "EXTENSION_IDS_ENV",
    "HOST_NAME",
    "OFFICIAL_EXTENSION_ID",
    "InstallReport",
    "InstallTarget",
    "install_native_host",
    "manifest_for",
    "manifest_targets",
    "uninstall_native_host",
    "validate_extension_id",
]
