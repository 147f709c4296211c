from __future__ import annotations

from pathlib import Path

import pytest

from mcp_servers.web_browser import main as cli


def test_parser_defaults_to_daemon() -> None:
    args = cli.build_parser().parse_args([])
    assert args.command is None


def test_parser_install_collects_extension_ids() -> None:
    args = cli.build_parser().parse_args(["install", "--extension-id", "a" * 32, "--extension-id", "b" * 32])
    assert args.command == "install"
    assert args.extension_ids == ["a" * 32, "b" * 32]


def test_install_command_exit_code(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[dict] = []
    real_install = cli.install_native_host

    def _fake_install(**kwargs):
        calls.append(kwargs)
        return real_install(platform="linux", home=tmp_path, python_exe="python3", **kwargs)

    monkeypatch.setattr(cli, "install_native_host", _fake_install)
    monkeypatch.delenv("WEB_BROWSER_EXTENSION_IDS", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["install", "--extension-id", "c" * 32])
    assert excinfo.value.code == 0
    assert calls == [{"extension_ids": ["c" * 32]}]


def test_install_command_fails_on_bad_id(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    real_install = cli.install_native_host
    monkeypatch.setattr(
        cli, "install_native_host", lambda **kw: real_install(platform="linux", home=tmp_path, **kw)
    )
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["install", "--extension-id", "nope"])
    assert excinfo.value.code == 1
