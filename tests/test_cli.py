from __future__ import annotations

import tomllib
from pathlib import Path

import pytest
from typer.testing import CliRunner

from dotlink.cli import app
from dotlink.config import DEFAULT_CONFIG_FILENAME
from dotlink.models import InstallMethod
from dotlink.platform import Platform

runner = CliRunner()


@pytest.fixture(autouse=True)
def linux_platform(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("dotlink.cli.detect_platform", lambda: Platform(os="linux", distro="arch"))


def _write_config(directory: Path, body: str) -> Path:
    config_path = directory / DEFAULT_CONFIG_FILENAME
    config_path.write_text(body)
    return config_path


def _project(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    (project / "backup" / "nvim").mkdir(parents=True)
    (project / "backup" / "nvim" / "init.lua").write_text("-- nvim\n")
    return _write_config(
        project,
        """
[settings]
backup_root = "./backup"

[[applications]]
name = "neovim"

[[applications.entries]]
name = "nvim-config"
backup = "nvim"
targets = { linux = "~/.config/nvim" }

[[applications.entries]]
name = "neovim"
package = { pacman = "neovim" }

[[applications]]
name = "shell"

[[applications.entries]]
name = "zsh"
backup = "zsh"
files = [".zshrc"]
targets = { linux = "~" }
""",
    )


def test_cli_restore_and_status(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    status_before = runner.invoke(app, ["status", "--config", str(config_path)])
    assert status_before.exit_code == 0
    assert "missing" in status_before.stdout

    restore_result = runner.invoke(app, ["restore", "--config", str(config_path), "--app", "neovim"])
    assert restore_result.exit_code == 0, restore_result.stdout
    assert "1 succeeded, 0 failed" in restore_result.stdout
    assert (fake_home / ".config" / "nvim").is_symlink()

    status_after = runner.invoke(app, ["status", "--config", str(config_path), "--app", "neovim"])
    assert status_after.exit_code == 0
    assert "linked" in status_after.stdout


def test_cli_restore_dry_run_changes_nothing(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    result = runner.invoke(app, ["restore", "--config", str(config_path), "--dry-run"])

    assert result.exit_code == 0
    assert "2 succeeded, 0 failed" in result.stdout
    assert not (fake_home / ".config").exists()
    assert not (fake_home / ".zshrc").exists()


def test_cli_restore_failure_exits_non_zero(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)
    (tmp_path / "project" / "backup" / "nvim" / "init.lua").unlink()
    (tmp_path / "project" / "backup" / "nvim").rmdir()

    result = runner.invoke(app, ["restore", "--config", str(config_path), "--entry", "neovim/nvim-config"])

    assert result.exit_code == 1
    assert "0 succeeded, 1 failed" in result.stdout


def test_cli_install_dry_run(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    result = runner.invoke(
        app, ["install", "--config", str(config_path), "--entry", "neovim/neovim", "--method", "pacman", "--dry-run"]
    )

    assert result.exit_code == 0, result.stdout
    assert "1 succeeded, 0 failed" in result.stdout


def test_cli_install_unknown_method(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    result = runner.invoke(app, ["install", "--config", str(config_path), "--method", "zypper"])

    assert result.exit_code == 1
    assert "Unknown package manager: zypper" in result.stdout


def test_cli_unknown_selection(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    unknown_app = runner.invoke(app, ["restore", "--config", str(config_path), "--app", "emacs"])
    bad_entry = runner.invoke(app, ["restore", "--config", str(config_path), "--entry", "neovim"])

    assert unknown_app.exit_code == 1
    assert "Unknown application 'emacs'" in unknown_app.stdout
    assert bad_entry.exit_code == 1
    assert "APP/ENTRY" in bad_entry.stdout


def test_cli_delete_updates_config(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    result = runner.invoke(
        app, ["delete", "--config", str(config_path), "--entry", "neovim/nvim-config", "--app", "shell", "--yes"]
    )

    assert result.exit_code == 0, result.stdout
    with config_path.open("rb") as handle:
        data = tomllib.load(handle)
    assert [app_data["name"] for app_data in data["applications"]] == ["neovim"]
    assert [entry["name"] for entry in data["applications"][0]["entries"]] == ["neovim"]
    assert data["settings"] == {"backup_root": "./backup"}


def test_cli_delete_asks_for_confirmation(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)
    original = config_path.read_text()

    result = runner.invoke(app, ["delete", "--config", str(config_path), "--app", "shell"], input="n\n")

    assert result.exit_code == 1
    assert config_path.read_text() == original


def test_cli_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["status", "--config", "missing.toml"])

    assert result.exit_code == 1
    assert "does not exist" in result.stdout


def test_cli_delete_confirmation_counts_deduplicated_items(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)

    result = runner.invoke(
        app, ["delete", "--config", str(config_path), "--app", "shell", "--entry", "shell/zsh"], input="n\n"
    )

    assert result.exit_code == 1
    assert "Delete 1 item(s)" in result.stdout


def test_cli_backup_copies_live_files(tmp_path: Path, fake_home: Path) -> None:
    config_path = _project(tmp_path)
    (fake_home / ".zshrc").write_text("export EDITOR=nvim\n")

    result = runner.invoke(app, ["backup", "--config", str(config_path), "--app", "shell"])

    assert result.exit_code == 0, result.stdout
    assert "1 succeeded, 0 failed" in result.stdout
    assert (tmp_path / "project" / "backup" / "zsh" / ".zshrc").read_text() == "export EDITOR=nvim\n"
    assert not (fake_home / ".zshrc").is_symlink()


def test_cli_list_packages(tmp_path: Path, fake_home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _project(tmp_path)
    monkeypatch.setattr("dotlink.packages.detect_available_managers", lambda: frozenset({InstallMethod.PACMAN}))
    monkeypatch.setattr("dotlink.process.CommandRunner.check", lambda self, args: "neovim" in args)

    result = runner.invoke(app, ["list-packages", "--config", str(config_path)])

    assert result.exit_code == 0, result.stdout
    assert "neovim/neovim" in result.stdout
    assert "pacman" in result.stdout
    assert "yes" in result.stdout
