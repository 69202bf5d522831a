from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dotlink.backup import BackupEngine
from dotlink.config import Entry


def _entry(**raw: Any) -> Entry:
    return Entry.from_raw({"name": "item", **raw}, app_name="app")


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    root = tmp_path / "backup"
    root.mkdir()
    return root


def test_backup_copies_folder_and_keeps_target(backup_root: Path, fake_home: Path) -> None:
    target = fake_home / ".config" / "nvim"
    (target / "lua").mkdir(parents=True)
    (target / "init.lua").write_text("-- live\n")
    (target / "lua" / "plugins.lua").write_text("return {}\n")
    (backup_root / "nvim").mkdir()
    (backup_root / "nvim" / "old.lua").write_text("-- kept\n")
    entry = _entry(backup="nvim", targets={"linux": "~/.config/nvim"})

    result = BackupEngine(backup_root, "linux").backup(entry)

    assert result.success
    assert result.message == f"Copied {target} → {backup_root / 'nvim'}"
    assert (backup_root / "nvim" / "init.lua").read_text() == "-- live\n"
    assert (backup_root / "nvim" / "lua" / "plugins.lua").read_text() == "return {}\n"
    assert (backup_root / "nvim" / "old.lua").exists()
    assert not target.is_symlink()


def test_backup_skips_symlinked_and_missing_targets(backup_root: Path, fake_home: Path) -> None:
    (backup_root / "nvim").mkdir()
    (fake_home / "nvim").symlink_to(backup_root / "nvim")
    engine = BackupEngine(backup_root, "linux")

    linked = engine.backup(_entry(backup="nvim", targets={"linux": "~/nvim"}))
    missing = engine.backup(_entry(backup="kitty", targets={"linux": "~/kitty"}))

    assert linked.success and linked.message.endswith("is a symlink")
    assert missing.success and missing.message.endswith("does not exist")
    assert not (backup_root / "kitty").exists()


def test_backup_dry_run_copies_nothing(backup_root: Path, fake_home: Path) -> None:
    (fake_home / "nvim").mkdir()
    entry = _entry(backup="nvim", targets={"linux": "~/nvim"})

    result = BackupEngine(backup_root, "linux").backup(entry, dry_run=True)

    assert result.message.startswith("Would copy")
    assert not (backup_root / "nvim").exists()


def test_backup_file_set_counts(backup_root: Path, fake_home: Path) -> None:
    (fake_home / ".zshrc").write_text("zsh\n")
    (backup_root / "shell").mkdir()
    (backup_root / "shell" / ".bashrc").write_text("bash\n")
    (fake_home / ".bashrc").symlink_to(backup_root / "shell" / ".bashrc")
    entry = _entry(backup="shell", files=[".zshrc", ".bashrc", ".profile"], targets={"linux": "~"})

    result = BackupEngine(backup_root, "linux").backup(entry)

    assert result.message == "Copied 1 file(s), skipped 2"
    assert (backup_root / "shell" / ".zshrc").read_text() == "zsh\n"
    assert not (backup_root / "shell" / ".profile").exists()


def test_elevated_backup_uses_sudo_cp(backup_root: Path, fake_home: Path, fake_runner) -> None:
    (fake_home / "etc").mkdir()
    entry = _entry(backup="etc", targets={"linux": "~/etc"}, sudo=True)

    result = BackupEngine(backup_root, "linux", fake_runner).backup(entry)

    assert result.success
    assert fake_runner.commands == [["sudo", "cp", "-rT", str(fake_home / "etc"), str(backup_root / "etc")]]


def test_failed_copy_is_reported(backup_root: Path, fake_home: Path, fake_runner) -> None:
    (fake_home / "etc").mkdir()
    fake_runner.failing.add("sudo")
    entry = _entry(backup="etc", targets={"linux": "~/etc"}, sudo=True)

    result = BackupEngine(backup_root, "linux", fake_runner).backup(entry)

    assert not result.success
    assert result.message == f"Failed to back up {fake_home / 'etc'}: exit status 1"


def test_package_and_git_entries_have_nothing_to_back_up(backup_root: Path, fake_home: Path) -> None:
    engine = BackupEngine(backup_root, "linux")

    package = engine.backup(_entry(package={"pacman": "ripgrep"}))
    clone = engine.backup(_entry(repo="https://example.com/r.git", targets={"linux": "~/r"}))

    assert package.success and package.message.startswith("Nothing to back up")
    assert clone.success and clone.message.startswith("Nothing to back up")
