"""Copying live targets back into the backup store."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .config import Entry, expand_target, resolve_backup
from .filesystem import ensure_parent, is_symlink, lexists
from .models import EntryKind, OperationResult
from .platform import OS_WINDOWS
from .process import CommandError, CommandRunner

logger = logging.getLogger(__name__)


class BackupEngine:
    """Copies unmanaged targets into their backups without linking anything.

    Symlinked targets already live in the backup and are skipped. Existing
    backup content is overwritten file by file; nothing is removed from it.
    """

    def __init__(self, backup_root: Path, os_name: str, runner: CommandRunner | None = None) -> None:
        self.backup_root = backup_root
        self.os_name = os_name
        self.runner = runner or CommandRunner()

    def backup(self, entry: Entry, *, dry_run: bool = False, name: str | None = None) -> OperationResult:
        label = name or entry.name
        raw_target = entry.target(self.os_name)
        if entry.kind not in (EntryKind.FOLDER, EntryKind.FILES) or raw_target is None:
            return OperationResult(label, True, f"Nothing to back up for {label} on {self.os_name}")

        target = expand_target(raw_target)
        backup = resolve_backup(self.backup_root, entry.backup)
        try:
            if entry.kind is EntryKind.FOLDER:
                return self._backup_folder(entry, label, backup, target, dry_run=dry_run)
            return self._backup_files(entry, label, backup, target, dry_run=dry_run)
        except (OSError, CommandError) as exc:
            logger.error("backing up %s failed: %s", label, exc)
            return OperationResult(label, False, f"Failed to back up {target}: {exc}")

    def _backup_folder(self, entry: Entry, label: str, backup: Path, target: Path, *, dry_run: bool) -> OperationResult:
        if not lexists(target):
            return OperationResult(label, True, f"Skipped: {target} does not exist")
        if is_symlink(target):
            return OperationResult(label, True, f"Skipped: {target} is a symlink")
        if dry_run:
            return OperationResult(label, True, f"Would copy {target} → {backup}")

        logger.info("backing up %s into %s", target, backup)
        ensure_parent(backup)
        if self._elevated(entry):
            self.runner.run(["sudo", "cp", "-rT", str(target), str(backup)])
        else:
            shutil.copytree(target, backup, symlinks=True, dirs_exist_ok=True)
        return OperationResult(label, True, f"Copied {target} → {backup}")

    def _backup_files(self, entry: Entry, label: str, backup: Path, target: Path, *, dry_run: bool) -> OperationResult:
        copied = skipped = 0
        for file_name in entry.files:
            source = target / file_name
            destination = backup / file_name
            if not lexists(source) or is_symlink(source):
                logger.debug("skipping %s: missing or already linked", source)
                skipped += 1
                continue
            if not dry_run:
                logger.info("backing up %s into %s", source, destination)
                ensure_parent(destination)
                if self._elevated(entry):
                    self.runner.run(["sudo", "cp", str(source), str(destination)])
                else:
                    shutil.copy2(source, destination)
            copied += 1

        if dry_run:
            return OperationResult(label, True, f"Would copy {copied} file(s), skip {skipped}")
        return OperationResult(label, True, f"Copied {copied} file(s), skipped {skipped}")

    def _elevated(self, entry: Entry) -> bool:
        return entry.sudo and self.os_name != OS_WINDOWS
