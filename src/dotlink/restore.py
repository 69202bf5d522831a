"""Restoring backups to their targets, adopting unmanaged targets first."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import Entry, expand_target, resolve_backup
from .filesystem import (
    create_symlink,
    ensure_parent,
    hash_paths,
    is_symlink,
    lexists,
    move_verified,
    remove_path,
    symlink_points_to,
    template_digest,
)
from .models import EntryKind, OperationResult
from .platform import OS_WINDOWS
from .process import CommandError, CommandRunner
from .state import StateStore

logger = logging.getLogger(__name__)


class RestoreEngine:
    """Links backups into place, moving pre-existing targets into the backup first."""

    def __init__(
        self,
        backup_root: Path,
        os_name: str,
        state_store: StateStore | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.backup_root = backup_root
        self.os_name = os_name
        self.state_store = state_store
        self.runner = runner or CommandRunner()

    def restore(self, entry: Entry, *, dry_run: bool = False, name: str | None = None) -> OperationResult:
        """Restore ``entry`` and report the outcome.

        ``name`` labels the result and keys the state store; it defaults to the
        entry name. I/O failures are reported as unsuccessful results rather
        than raised.
        """

        label = name or entry.name
        raw_target = entry.target(self.os_name)
        if entry.kind is EntryKind.PACKAGE or raw_target is None:
            return OperationResult(label, True, f"Nothing to restore for {label} on {self.os_name}")

        target = expand_target(raw_target)
        if entry.kind is EntryKind.GIT:
            return self._restore_git(entry, target, label, dry_run=dry_run)

        backup = resolve_backup(self.backup_root, entry.backup)
        if entry.kind is EntryKind.FOLDER:
            try:
                result, linked = self._restore_folder(label, backup, target, dry_run=dry_run)
            except OSError as exc:
                return self._failure(entry, label, f"Failed to restore {target}", exc)
            pairs = [(backup, target)]
        else:
            result, linked = self._restore_files(entry, label, backup, target, dry_run=dry_run)
            pairs = [(backup / file_name, target / file_name) for file_name in entry.files]

        if linked and not dry_run:
            self._record_digests(label, pairs)
        return result

    # ------------------------------------------------------------------
    # Entry kinds

    def _restore_folder(
        self, label: str, backup: Path, target: Path, *, dry_run: bool
    ) -> tuple[OperationResult, bool]:
        if is_symlink(target):
            if not symlink_points_to(target, backup):
                return OperationResult(label, True, "Already a symlink"), False
            if not lexists(backup):
                return OperationResult(label, False, f"Source does not exist: {backup}"), False
            return OperationResult(label, True, "Already a symlink"), True

        source_exists = lexists(backup)
        target_exists = lexists(target)
        adopt = not source_exists and target_exists

        if dry_run:
            if adopt:
                return OperationResult(label, True, f"Would adopt: {target} → {backup}, then create symlink"), False
            if not source_exists:
                return OperationResult(label, True, f"Would skip: source does not exist: {backup}"), False
            return OperationResult(label, True, f"Would create symlink: {target} → {backup}"), False

        if adopt:
            logger.info("adopting %s into %s", target, backup)
            move_verified(target, backup)

        if not lexists(backup):
            return OperationResult(label, False, f"Source does not exist: {backup}"), False

        ensure_parent(target)
        if lexists(target) and not is_symlink(target):
            logger.info("removing %s before linking", target)
            remove_path(target)

        create_symlink(target, backup.absolute())
        logger.info("linked %s -> %s", target, backup)

        if adopt:
            return OperationResult(label, True, f"Adopted and linked: {target} → {backup}"), True
        return OperationResult(label, True, f"Created symlink: {target} → {backup}"), True

    def _restore_files(
        self, entry: Entry, label: str, backup: Path, target: Path, *, dry_run: bool
    ) -> tuple[OperationResult, bool]:
        created = adopted = skipped = 0

        if not dry_run:
            try:
                backup.mkdir(parents=True, exist_ok=True)
                target.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                return self._failure(entry, label, f"Failed to prepare {target}", exc), False

        for file_name in entry.files:
            source = backup / file_name
            link = target / file_name
            try:
                if is_symlink(link):
                    skipped += 1
                    continue

                if not lexists(source):
                    if not lexists(link):
                        logger.debug("skipping %s: no backup and no target", file_name)
                        skipped += 1
                        continue
                    if not dry_run:
                        logger.info("adopting %s into %s", link, source)
                        move_verified(link, source)
                    adopted += 1

                if not dry_run:
                    ensure_parent(link)
                    if lexists(link):
                        remove_path(link)
                    create_symlink(link, source.absolute())
                created += 1
            except OSError as exc:
                return self._failure(entry, label, f"Failed to restore {file_name}", exc), False

        if dry_run:
            message = f"Would create {created} symlink(s), adopt {adopted}, skip {skipped}"
        else:
            message = f"Created {created} symlink(s), adopted {adopted}, skipped {skipped}"
        linked = created > 0 or all(symlink_points_to(target / name, backup / name) for name in entry.files)
        return OperationResult(label, True, message), linked and not dry_run

    def _restore_git(self, entry: Entry, target: Path, label: str, *, dry_run: bool) -> OperationResult:
        if lexists(target / ".git"):
            return OperationResult(label, True, "Already cloned")
        if lexists(target) and (not target.is_dir() or any(target.iterdir())):
            return OperationResult(label, False, f"Target exists and is not a git repository: {target}")

        args = ["git", "clone"]
        if entry.branch:
            args += ["-b", entry.branch]
        args += [entry.repo, str(target)]
        if entry.sudo and self.os_name != OS_WINDOWS:
            args.insert(0, "sudo")

        if dry_run:
            return OperationResult(label, True, f"Would run: {' '.join(args)}")

        try:
            ensure_parent(target)
            self.runner.run(args)
        except CommandError as exc:
            return OperationResult(label, False, f"Clone failed: {exc}")
        except OSError as exc:
            return self._failure(entry, label, f"Failed to prepare {target.parent}", exc)
        return OperationResult(label, True, f"Cloned {entry.repo} into {target}")

    # ------------------------------------------------------------------
    # Internal helpers

    def _failure(self, entry: Entry, label: str, text: str, exc: OSError) -> OperationResult:
        message = f"{text}: {exc}"
        if isinstance(exc, PermissionError) and entry.sudo:
            message += ". Run with elevated privileges."
        logger.error("%s: %s", label, message)
        return OperationResult(label, False, message)

    def _record_digests(self, entry_id: str, pairs: list[tuple[Path, Path]]) -> None:
        if self.state_store is None:
            return
        try:
            content_hash = hash_paths((link for _, link in pairs), skip_templates=True)
            template_hash = template_digest(source for source, _ in pairs)
        except OSError as exc:
            logger.warning("unable to record digests for %s: %s", entry_id, exc)
            return
        self.state_store.record(entry_id, content_hash=content_hash, template_hash=template_hash)
        self.state_store.save()
