"""Read-only detection of the relationship between backups and targets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from .config import Entry, expand_target, resolve_backup
from .filesystem import hash_paths, is_symlink, lexists, symlink_points_to, template_digest
from .models import EntryKind, PathState
from .state import UNKNOWN_HASH

logger = logging.getLogger(__name__)


class StateLookup(Protocol):
    def lookup_template_hash(self, entry_id: str) -> str: ...

    def lookup_content_hash(self, entry_id: str) -> str: ...


class StateDetector:
    """Computes a ``PathState`` for entries without touching the filesystem."""

    def __init__(self, backup_root: Path, os_name: str, state_store: StateLookup | None = None) -> None:
        self.backup_root = backup_root
        self.os_name = os_name
        self.state_store = state_store

    def detect(self, entry: Entry, *, entry_id: str | None = None) -> PathState:
        raw_target = entry.target(self.os_name)
        if entry.kind is EntryKind.PACKAGE or raw_target is None:
            return PathState.LOADING

        target = expand_target(raw_target)
        if entry.kind is EntryKind.GIT:
            return self._detect_git(target)

        backup = resolve_backup(self.backup_root, entry.backup)
        if entry.kind is EntryKind.FOLDER:
            pairs = [(backup, target)]
        else:
            pairs = [(backup / name, target / name) for name in entry.files]

        state = PathState.worst(self._link_state(source, link) for source, link in pairs)
        if state is PathState.LINKED and self.state_store is not None:
            return self._drift_state(self.state_store, entry_id or entry.name, pairs)
        return state

    def _detect_git(self, target: Path) -> PathState:
        if not lexists(target):
            return PathState.READY
        if lexists(target / ".git"):
            return PathState.LINKED
        return PathState.ADOPT

    def _link_state(self, backup: Path, target: Path) -> PathState:
        if not lexists(target):
            return PathState.MISSING if _exists(backup) else PathState.READY
        if not is_symlink(target):
            return PathState.ADOPT
        if not symlink_points_to(target, backup):
            logger.debug("%s is a symlink that does not point to %s", target, backup)
            return PathState.ADOPT
        if not _exists(backup):
            logger.debug("%s points to %s, which does not exist", target, backup)
            return PathState.READY
        return PathState.LINKED

    def _drift_state(self, store: StateLookup, entry_id: str, pairs: list[tuple[Path, Path]]) -> PathState:
        """Compare rendered content and template sources with the recorded baseline.

        Only entries with ``*.tmpl`` sources can drift; plain files are edited
        through the link and are always current.
        """

        try:
            current_template = template_digest(source for source, _ in pairs)
            if current_template is None:
                return PathState.LINKED

            recorded_content = store.lookup_content_hash(entry_id)
            if recorded_content != UNKNOWN_HASH:
                current = hash_paths((link for _, link in pairs), skip_templates=True)
                if current != recorded_content:
                    return PathState.MODIFIED

            recorded_template = store.lookup_template_hash(entry_id)
            if recorded_template != UNKNOWN_HASH and current_template != recorded_template:
                return PathState.OUTDATED
        except OSError as exc:
            logger.debug("unable to compare digests for %s: %s", entry_id, exc)

        return PathState.LINKED


def _exists(path: Path) -> bool:
    try:
        return path.exists()
    except OSError:
        return False
