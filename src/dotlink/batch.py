"""Running restore, backup, install and delete over a selection of entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

from .backup import BackupEngine
from .config import Config, Entry
from .models import (
    BatchOperation,
    BatchReport,
    DeletionItem,
    EntryKind,
    InstallMethod,
    OperationResult,
    PackageStatus,
    PlannedItem,
)
from .packages import PackageDispatcher
from .platform import Platform
from .restore import RestoreEngine

logger = logging.getLogger(__name__)

Persist = Callable[[Config], None]
ResultCallback = Callable[[OperationResult], None]


@dataclass(frozen=True, slots=True)
class Selection:
    """Chosen applications and entries, addressed by index into the config."""

    applications: frozenset[int] = frozenset()
    entries: frozenset[tuple[int, int]] = frozenset()

    def select_application(self, app_index: int) -> "Selection":
        return replace(self, applications=self.applications | {app_index})

    def select_entry(self, app_index: int, entry_index: int) -> "Selection":
        return replace(self, entries=self.entries | {(app_index, entry_index)})

    @property
    def is_empty(self) -> bool:
        return not self.applications and not self.entries


class BatchOrchestrator:
    """Executes one operation across a selection, one item at a time.

    Every planned item yields exactly one :class:`OperationResult`; a failing
    item never stops the rest of the batch.
    """

    def __init__(
        self,
        config: Config,
        platform: Platform,
        restore_engine: RestoreEngine,
        dispatcher: PackageDispatcher,
        *,
        persist: Persist | None = None,
        on_result: ResultCallback | None = None,
        backup_engine: BackupEngine | None = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.restore_engine = restore_engine
        self.dispatcher = dispatcher
        self.persist = persist
        self.on_result = on_result
        self.backup_engine = backup_engine or BackupEngine(
            restore_engine.backup_root, restore_engine.os_name, restore_engine.runner
        )

    def plan(self, selection: Selection) -> list[PlannedItem]:
        """Expand ``selection`` into active entries ordered by position."""

        applications = self.config.applications
        chosen: set[tuple[int, int]] = set()

        for app_index in sorted(selection.applications):
            if not 0 <= app_index < len(applications):
                logger.warning("ignoring unknown application index %d", app_index)
                continue
            chosen.update((app_index, entry_index) for entry_index in range(len(applications[app_index].entries)))

        for app_index, entry_index in sorted(selection.entries):
            if app_index in selection.applications:
                continue
            if not 0 <= app_index < len(applications) or not 0 <= entry_index < len(applications[app_index].entries):
                logger.warning("ignoring unknown entry index %d/%d", app_index, entry_index)
                continue
            chosen.add((app_index, entry_index))

        planned: list[PlannedItem] = []
        for app_index, entry_index in sorted(chosen):
            app = applications[app_index]
            entry = app.entries[entry_index]
            if not self.config.is_active(app, entry, self.platform):
                logger.debug("skipping %s/%s: filtered out on this machine", app.name, entry.name)
                continue
            planned.append(PlannedItem(app_index, entry_index, f"{app.name}/{entry.name}"))
        return planned

    def plan_deletion(self, selection: Selection) -> list[DeletionItem]:
        """Return the applications and entries ``run_delete`` would remove, unordered."""

        applications = self.config.applications
        items: list[DeletionItem] = []

        for app_index in sorted(selection.applications):
            if not 0 <= app_index < len(applications):
                logger.warning("ignoring unknown application index %d", app_index)
                continue
            items.append(DeletionItem(app_index, None, applications[app_index].name))

        for app_index, entry_index in sorted(selection.entries):
            if app_index in selection.applications:
                continue
            if not 0 <= app_index < len(applications) or not 0 <= entry_index < len(applications[app_index].entries):
                logger.warning("ignoring unknown entry index %d/%d", app_index, entry_index)
                continue
            app = applications[app_index]
            items.append(DeletionItem(app_index, entry_index, f"{app.name}/{app.entries[entry_index].name}"))

        return items

    def run_batch(
        self,
        selection: Selection,
        operation: BatchOperation,
        *,
        dry_run: bool = False,
        method: InstallMethod | None = None,
    ) -> BatchReport:
        if operation is BatchOperation.RESTORE:
            return self.run_restore(selection, dry_run=dry_run)
        if operation is BatchOperation.BACKUP:
            return self.run_backup(selection, dry_run=dry_run)
        if operation is BatchOperation.INSTALL:
            return self.run_install(selection, dry_run=dry_run, method=method)
        return self.run_delete(selection, dry_run=dry_run)

    def run_restore(self, selection: Selection, *, dry_run: bool = False) -> BatchReport:
        results: list[OperationResult] = []
        for item in self.plan(selection):
            entry = self._entry(item)
            if entry.kind is EntryKind.PACKAGE or entry.target(self.platform.os) is None:
                continue
            self._emit(results, self.restore_engine.restore(entry, dry_run=dry_run, name=item.name))
        return BatchReport(tuple(results))

    def run_backup(self, selection: Selection, *, dry_run: bool = False) -> BatchReport:
        results: list[OperationResult] = []
        for item in self.plan(selection):
            entry = self._entry(item)
            if entry.kind not in (EntryKind.FOLDER, EntryKind.FILES) or entry.target(self.platform.os) is None:
                continue
            self._emit(results, self.backup_engine.backup(entry, dry_run=dry_run, name=item.name))
        return BatchReport(tuple(results))

    def run_install(
        self,
        selection: Selection,
        *,
        dry_run: bool = False,
        method: InstallMethod | None = None,
        skip_installed: bool = True,
    ) -> BatchReport:
        results: list[OperationResult] = []
        for item in self.plan(selection):
            entry = self._entry(item)
            if entry.package is None:
                continue

            chosen = method or self.dispatcher.default_method(entry)
            if chosen is None:
                result = OperationResult(
                    item.name, False, f"No installation method available for {item.name} on {self.platform.os}"
                )
            elif skip_installed and self.dispatcher.is_installed(entry, chosen):
                result = OperationResult(item.name, True, f"Already installed via {chosen.value}")
            else:
                result = self.dispatcher.install(entry, chosen, dry_run=dry_run, name=item.name)
            self._emit(results, result)
        return BatchReport(tuple(results))

    def package_status(self, selection: Selection) -> list[PackageStatus]:
        """Report each selected package and whether it is already installed.

        Only status queries run; nothing is installed.
        """

        statuses: list[PackageStatus] = []
        for item in self.plan(selection):
            entry = self._entry(item)
            if entry.package is None:
                continue
            method = self.dispatcher.default_method(entry)
            installed = method is not None and self.dispatcher.is_installed(entry, method)
            statuses.append(PackageStatus(item.name, method, installed))
        return statuses

    def run_delete(self, selection: Selection, *, dry_run: bool = False) -> BatchReport:
        """Remove selected applications and entries from the configuration.

        Deletions run from the highest index down so earlier removals never
        shift the position of a later one. A whole application sorts below its
        own entries, and entries of an application that is already gone are
        skipped.
        """

        items = sorted(self.plan_deletion(selection), key=DeletionItem.sort_key, reverse=True)
        applications = self.config.applications
        deleted_apps: set[int] = set()
        results: list[OperationResult] = []

        for item in items:
            if item.app_index in deleted_apps:
                logger.debug("skipping %s: application already deleted", item.name)
                continue
            if dry_run:
                self._emit(results, OperationResult(item.name, True, "Would delete"))
                continue

            app = applications[item.app_index] if 0 <= item.app_index < len(applications) else None
            if app is None or (item.entry_index is not None and not 0 <= item.entry_index < len(app.entries)):
                self._emit(results, OperationResult(item.name, False, "Failed: no longer in the configuration"))
                continue

            if item.entry_index is None:
                forgotten = [f"{app.name}/{entry.name}" for entry in app.entries]
                removed_entry = None
                app_removed = True
                del applications[item.app_index]
            else:
                forgotten = [item.name]
                removed_entry = app.entries.pop(item.entry_index)
                app_removed = not app.entries
                if app_removed:
                    logger.info("deleting application %s: no entries left", app.name)
                    del applications[item.app_index]

            try:
                if self.persist is not None:
                    self.persist(self.config)
            except OSError as exc:
                logger.error("deleting %s failed: %s", item.name, exc)
                if app_removed:
                    applications.insert(item.app_index, app)
                if removed_entry is not None:
                    app.entries.insert(item.entry_index, removed_entry)
                self._emit(results, OperationResult(item.name, False, f"Failed: {exc}"))
                continue

            if app_removed:
                deleted_apps.add(item.app_index)
            logger.info("deleted %s", item.name)

            try:
                self._forget(forgotten)
            except OSError as exc:
                logger.error("clearing recorded state for %s failed: %s", item.name, exc)
                message = f"Deleted, but clearing recorded state failed: {exc}"
                self._emit(results, OperationResult(item.name, False, message))
                continue

            self._emit(results, OperationResult(item.name, True, "Deleted successfully"))

        return BatchReport(tuple(results))

    # ------------------------------------------------------------------
    # Internal helpers

    def _forget(self, entry_ids: list[str]) -> None:
        store = self.restore_engine.state_store
        if store is None:
            return
        for entry_id in entry_ids:
            store.forget(entry_id)
        store.save()

    def _entry(self, item: PlannedItem) -> Entry:
        return self.config.applications[item.app_index].entries[item.entry_index]

    def _emit(self, results: list[OperationResult], result: OperationResult) -> None:
        results.append(result)
        if self.on_result is not None:
            self.on_result(result)
