"""Shared models and enums for dotlink."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class EntryKind(str, Enum):
    """Kinds of units managed by dotlink."""

    FOLDER = "folder"
    FILES = "files"
    GIT = "git"
    PACKAGE = "package"


class InstallMethod(str, Enum):
    """Closed set of package installation methods."""

    PACMAN = "pacman"
    YAY = "yay"
    PARU = "paru"
    APT = "apt"
    DNF = "dnf"
    BREW = "brew"
    WINGET = "winget"
    SCOOP = "scoop"
    CHOCO = "choco"
    GIT = "git"
    INSTALLER = "installer"
    CUSTOM = "custom"
    URL = "url"

    @property
    def is_manager(self) -> bool:
        return self not in (InstallMethod.GIT, InstallMethod.INSTALLER, InstallMethod.CUSTOM, InstallMethod.URL)

    @classmethod
    def managers(cls) -> tuple["InstallMethod", ...]:
        return tuple(method for method in cls if method.is_manager)


class PathState(str, Enum):
    """Relationship between an entry's backup and its target."""

    LOADING = "loading"
    LINKED = "linked"
    MODIFIED = "modified"
    OUTDATED = "outdated"
    READY = "ready"
    MISSING = "missing"
    ADOPT = "adopt"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def needs_action(self) -> bool:
        return self in (PathState.READY, PathState.MISSING, PathState.ADOPT)

    @classmethod
    def worst(cls, states: Iterable["PathState"]) -> "PathState":
        """Return the highest-severity state, ``LOADING`` for no states."""

        return max(states, key=lambda state: state.severity, default=cls.LOADING)


_SEVERITY = {
    PathState.LOADING: 0,
    PathState.LINKED: 1,
    PathState.MODIFIED: 2,
    PathState.OUTDATED: 3,
    PathState.READY: 4,
    PathState.MISSING: 5,
    PathState.ADOPT: 6,
}


class BatchOperation(str, Enum):
    """Operations the batch orchestrator can drive."""

    RESTORE = "restore"
    BACKUP = "backup"
    INSTALL = "install"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a single batch step for one entry or application."""

    name: str
    success: bool
    message: str


@dataclass(frozen=True, slots=True)
class BatchReport:
    """Collection of per-item results for a batch run."""

    results: tuple[OperationResult, ...]

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for result in self.results if not result.success)


@dataclass(frozen=True, slots=True)
class PlannedItem:
    """An entry queued for a batch step, addressed by config indices."""

    app_index: int
    entry_index: int
    name: str


@dataclass(frozen=True, slots=True)
class DeletionItem:
    """A queued deletion; ``entry_index`` is ``None`` for a whole application."""

    app_index: int
    entry_index: int | None
    name: str

    def sort_key(self) -> tuple[int, int]:
        return (self.app_index, -1 if self.entry_index is None else self.entry_index)


@dataclass(frozen=True, slots=True)
class PackageStatus:
    """Whether an entry's package is present, judged by its preferred method."""

    name: str
    method: InstallMethod | None
    installed: bool
