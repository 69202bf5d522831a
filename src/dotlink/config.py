"""TOML configuration loading and saving for dotlink."""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import EntryKind, InstallMethod
from .platform import SUPPORTED_OS, Platform

DEFAULT_CONFIG_FILENAME = "dotlink.toml"
DEFAULT_STATE_FILENAME = ".dotlink-state.toml"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


def expand_target(raw: str) -> Path:
    """Expand ``~`` and env vars in a target without following symlinks."""

    return Path(os.path.expandvars(raw)).expanduser()


class Filter(BaseModel):
    """Include/exclude conditions over os, distro, hostname and user.

    Every include pattern must match and no exclude pattern may match. Patterns
    are anchored regular expressions; an invalid pattern falls back to an exact
    comparison.
    """

    model_config = ConfigDict(frozen=True)

    include: Dict[str, str] = Field(default_factory=dict)
    exclude: Dict[str, str] = Field(default_factory=dict)

    def matches(self, platform: Platform) -> bool:
        for attr, pattern in self.include.items():
            if not _matches_pattern(pattern, platform.attribute(attr)):
                return False
        for attr, pattern in self.exclude.items():
            if _matches_pattern(pattern, platform.attribute(attr)):
                return False
        return True

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.include:
            payload["include"] = dict(self.include)
        if self.exclude:
            payload["exclude"] = dict(self.exclude)
        return payload


def _matches_pattern(pattern: str, value: str) -> bool:
    try:
        return re.fullmatch(f"(?:{pattern})", value) is not None
    except re.error:
        return pattern == value


def matches_filters(filters: tuple[Filter, ...], platform: Platform) -> bool:
    """Filters are OR'd together; no filters always matches."""

    if not filters:
        return True
    return any(item.matches(platform) for item in filters)


def _parse_filters(raw: Any, *, owner: str) -> tuple[Filter, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"'{owner}' filters must be a list of tables")
    return tuple(Filter(include=item.get("include", {}), exclude=item.get("exclude", {})) for item in raw)


class ManagerPackage(BaseModel):
    """Package name for a package manager plus dependencies installed first."""

    model_config = ConfigDict(frozen=True)

    name: str
    deps: tuple[str, ...] = ()


class GitPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    branch: str = ""
    targets: Dict[str, str] = Field(default_factory=dict)
    sudo: bool = False


class InstallerPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: Dict[str, str] = Field(default_factory=dict)
    binary: str = ""


class URLInstall(BaseModel):
    """Download ``url`` and run ``command`` with ``{file}`` replaced by the download."""

    model_config = ConfigDict(frozen=True)

    url: str
    command: str


class PackageSpec(BaseModel):
    """Every installation method configured for one entry."""

    model_config = ConfigDict(frozen=True)

    managers: Dict[InstallMethod, ManagerPackage] = Field(default_factory=dict)
    git: GitPackage | None = None
    installer: InstallerPackage | None = None
    custom: Dict[str, str] = Field(default_factory=dict)
    url: Dict[str, URLInstall] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, owner: str) -> "PackageSpec":
        managers: dict[InstallMethod, ManagerPackage] = {}
        git = installer = None
        custom: dict[str, str] = {}
        url: dict[str, URLInstall] = {}

        for key, value in raw.items():
            try:
                method = InstallMethod(key)
            except ValueError:
                raise ConfigError(f"'{owner}' uses unknown package manager '{key}'") from None

            try:
                if method is InstallMethod.GIT:
                    git = GitPackage.model_validate(value)
                    continue
                if method is InstallMethod.INSTALLER:
                    installer = InstallerPackage.model_validate(value)
                    continue
                if method is InstallMethod.URL:
                    url = {os_name: URLInstall.model_validate(spec) for os_name, spec in value.items()}
                    continue
            except (ValidationError, AttributeError) as exc:
                raise ConfigError(f"'{owner}' has an invalid '{key}' package table: {exc}") from exc

            if method is InstallMethod.CUSTOM:
                custom = dict(value)
            elif isinstance(value, str):
                managers[method] = ManagerPackage(name=value)
            elif isinstance(value, Mapping) and "name" in value:
                managers[method] = ManagerPackage(name=value["name"], deps=tuple(value.get("deps", ())))
            else:
                raise ConfigError(f"'{owner}' manager '{key}' must be a package name or a table with 'name'")

        return cls(managers=managers, git=git, installer=installer, custom=custom, url=url)

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for method, package in self.managers.items():
            if package.deps:
                payload[method.value] = {"name": package.name, "deps": list(package.deps)}
            else:
                payload[method.value] = package.name
        if self.git is not None:
            payload["git"] = self.git.model_dump(exclude_defaults=True)
        if self.installer is not None:
            payload["installer"] = self.installer.model_dump(exclude_defaults=True)
        if self.custom:
            payload["custom"] = dict(self.custom)
        if self.url:
            payload["url"] = {os_name: spec.model_dump() for os_name, spec in self.url.items()}
        return payload

    def defines(self, method: InstallMethod, os_name: str | None = None) -> bool:
        """Return ``True`` if ``method`` is configured (for ``os_name`` where per-OS)."""

        if method.is_manager:
            return method in self.managers
        if method is InstallMethod.GIT:
            return self.git is not None and (os_name is None or os_name in self.git.targets)
        if method is InstallMethod.INSTALLER:
            return self.installer is not None and (os_name is None or os_name in self.installer.command)
        if method is InstallMethod.CUSTOM:
            return bool(self.custom) and (os_name is None or os_name in self.custom)
        return bool(self.url) and (os_name is None or os_name in self.url)


def _infer_kind(raw: Mapping[str, Any]) -> EntryKind:
    if raw.get("repo"):
        return EntryKind.GIT
    if raw.get("files"):
        return EntryKind.FILES
    if raw.get("backup"):
        return EntryKind.FOLDER
    return EntryKind.PACKAGE


class Entry(BaseModel):
    """One managed unit: a folder, a set of files, a git clone, or a package."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: EntryKind
    backup: str = ""
    targets: Dict[str, str] = Field(default_factory=dict)
    files: tuple[str, ...] = ()
    repo: str = ""
    branch: str = ""
    sudo: bool = False
    description: str = ""
    filters: tuple[Filter, ...] = ()
    package: PackageSpec | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, app_name: str) -> "Entry":
        name = raw.get("name")
        if not name:
            raise ConfigError(f"Application '{app_name}' has an entry without a name")
        owner = f"{app_name}/{name}"

        kind_raw = raw.get("kind")
        if kind_raw is None:
            kind = _infer_kind(raw)
        else:
            try:
                kind = EntryKind(kind_raw)
            except ValueError:
                raise ConfigError(f"Entry '{owner}' has unknown kind '{kind_raw}'") from None

        if kind in (EntryKind.FOLDER, EntryKind.FILES) and not raw.get("backup"):
            raise ConfigError(f"Entry '{owner}' must define a 'backup' path")
        if kind is EntryKind.FILES and not raw.get("files"):
            raise ConfigError(f"Entry '{owner}' must list at least one file")
        if kind is EntryKind.GIT and not raw.get("repo"):
            raise ConfigError(f"Entry '{owner}' must define a 'repo' url")

        targets = dict(raw.get("targets", {}))
        unknown_os = sorted(set(targets) - set(SUPPORTED_OS))
        if unknown_os:
            raise ConfigError(f"Entry '{owner}' has targets for unknown operating system(s): {', '.join(unknown_os)}")

        files = tuple(str(item) for item in raw.get("files", ()))
        for item in files:
            candidate = Path(item)
            if candidate.is_absolute() or ".." in candidate.parts:
                raise ConfigError(f"Entry '{owner}' file '{item}' must stay inside the backup directory")

        package_raw = raw.get("package")
        return cls(
            name=name,
            kind=kind,
            backup=str(raw.get("backup", "")),
            targets=targets,
            files=files,
            repo=str(raw.get("repo", "")),
            branch=str(raw.get("branch", "")),
            sudo=bool(raw.get("sudo", False)),
            description=str(raw.get("description", "")),
            filters=_parse_filters(raw.get("filters"), owner=owner),
            package=PackageSpec.from_raw(package_raw, owner=owner) if package_raw else None,
        )

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name}
        if self.description:
            payload["description"] = self.description
        if self.backup:
            payload["backup"] = self.backup
        if self.files:
            payload["files"] = list(self.files)
        if self.repo:
            payload["repo"] = self.repo
        if self.branch:
            payload["branch"] = self.branch
        if self.targets:
            payload["targets"] = dict(self.targets)
        if self.sudo:
            payload["sudo"] = True
        if self.filters:
            payload["filters"] = [item.to_raw() for item in self.filters]
        if self.package is not None:
            payload["package"] = self.package.to_raw()
        if _infer_kind(payload) is not self.kind:
            payload["kind"] = self.kind.value
        return payload

    def target(self, os_name: str) -> str | None:
        """Return the unexpanded target for ``os_name``, if any."""

        return self.targets.get(os_name) or None


class Application(BaseModel):
    """A named group of entries that is selected, filtered and deleted as a unit."""

    name: str
    description: str = ""
    filters: tuple[Filter, ...] = ()
    entries: list[Entry] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Application":
        name = raw.get("name")
        if not name:
            raise ConfigError("Every [[applications]] table must define a name")

        entries: list[Entry] = []
        seen: set[str] = set()
        for entry_raw in raw.get("entries", ()):
            entry = Entry.from_raw(entry_raw, app_name=name)
            if entry.name in seen:
                raise ConfigError(f"Application '{name}' defines entry '{entry.name}' more than once")
            seen.add(entry.name)
            entries.append(entry)

        return cls(
            name=name,
            description=str(raw.get("description", "")),
            filters=_parse_filters(raw.get("filters"), owner=name),
            entries=entries,
        )

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name}
        if self.description:
            payload["description"] = self.description
        if self.filters:
            payload["filters"] = [item.to_raw() for item in self.filters]
        payload["entries"] = [entry.to_raw() for entry in self.entries]
        return payload


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    backup_root: Path
    state_path: Path
    manager_priority: tuple[InstallMethod, ...] = ()

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        backup_root = _expand_path(raw.get("backup_root", "."), base_dir=base_dir)
        state_raw = raw.get("state_path")
        state_path = (
            _expand_path(state_raw, base_dir=base_dir) if state_raw is not None else backup_root / DEFAULT_STATE_FILENAME
        )

        priority: list[InstallMethod] = []
        for name in raw.get("manager_priority", ()):
            try:
                method = InstallMethod(name)
            except ValueError:
                raise ConfigError(f"manager_priority lists unknown package manager '{name}'") from None
            if not method.is_manager:
                raise ConfigError(f"manager_priority may only list package managers, not '{name}'")
            priority.append(method)

        return cls(backup_root=backup_root, state_path=state_path, manager_priority=tuple(priority))


class Config(BaseModel):
    """Fully parsed configuration file.

    ``applications`` is mutable so batch deletions can edit it in place before
    it is written back with :func:`save_config`.
    """

    config_path: Path
    settings: Settings
    applications: list[Application] = Field(default_factory=list)
    raw_settings: Dict[str, Any] = Field(default_factory=dict)

    def application(self, name: str) -> Application:
        for app in self.applications:
            if app.name == name:
                return app
        raise ConfigError(f"Unknown application '{name}'")

    def application_index(self, name: str) -> int:
        for index, app in enumerate(self.applications):
            if app.name == name:
                return index
        raise ConfigError(f"Unknown application '{name}'")

    def is_active(self, app: Application, entry: Entry, platform: Platform) -> bool:
        return matches_filters(app.filters, platform) and matches_filters(entry.filters, platform)

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.raw_settings:
            payload["settings"] = dict(self.raw_settings)
        payload["applications"] = [app.to_raw() for app in self.applications]
        return payload


def resolve_backup(backup_root: Path, backup: str) -> Path:
    expanded = Path(os.path.expandvars(backup)).expanduser()
    if expanded.is_absolute():
        return expanded
    return backup_root / expanded


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or its directory. Defaults to
            ``dotlink.toml`` in the current working directory.
    """

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    raw_settings = data.get("settings", {})
    settings = Settings.from_raw(raw_settings, base_dir=base_dir)

    applications: list[Application] = []
    seen: set[str] = set()
    for app_raw in data.get("applications", ()):
        app = Application.from_raw(app_raw)
        if app.name in seen:
            raise ConfigError(f"Application '{app.name}' is defined more than once")
        seen.add(app.name)
        applications.append(app)

    return Config(config_path=config_path, settings=settings, applications=applications, raw_settings=raw_settings)


def save_config(config: Config, path: Path | None = None) -> None:
    """Write ``config`` back as TOML, preserving the original settings table."""

    destination = path or config.config_path
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("wb") as handle:
        tomli_w.dump(config.to_raw(), handle)


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    else:
        path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
