"""Building and running package installation commands."""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterable

import requests

from .config import Entry, GitPackage, ManagerPackage, PackageSpec, expand_target
from .models import InstallMethod, OperationResult
from .platform import OS_WINDOWS
from .process import CommandError, CommandRunner

logger = logging.getLogger(__name__)

PACKAGE_PLACEHOLDER = "{pkg}"
FILE_PLACEHOLDER = "{file}"
ELEVATION_HELPER = "sudo"

MANAGER_COMMANDS: dict[InstallMethod, tuple[str, ...]] = {
    InstallMethod.PACMAN: ("sudo", "pacman", "-S", "--noconfirm", PACKAGE_PLACEHOLDER),
    InstallMethod.YAY: ("yay", "-S", "--noconfirm", PACKAGE_PLACEHOLDER),
    InstallMethod.PARU: ("paru", "-S", "--noconfirm", PACKAGE_PLACEHOLDER),
    InstallMethod.APT: ("sudo", "apt-get", "install", "-y", PACKAGE_PLACEHOLDER),
    InstallMethod.DNF: ("sudo", "dnf", "install", "-y", PACKAGE_PLACEHOLDER),
    InstallMethod.BREW: ("brew", "install", PACKAGE_PLACEHOLDER),
    InstallMethod.WINGET: (
        "winget",
        "install",
        "--accept-package-agreements",
        "--accept-source-agreements",
        PACKAGE_PLACEHOLDER,
    ),
    InstallMethod.SCOOP: ("scoop", "install", PACKAGE_PLACEHOLDER),
    InstallMethod.CHOCO: ("choco", "install", "-y", PACKAGE_PLACEHOLDER),
}

CHECK_COMMANDS: dict[InstallMethod, tuple[str, ...]] = {
    InstallMethod.PACMAN: ("pacman", "-Q", PACKAGE_PLACEHOLDER),
    InstallMethod.YAY: ("pacman", "-Q", PACKAGE_PLACEHOLDER),
    InstallMethod.PARU: ("pacman", "-Q", PACKAGE_PLACEHOLDER),
    InstallMethod.APT: ("dpkg", "-s", PACKAGE_PLACEHOLDER),
    InstallMethod.DNF: ("rpm", "-q", PACKAGE_PLACEHOLDER),
    InstallMethod.BREW: ("brew", "list", PACKAGE_PLACEHOLDER),
    InstallMethod.WINGET: ("winget", "list", "--exact", "--id", PACKAGE_PLACEHOLDER, "--accept-source-agreements"),
    InstallMethod.SCOOP: ("scoop", "info", PACKAGE_PLACEHOLDER),
    InstallMethod.CHOCO: ("choco", "list", "--local-only", PACKAGE_PLACEHOLDER),
}

MANAGER_BINARIES: dict[InstallMethod, str] = {
    InstallMethod.APT: "apt-get",
}

WINDOWS_PRIORITY = (InstallMethod.WINGET, InstallMethod.SCOOP, InstallMethod.CHOCO)
POSIX_PRIORITY = (
    InstallMethod.YAY,
    InstallMethod.PARU,
    InstallMethod.PACMAN,
    InstallMethod.APT,
    InstallMethod.DNF,
    InstallMethod.BREW,
)

Downloader = Callable[[str, Path], None]


class PackageError(RuntimeError):
    """Raised for invalid installation requests such as unknown managers."""


def parse_method(name: str) -> InstallMethod:
    try:
        return InstallMethod(name.strip().lower())
    except ValueError:
        raise PackageError(f"Unknown package manager: {name}") from None


def detect_available_managers() -> frozenset[InstallMethod]:
    """Return the package managers whose executables are on ``PATH``."""

    found = {
        method
        for method in InstallMethod.managers()
        if shutil.which(MANAGER_BINARIES.get(method, method.value)) is not None
    }
    logger.debug("available package managers: %s", ", ".join(sorted(m.value for m in found)) or "none")
    return frozenset(found)


def shell_command(os_name: str, command: str) -> list[str]:
    """Wrap ``command`` in the platform's shell."""

    if os_name == OS_WINDOWS:
        return ["powershell", "-Command", command]
    return ["sh", "-c", command]


def download_file(url: str, destination: Path, *, timeout: float = 60.0) -> None:
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with destination.open("wb") as handle:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                handle.write(chunk)


def _expand_args(template: Iterable[str], package: str) -> list[str]:
    return [package if arg == PACKAGE_PLACEHOLDER else arg for arg in template]


class PackageDispatcher:
    """Turns an entry's package table into external commands."""

    def __init__(
        self,
        os_name: str,
        runner: CommandRunner | None = None,
        *,
        available: Iterable[InstallMethod] | None = None,
        manager_priority: Iterable[InstallMethod] = (),
        downloader: Downloader = download_file,
    ) -> None:
        self.os_name = os_name
        self.runner = runner or CommandRunner()
        self._available = frozenset(available) if available is not None else None
        self.manager_priority = tuple(manager_priority)
        self._downloader = downloader

    @property
    def available(self) -> frozenset[InstallMethod]:
        if self._available is None:
            self._available = detect_available_managers()
        return self._available

    # ------------------------------------------------------------------
    # Command construction

    def build_command(self, entry: Entry, method: InstallMethod, *, file: Path | None = None) -> list[str] | None:
        """Return the argv that installs ``entry`` via ``method``, or ``None`` if unsupported."""

        package = entry.package
        if package is None or not package.defines(method, self.os_name):
            return None

        if method.is_manager:
            return self._manager_command(method, package.managers[method].name)
        if method is InstallMethod.GIT:
            return self._git_clone_command(package.git) if package.git else None
        if method is InstallMethod.INSTALLER:
            return shell_command(self.os_name, package.installer.command[self.os_name]) if package.installer else None
        if method is InstallMethod.CUSTOM:
            return shell_command(self.os_name, package.custom[self.os_name])

        spec = package.url[self.os_name]
        placeholder = str(file) if file is not None else FILE_PLACEHOLDER
        return shell_command(self.os_name, spec.command.replace(FILE_PLACEHOLDER, placeholder))

    def _manager_command(self, method: InstallMethod, package_name: str) -> list[str]:
        args = _expand_args(MANAGER_COMMANDS[method], package_name)
        if self.os_name == OS_WINDOWS and args[0] == ELEVATION_HELPER:
            args = args[1:]
        return args

    def _git_clone_command(self, git: GitPackage) -> list[str] | None:
        target = git.targets.get(self.os_name)
        if not target:
            return None
        args = ["git", "clone"]
        if git.branch:
            args += ["-b", git.branch]
        args += [git.url, str(expand_target(target))]
        return self._elevate(args, git.sudo)

    def _elevate(self, args: list[str], sudo: bool) -> list[str]:
        if sudo and self.os_name != OS_WINDOWS:
            return [ELEVATION_HELPER, *args]
        return args

    # ------------------------------------------------------------------
    # Method selection and status

    def default_method(self, entry: Entry) -> InstallMethod | None:
        """Pick the method used when the caller does not choose one."""

        package = entry.package
        if package is None:
            return None

        for method in (InstallMethod.GIT, InstallMethod.INSTALLER):
            if package.defines(method, self.os_name):
                return method

        priority = self.manager_priority or (WINDOWS_PRIORITY if self.os_name == OS_WINDOWS else POSIX_PRIORITY)
        for method in priority:
            if method in self.available and package.defines(method):
                return method

        for method in (InstallMethod.CUSTOM, InstallMethod.URL):
            if package.defines(method, self.os_name):
                return method
        return None

    def is_installed(self, entry: Entry, method: InstallMethod) -> bool:
        package = entry.package
        if package is None or not package.defines(method, self.os_name):
            return False

        if method.is_manager:
            return self.runner.check(_expand_args(CHECK_COMMANDS[method], package.managers[method].name))
        if method is InstallMethod.GIT and package.git is not None:
            return (expand_target(package.git.targets[self.os_name]) / ".git").exists()
        if method is InstallMethod.INSTALLER and package.installer is not None and package.installer.binary:
            return shutil.which(package.installer.binary) is not None
        return False

    # ------------------------------------------------------------------
    # Execution

    def install(
        self,
        entry: Entry,
        method: InstallMethod,
        *,
        dry_run: bool = False,
        name: str | None = None,
    ) -> OperationResult:
        label = name or entry.name
        package = entry.package
        if package is None:
            return OperationResult(label, False, f"No package configured for {label}")
        if not package.defines(method, self.os_name):
            return OperationResult(
                label, False, f"No {method.value} installation method defined for {label} on {self.os_name}"
            )

        try:
            if method.is_manager:
                message = self._install_with_manager(method, package.managers[method], dry_run=dry_run)
            elif method is InstallMethod.GIT:
                message = self._install_git(entry, package, dry_run=dry_run)
            elif method is InstallMethod.URL:
                message = self._install_from_url(entry, package, dry_run=dry_run)
            else:
                message = self._run_shell(entry, method, dry_run=dry_run)
        except CommandError as exc:
            logger.error("installing %s via %s failed: %s", label, method.value, exc)
            return OperationResult(label, False, f"Installation via {method.value} failed: {exc}")

        return OperationResult(label, True, message)

    def _install_with_manager(self, method: InstallMethod, package: ManagerPackage, *, dry_run: bool) -> str:
        command = self._manager_command(method, package.name)
        if dry_run:
            message = f"Would install via {method.value}: {' '.join(command)}"
            if package.deps:
                message += f" (after dependencies: {', '.join(package.deps)})"
            return message

        for dependency in package.deps:
            try:
                self.runner.run(self._manager_command(method, dependency))
            except CommandError as exc:
                raise CommandError(exc.args_list, f"dependency {dependency} failed: {exc}", exc.returncode) from exc

        self.runner.run(command)
        return f"Installed via {method.value}"

    def _install_git(self, entry: Entry, package: PackageSpec, *, dry_run: bool) -> str:
        git = package.git
        target = expand_target(git.targets[self.os_name]) if git else None
        if git is not None and target is not None and (target / ".git").exists():
            command = self._elevate(["git", "-C", str(target), "pull"], git.sudo)
            done = "Repository updated"
        else:
            command = self.build_command(entry, InstallMethod.GIT) or []
            done = "Repository cloned"

        if dry_run:
            return f"Would install via git: {' '.join(command)}"
        self.runner.run(command)
        return done

    def _run_shell(self, entry: Entry, method: InstallMethod, *, dry_run: bool) -> str:
        command = self.build_command(entry, method) or []
        if dry_run:
            return f"Would install via {method.value}: {command[-1]}"
        self.runner.run(command)
        return f"Installed via {method.value} command"

    def _install_from_url(self, entry: Entry, package: PackageSpec, *, dry_run: bool) -> str:
        spec = package.url[self.os_name]
        if dry_run:
            return f"Would install via url: download {spec.url} and run: {spec.command}"

        with tempfile.TemporaryDirectory(prefix="dotlink-") as tmp_dir:
            installer = Path(tmp_dir) / "installer"
            try:
                self._downloader(spec.url, installer)
            except (requests.RequestException, OSError) as exc:
                raise CommandError(["download", spec.url], f"download failed: {exc}") from exc
            if self.os_name != OS_WINDOWS:
                installer.chmod(0o755)
            self.runner.run(self.build_command(entry, InstallMethod.URL, file=installer) or [])

        return "Installed via url"
