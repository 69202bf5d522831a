"""Core package for the dotlink project."""

from .backup import BackupEngine
from .batch import BatchOrchestrator, Selection
from .cli import app, run
from .config import Application, Config, ConfigError, Entry, Settings, load_config, save_config
from .detector import StateDetector
from .models import (
    BatchOperation,
    BatchReport,
    EntryKind,
    InstallMethod,
    OperationResult,
    PackageStatus,
    PathState,
)
from .packages import PackageDispatcher, PackageError
from .process import CommandError, CommandRunner
from .restore import RestoreEngine
from .state import StateStore

__all__ = [
    "Application",
    "Config",
    "ConfigError",
    "Entry",
    "Settings",
    "load_config",
    "save_config",
    "StateDetector",
    "RestoreEngine",
    "BackupEngine",
    "PackageDispatcher",
    "PackageError",
    "CommandError",
    "CommandRunner",
    "BatchOrchestrator",
    "Selection",
    "StateStore",
    "BatchOperation",
    "BatchReport",
    "EntryKind",
    "InstallMethod",
    "OperationResult",
    "PackageStatus",
    "PathState",
    "app",
    "run",
]
