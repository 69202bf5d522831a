from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from dotlink.process import CommandError


class FakeRunner:
    """Records commands instead of running them.

    Any command containing a token from ``failing`` exits non-zero, and status
    checks succeed for commands mentioning a token from ``installed``.
    """

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.checks: list[list[str]] = []
        self.failing: set[str] = set()
        self.installed: set[str] = set()

    def run(self, args: Sequence[str]) -> None:
        args = list(args)
        self.commands.append(args)
        if any(token in self.failing for token in args):
            raise CommandError(args, "exit status 1", 1)

    def check(self, args: Sequence[str]) -> bool:
        self.checks.append(list(args))
        return any(token in self.installed for token in args)


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
