"""Running external commands with the terminal handed over to the child."""

from __future__ import annotations

import logging
import subprocess
from contextlib import AbstractContextManager, nullcontext
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when an external command cannot start or exits non-zero."""

    def __init__(self, args: Sequence[str], reason: str, returncode: int | None = None) -> None:
        super().__init__(reason)
        self.args_list = list(args)
        self.returncode = returncode


class TerminalSession(Protocol):
    """Something that owns the terminal and can yield it for one command."""

    def suspended(self) -> AbstractContextManager[object]: ...


class DetachedSession:
    """Session used when nothing else owns the terminal."""

    def suspended(self) -> AbstractContextManager[object]:
        return nullcontext()


class CommandRunner:
    """Runs commands one at a time with inherited stdin, stdout and stderr.

    Interactive prompts (``sudo`` passwords, installer questions) reach the
    user because the owning session is suspended for the whole command.
    """

    def __init__(self, session: TerminalSession | None = None) -> None:
        self.session = session or DetachedSession()

    def run(self, args: Sequence[str]) -> None:
        logger.info("running %s", " ".join(args))
        with self.session.suspended():
            try:
                completed = subprocess.run(list(args), check=False)
            except OSError as exc:
                raise CommandError(args, f"unable to start '{args[0]}': {exc}") from exc

        if completed.returncode != 0:
            raise CommandError(args, f"exit status {completed.returncode}", completed.returncode)

    def check(self, args: Sequence[str]) -> bool:
        """Run a quiet status query and return ``True`` when it exits zero."""

        try:
            completed = subprocess.run(list(args), check=False, capture_output=True)
        except OSError as exc:
            logger.debug("status check %s could not start: %s", args[0], exc)
            return False
        return completed.returncode == 0
