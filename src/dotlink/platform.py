"""Platform detection used to pick per-OS targets and evaluate filters."""

from __future__ import annotations

import getpass
import logging
import socket
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

OS_LINUX = "linux"
OS_WINDOWS = "windows"
OS_DARWIN = "darwin"

SUPPORTED_OS = (OS_LINUX, OS_WINDOWS, OS_DARWIN)

OS_RELEASE = Path("/etc/os-release")


@dataclass(frozen=True, slots=True)
class Platform:
    """Attributes of the running machine that filters can match on."""

    os: str
    distro: str = ""
    hostname: str = ""
    user: str = ""

    def attribute(self, name: str) -> str:
        if name in ("os", "distro", "hostname", "user"):
            return getattr(self, name)
        return ""


def current_os() -> str:
    """Return the normalized OS identifier for this interpreter."""

    if sys.platform.startswith("win"):
        return OS_WINDOWS
    if sys.platform == "darwin":
        return OS_DARWIN
    return OS_LINUX


def detect_platform() -> Platform:
    os_name = current_os()
    return Platform(
        os=os_name,
        distro=detect_distro() if os_name == OS_LINUX else "",
        hostname=_detect_hostname(),
        user=_detect_user(),
    )


def detect_distro(os_release: Path = OS_RELEASE) -> str:
    """Return the ``ID`` field from os-release, e.g. ``arch`` or ``ubuntu``."""

    try:
        text = os_release.read_text()
    except OSError as exc:
        logger.debug("unable to detect linux distribution from %s: %s", os_release, exc)
        return ""

    for line in text.splitlines():
        if line.startswith("ID="):
            return line[len("ID=") :].strip().strip('"')
    return ""


def _detect_hostname() -> str:
    try:
        return socket.gethostname()
    except OSError as exc:
        logger.debug("unable to detect hostname: %s", exc)
        return ""


def _detect_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError) as exc:
        logger.debug("unable to detect user: %s", exc)
        return ""
