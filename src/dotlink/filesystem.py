"""Filesystem helpers for dotlink."""

from __future__ import annotations

import logging
import os
import shutil
from hashlib import blake2b
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".tmpl"


class AdoptionError(OSError):
    """Raised when a copied backup does not match the original it replaces."""


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def lexists(path: Path) -> bool:
    """Return ``True`` if ``path`` exists, without following a final symlink."""

    try:
        path.lstat()
    except OSError:
        return False
    return True


def is_symlink(path: Path) -> bool:
    try:
        return path.is_symlink()
    except OSError:
        return False


def symlink_points_to(source: Path, target: Path) -> bool:
    """Return ``True`` if ``source`` symlink resolves to ``target``."""

    if not is_symlink(source):
        return False
    try:
        current = Path(os.readlink(source))
    except OSError:
        return False
    current_resolved = (source.parent / current).resolve(strict=False)
    target_resolved = target.resolve(strict=False)
    return current_resolved == target_resolved


def create_symlink(link: Path, destination: Path) -> None:
    """Create ``link`` pointing at the absolute ``destination``."""

    link.symlink_to(destination, target_is_directory=destination.is_dir())


def remove_path(path: Path) -> None:
    """Delete ``path`` whether it is a file, directory, or symlink."""

    if not lexists(path):
        return
    if path.is_symlink() or not path.is_dir():
        path.unlink()
        return
    shutil.rmtree(path)


def hash_path(path: Path, *, skip_templates: bool = False) -> str:
    """Return a BLAKE2 hash for ``path`` contents and structure, following ``path`` itself.

    With ``skip_templates`` the ``*.tmpl`` sources are left out so the digest
    only covers rendered content.
    """

    hasher = blake2b(digest_size=32)

    if not path.is_dir():
        if skip_templates and _is_template(path):
            return hasher.hexdigest()
        hasher.update(b"file")
        _update_hash_with_file(hasher, path)
        return hasher.hexdigest()

    hasher.update(b"directory")
    for child in _iter_directory(path):
        if skip_templates and _is_template(child):
            continue
        rel = child.relative_to(path).as_posix().encode()
        hasher.update(b"\0")
        hasher.update(rel)
        hasher.update(b"\0")
        if child.is_symlink():
            hasher.update(b"symlink")
            hasher.update(os.readlink(child).encode())
        elif child.is_dir():
            hasher.update(b"directory")
        else:
            hasher.update(b"file")
            _update_hash_with_file(hasher, child)

    return hasher.hexdigest()


def hash_paths(paths: Iterable[Path], *, skip_templates: bool = False) -> str:
    """Combine the hashes of several paths; missing paths contribute their name only."""

    hasher = blake2b(digest_size=32)
    for path in paths:
        hasher.update(path.name.encode())
        hasher.update(b"\0")
        if path.exists():
            hasher.update(hash_path(path, skip_templates=skip_templates).encode())
    return hasher.hexdigest()


def template_digest(paths: Iterable[Path]) -> str | None:
    """Return a hash over every ``*.tmpl`` file under ``paths``, or ``None`` without templates."""

    templates: list[Path] = []
    for path in paths:
        if path.is_dir():
            templates.extend(child for child in _iter_directory(path) if _is_template(child))
        elif _is_template(path):
            templates.append(path)

    if not templates:
        return None

    hasher = blake2b(digest_size=32)
    for template in sorted(templates):
        hasher.update(template.as_posix().encode())
        hasher.update(b"\0")
        _update_hash_with_file(hasher, template)
    return hasher.hexdigest()


def _is_template(path: Path) -> bool:
    return path.name.endswith(TEMPLATE_SUFFIX) and path.is_file() and not path.is_symlink()


def _update_hash_with_file(hasher, path: Path) -> None:
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            hasher.update(chunk)


def _iter_directory(path: Path) -> list[Path]:
    entries: list[Path] = []
    for child in path.iterdir():
        entries.append(child)
        if child.is_dir() and not child.is_symlink():
            entries.extend(_iter_directory(child))
    return sorted(entries)


def move_verified(source: Path, destination: Path) -> None:
    """Move ``source`` to ``destination`` without ever losing the original.

    A plain rename is tried first. When it fails (for example across
    filesystems) the content is copied, the copy is hashed and compared with
    the original, and only then is the original removed. A copy that does not
    verify is discarded and ``AdoptionError`` is raised with ``source`` intact.
    """

    ensure_parent(destination)
    try:
        os.rename(source, destination)
        return
    except OSError as exc:
        logger.debug("rename %s -> %s failed (%s); copying instead", source, destination, exc)

    copy_verified(source, destination)
    remove_path(source)


def copy_verified(source: Path, destination: Path) -> None:
    """Copy ``source`` to ``destination`` and confirm the copy hashes identically."""

    try:
        if source.is_dir() and not source.is_symlink():
            shutil.copytree(source, destination, symlinks=True, copy_function=shutil.copy2)
        else:
            data = source.read_bytes()
            destination.write_bytes(data)
            shutil.copymode(source, destination)
        expected = hash_path(source)
        actual = hash_path(destination)
    except OSError:
        remove_path(destination)
        raise

    if expected != actual:
        remove_path(destination)
        raise AdoptionError(f"copy of '{source}' at '{destination}' does not match the original")
