"""
lister.py — Depth-bounded directory traversal.

Depth 0 is the root itself; entries directly under the root are depth 1.
Directories named in the default exclude set (VCS metadata, dependency and
build output folders) are not descended into, nor are directories or files
matching the user's ignore globs or the root's .gitignore rules. Symlinked
directories are not followed.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from fnmatch import fnmatch
import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Optional

import pathspec


logger = logging.getLogger(__name__)


_DEFAULT_EXCLUDE_DIRS: frozenset[str] = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__",
    ".venv", "venv", "dist", "build", "target",
    ".next", ".nuxt", ".mypy_cache", ".pytest_cache", ".tox", ".cargo",
})


@dataclass(frozen=True)
class ListedEntry:
    path: Path
    relative: str
    depth: int
    is_dir: bool
    size: int = 0

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class FileLister(ABC):
    @abstractmethod
    def list(self, root: Path, max_depth: int) -> Iterator[ListedEntry]:
        ...


def parse_ignore_patterns(raw: Optional[str]) -> list[str]:
    """Split a comma-separated glob list, dropping blanks."""
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


class LocalFileLister(FileLister):
    def __init__(
        self,
        *,
        exclude_dirs: Optional[Iterable[str]] = None,
        ignore_patterns: Optional[Iterable[str]] = None,
        exclude_paths: Optional[Iterable[Path]] = None,
        use_default_excludes: bool = True,
        respect_gitignore: bool = True,
    ):
        base = _DEFAULT_EXCLUDE_DIRS if use_default_excludes else frozenset()
        self.exclude_dirs = base | set(exclude_dirs or ())
        self.ignore_patterns = list(ignore_patterns or ())
        self.exclude_paths = {Path(p).resolve() for p in (exclude_paths or ())}
        self.respect_gitignore = respect_gitignore
        self.excluded: list[str] = []
        self._gitignore: Optional[pathspec.GitIgnoreSpec] = None

    def _ignored(self, rel: str, name: str, is_dir: bool) -> bool:
        if is_dir and (name in self.exclude_dirs or rel in self.exclude_dirs):
            return True
        for pattern in self.ignore_patterns:
            if fnmatch(rel, pattern) or fnmatch(name, pattern):
                return True
        if self._gitignore is not None:
            # Directory-only rules such as "build/" need the trailing slash.
            return self._gitignore.match_file(f"{rel}/" if is_dir else rel)
        return False

    def list(self, root: Path, max_depth: int) -> Iterator[ListedEntry]:
        self.excluded = []
        root = Path(root)
        self._gitignore = load_gitignore(root) if self.respect_gitignore and root.is_dir() else None
        if root.is_file():
            yield ListedEntry(path=root, relative=root.name, depth=0, is_dir=False, size=_size(root))
            return
        yield ListedEntry(path=root, relative=".", depth=0, is_dir=True)
        if max_depth > 0:
            yield from self._walk(root, root, 1, max_depth)

    def _walk(self, root: Path, directory: Path, depth: int, max_depth: int) -> Iterator[ListedEntry]:
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError:
            return

        for child in children:
            path = Path(child.path)
            rel = path.relative_to(root).as_posix()
            try:
                is_dir = child.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if self._ignored(rel, child.name, is_dir) or path.resolve() in self.exclude_paths:
                self.excluded.append(rel)
                continue

            if is_dir:
                yield ListedEntry(path=path, relative=rel, depth=depth, is_dir=True)
                if depth < max_depth:
                    yield from self._walk(root, path, depth + 1, max_depth)
            elif child.is_file():
                yield ListedEntry(path=path, relative=rel, depth=depth, is_dir=False, size=_size(path))


def load_gitignore(root: Path) -> Optional[pathspec.GitIgnoreSpec]:
    """Compile root/.gitignore, or None when there is none."""
    path = root / ".gitignore"
    if not path.is_file():
        return None
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.warning("Cannot read %s, ignoring it: %s", path, e)
        return None
    return pathspec.GitIgnoreSpec.from_lines(lines)


def _size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def format_size(size: int) -> str:
    """Human-readable size with binary units (e.g. "1.50 KiB")."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KiB", "MiB", "GiB", "TiB"):
        value /= 1024
        if value < 1024 or unit == "TiB":
            return f"{value:.2f} {unit}"
    return f"{size} B"
