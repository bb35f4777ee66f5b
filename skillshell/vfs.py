"""Virtual filesystem rooted at a real directory.

Virtual paths are absolute POSIX strings (``/skills/csv/SKILL.md``). The
virtual root ``/`` maps onto the real root directory given at construction.
Every path is normalized before it touches the disk, and any path that would
leave the root (through ``..`` segments or a symlink) is rejected with
:class:`~skillshell.errors.PathEscapeError`.
"""

from __future__ import annotations

import fnmatch
import posixpath
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Tuple, Union

from loguru import logger

from .errors import NotFoundError, PathEscapeError, SandboxIOError


_GLOB_CHARS = set("*?[")


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime: float
    is_dir: bool


def has_glob(text: str) -> bool:
    return any(ch in _GLOB_CHARS for ch in text)


@contextmanager
def _translate_errors(virtual_path: str) -> Iterator[None]:
    """Map OS-level failures onto the sandbox error taxonomy."""
    try:
        yield
    except FileNotFoundError as exc:
        raise NotFoundError(virtual_path) from exc
    except NotADirectoryError as exc:
        raise SandboxIOError(virtual_path, "Not a directory") from exc
    except IsADirectoryError as exc:
        raise SandboxIOError(virtual_path, "Is a directory") from exc
    except PermissionError as exc:
        raise SandboxIOError(virtual_path, "Permission denied") from exc
    except FileExistsError as exc:
        raise SandboxIOError(virtual_path, "File exists") from exc
    except OSError as exc:
        raise SandboxIOError(virtual_path, exc.strerror or str(exc)) from exc


class VirtualFilesystem:
    """Disk-backed filesystem confined to a single real root directory."""

    def __init__(self, root: Union[str, Path]) -> None:
        real_root = Path(root).expanduser()
        if not real_root.exists():
            logger.info("Creating sandbox root at {root}", root=str(real_root))
            real_root.mkdir(parents=True, exist_ok=True)
        self._root = real_root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    def normalize(self, virtual_path: str) -> str:
        """Return the canonical absolute form of ``virtual_path``.

        The leading ``/`` marker is optional; ``.`` and empty segments are
        dropped and ``..`` pops one segment. Climbing above the root raises
        :class:`PathEscapeError` instead of being clamped.
        """
        parts: List[str] = []
        for segment in str(virtual_path).split("/"):
            if segment in ("", "."):
                continue
            if segment == "..":
                if not parts:
                    raise PathEscapeError(str(virtual_path))
                parts.pop()
                continue
            parts.append(segment)
        return "/" + "/".join(parts)

    def resolve(self, virtual_path: str) -> Path:
        """Translate a virtual path into a real path under the root."""
        normalized = self.normalize(virtual_path)
        candidate = self._root
        if normalized != "/":
            candidate = self._root.joinpath(*normalized[1:].split("/"))
        try:
            real = candidate.resolve()
        except (OSError, RuntimeError) as exc:
            raise SandboxIOError(str(virtual_path), "Cannot resolve path") from exc
        if real != self._root and self._root not in real.parents:
            raise PathEscapeError(str(virtual_path))
        return real

    def exists(self, virtual_path: str) -> bool:
        return self.resolve(virtual_path).exists()

    def is_dir(self, virtual_path: str) -> bool:
        return self.resolve(virtual_path).is_dir()

    def is_file(self, virtual_path: str) -> bool:
        return self.resolve(virtual_path).is_file()

    def read_file(self, virtual_path: str) -> bytes:
        target = self.resolve(virtual_path)
        with _translate_errors(virtual_path):
            return target.read_bytes()

    def write_file(self, virtual_path: str, data: Union[bytes, str]) -> None:
        """Write ``data`` to ``virtual_path``, creating parent directories."""
        self._write(virtual_path, data, "wb")

    def append_file(self, virtual_path: str, data: Union[bytes, str]) -> None:
        self._write(virtual_path, data, "ab")

    def _write(self, virtual_path: str, data: Union[bytes, str], mode: str) -> None:
        target = self.resolve(virtual_path)
        if target == self._root:
            raise SandboxIOError(str(virtual_path), "Is a directory")
        payload = data.encode("utf-8") if isinstance(data, str) else data
        with _translate_errors(virtual_path):
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open(mode) as handle:
                handle.write(payload)

    def stat(self, virtual_path: str) -> FileStat:
        target = self.resolve(virtual_path)
        with _translate_errors(virtual_path):
            info = target.stat()
        return FileStat(size=info.st_size, mtime=info.st_mtime, is_dir=target.is_dir())

    def list_dir(self, virtual_path: str) -> List[str]:
        """Return the sorted entry names of a directory."""
        target = self.resolve(virtual_path)
        with _translate_errors(virtual_path):
            return sorted(entry.name for entry in target.iterdir())

    def make_dirs(self, virtual_path: str, parents: bool = True) -> None:
        target = self.resolve(virtual_path)
        with _translate_errors(virtual_path):
            target.mkdir(parents=parents, exist_ok=parents)

    def remove(self, virtual_path: str, recursive: bool = False) -> None:
        target = self.resolve(virtual_path)
        if target == self._root:
            raise SandboxIOError(str(virtual_path), "Refusing to remove sandbox root")
        with _translate_errors(virtual_path):
            if target.is_dir() and not target.is_symlink():
                if not recursive:
                    raise IsADirectoryError(str(target))
                shutil.rmtree(target)
            else:
                target.unlink()

    def move(self, source: str, destination: str) -> None:
        src = self.resolve(source)
        dst = self.resolve(destination)
        if src == self._root:
            raise SandboxIOError(str(source), "Refusing to move sandbox root")
        with _translate_errors(source):
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dst))

    def copy_file(self, source: str, destination: str) -> None:
        src = self.resolve(source)
        dst = self.resolve(destination)
        with _translate_errors(source):
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)

    def walk(self, virtual_path: str) -> Iterator[Tuple[str, bool]]:
        """Yield ``(virtual_path, is_dir)`` depth-first, starting at the path itself."""
        start = self.normalize(virtual_path)
        is_dir = self.is_dir(start)
        yield start, is_dir
        if not is_dir:
            return
        for name in self.list_dir(start):
            yield from self.walk(posixpath.join(start, name))

    def glob(self, pattern: str, cwd: str = "/") -> List[str]:
        """Expand a shell glob against the filesystem.

        Results keep the pattern's form: an absolute pattern yields absolute
        paths, a relative one yields paths relative to ``cwd``. Hidden entries
        only match when the pattern segment itself starts with a dot.
        """
        absolute = pattern.startswith("/")
        matches: List[Tuple[str, str]] = [("", "/" if absolute else cwd)]
        for segment in (s for s in pattern.split("/") if s):
            expanded: List[Tuple[str, str]] = []
            for shown, virtual in matches:
                if not has_glob(segment):
                    child = posixpath.join(virtual, segment)
                    if self.exists(child):
                        expanded.append((_join_display(shown, segment), child))
                    continue
                if not self.is_dir(virtual):
                    continue
                for name in self.list_dir(virtual):
                    if name.startswith(".") and not segment.startswith("."):
                        continue
                    if fnmatch.fnmatchcase(name, segment):
                        expanded.append(
                            (_join_display(shown, name), posixpath.join(virtual, name))
                        )
            matches = expanded
        return sorted(("/" + shown) if absolute else shown for shown, _ in matches)


def _join_display(prefix: str, name: str) -> str:
    return f"{prefix}/{name}" if prefix else name
