"""Sandbox bridge: the capability contract the tool layer talks to.

Any backend exposing ``execute_command``, ``read_file`` and ``write_files``
satisfies :class:`Sandbox`. :class:`ShellSandbox` is the emulated backend
built on the in-process interpreter.
"""

from __future__ import annotations

import posixpath
import threading
from typing import List, Optional, Protocol, Sequence

from loguru import logger

from .errors import PathEscapeError, SkillShellError, UploadError
from .models import CommandResult, SandboxFile
from .shell import CommandInterpreter


class Sandbox(Protocol):
    def execute_command(self, command: str) -> CommandResult:
        ...

    def read_file(self, path: str) -> bytes:
        ...

    def write_files(self, files: Sequence[SandboxFile]) -> List[str]:
        ...


class ShellSandbox:
    """Sandbox backed by :class:`CommandInterpreter` and its virtual filesystem.

    ``destination`` is the single virtual prefix under which relative paths
    land. It is fixed at construction; absolute paths are never re-prefixed.
    """

    def __init__(
        self,
        interpreter: CommandInterpreter,
        destination: str = "/",
        timeout: Optional[float] = None,
    ) -> None:
        self.interpreter = interpreter
        self.vfs = interpreter.vfs
        self.destination = self.vfs.normalize(destination)
        self.timeout = timeout
        self._lock = threading.Lock()

    def effective_path(self, path: str) -> str:
        """Map a logical path onto a sandbox path."""
        if path.startswith("/"):
            return self.vfs.normalize(path)
        return self.vfs.normalize(posixpath.join(self.destination, path))

    def execute_command(self, command: str) -> CommandResult:
        with self._lock:
            return self.interpreter.execute(
                command, working_directory=self.destination, timeout=self.timeout
            )

    def read_file(self, path: str) -> bytes:
        with self._lock:
            return self.vfs.read_file(self.effective_path(path))

    def write_files(self, files: Sequence[SandboxFile]) -> List[str]:
        """Write files in order and return their sandbox paths.

        Stops at the first failure with :class:`UploadError`, which lists the
        paths already written. A path escape propagates unchanged.
        """
        written: List[str] = []
        with self._lock:
            for item in files:
                target = self.effective_path(item.path)
                try:
                    self.vfs.write_file(target, item.as_bytes())
                except PathEscapeError:
                    raise
                except (SkillShellError, OSError, UnicodeError) as exc:
                    logger.error(
                        "Upload failed at {path} after {count} file(s)",
                        path=target,
                        count=len(written),
                    )
                    raise UploadError(written, target, exc) from exc
                written.append(target)
        logger.debug("Wrote {count} file(s) under {dest}", count=len(written), dest=self.destination)
        return written
