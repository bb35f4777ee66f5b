"""Error types for Skill Shell.

Setup-time errors (path escapes during upload, ambiguous skills, failed
uploads) abort the session. Per-turn errors (missing files, bad commands) are
turned into result data by the tool layer so the agent can adapt.
"""

from __future__ import annotations

from typing import List


class SkillShellError(Exception):
    """Base class for all Skill Shell errors."""


class PathEscapeError(SkillShellError, ValueError):
    """Raised when a virtual path resolves outside the sandbox root."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Path escapes sandbox root: {path}")
        self.path = path


class NotFoundError(SkillShellError, FileNotFoundError):
    """Raised when a virtual path does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No such file or directory: {path}")
        self.path = path


class SandboxIOError(SkillShellError, OSError):
    """Raised for I/O failures other than a missing path (permissions, type)."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason


class AmbiguousSkillError(SkillShellError):
    """Raised when two skill directories declare the same skill name."""

    def __init__(self, name: str, directories: List[str]) -> None:
        joined = ", ".join(directories)
        super().__init__(f"Skill name '{name}' is declared more than once: {joined}")
        self.name = name
        self.directories = directories


class UploadError(SkillShellError):
    """Raised when materializing skill files into the sandbox fails partway."""

    def __init__(self, written: List[str], failed: str, cause: BaseException) -> None:
        super().__init__(
            f"Upload failed at {failed} after {len(written)} file(s) were written: {cause}"
        )
        self.written = written
        self.failed = failed
        self.cause = cause


class ToolValidationError(SkillShellError, ValueError):
    """Raised when a tool invocation carries malformed arguments."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Invalid arguments for tool '{tool_name}': {message}")
        self.tool_name = tool_name


class ToolsetNotReadyError(SkillShellError, RuntimeError):
    """Raised when a tool is invoked before setup completed or while busy."""
